from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Generic, Mapping, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class StateStoreError(Exception):
  pass


class JsonStore:
  store_file: str
  store: dict[str, Any]

  def __init__(self, store_file: str):
    self.store_file = store_file
    try:
      with open(self.store_file, encoding = 'utf-8') as fh:
        self.store = json.load(fh)
    except (OSError, ValueError):
      self.store = {}

  def mapping(self, name) -> JsonMapping[K, V]:
    return JsonMapping[K, V](self, name)

  def get(self, key, default = None):
    return self.store.get(key, default)

  def put(self, key, value):
    self.store[key] = value
    self.save()

  def save(self):
    try:
      Path(os.path.dirname(self.store_file) or ".").mkdir(parents = True, exist_ok = True)
      with open(self.store_file, 'w+', encoding = 'utf-8') as fh:
        json.dump(self.store, fh, indent = 2)
    except OSError as e:
      raise StateStoreError(f"unable to write state file {self.store_file}: {e.strerror or e}") from e


class JsonMapping(Generic[K, V]):
  store: JsonStore
  name: str

  def __init__(self, store: JsonStore, name: str):
    self.name = name
    self.store = store

  def update(self, values: Mapping[K, V | None]):
    """Writes all values with a single save. None removes the key."""
    mapping: dict[K, V] = dict(self.store.get(self.name, {}))
    for key, value in values.items():
      if value is None:
        mapping.pop(key, None)
      else:
        mapping[key] = value
    self.store.put(self.name, mapping)

  def keys(self) -> list[K]:
    mapping: dict[K, V] = self.store.get(self.name, {})
    return list(mapping.keys())
