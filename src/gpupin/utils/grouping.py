from __future__ import annotations

from typing import Callable, Hashable, Iterable, TypeVar

T = TypeVar("T")
K = TypeVar("K", bound = Hashable)


def group_by(items: Iterable[T], key: Callable[[T], K]) -> list[tuple[K, list[T]]]:
  """Groups items by key, keeping the order in which each key was first encountered."""
  result: dict[K, list[T]] = {}
  for item in items:
    result.setdefault(key(item), []).append(item)
  return list(result.items())
