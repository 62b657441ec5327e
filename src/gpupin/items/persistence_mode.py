from __future__ import annotations

from typing import Unpack

from gpupin.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class PersistenceMode(ManagedConfigItem):
  gpu: int
  enabled: bool

  def __init__(self, gpu: int, enabled: bool = True, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.gpu = gpu
    self.enabled = enabled

  def __str__(self) -> str:
    return f"PersistenceMode(gpu = {self.gpu})"

  def merge(self, other: ConfigItem) -> PersistenceMode:
    assert isinstance(other, PersistenceMode) and self == other
    assert other.enabled == self.enabled, f"Conflicting enabled in {self}"
    return PersistenceMode(
      gpu = self.gpu,
      enabled = self.enabled,
      **self.merge_base_attrs(self, other),
    )
