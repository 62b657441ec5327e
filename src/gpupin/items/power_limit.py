from __future__ import annotations

from typing import Unpack

from gpupin.items.clock_lock import ClockLock
from gpupin.items.persistence_mode import PersistenceMode
from gpupin.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class PowerLimit(ManagedConfigItem):
  """Power draw ceiling of a GPU in watts."""
  gpu: int
  watts: int | None

  def __init__(self, gpu: int, watts: int | None = None, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.gpu = gpu
    self.watts = watts
    self.after = [
      *self.after,
      lambda item: isinstance(item, (PersistenceMode, ClockLock)) and item.gpu == gpu,
    ]

  def __str__(self) -> str:
    return f"PowerLimit(gpu = {self.gpu})"

  def merge(self, other: ConfigItem) -> PowerLimit:
    assert isinstance(other, PowerLimit) and self == other
    if self.watts is not None and other.watts is not None:
      assert other.watts == self.watts, f"Conflicting watts in {self}"
    return PowerLimit(
      gpu = self.gpu,
      watts = self.watts if self.watts is not None else other.watts,
      **self.merge_base_attrs(self, other),
    )
