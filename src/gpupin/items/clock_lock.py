from __future__ import annotations

from typing import Unpack

from gpupin.items.persistence_mode import PersistenceMode
from gpupin.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class ClockLock(ManagedConfigItem):
  """Pins the graphics clock of a GPU to a fixed value (MHz)."""
  gpu: int
  clock: int | None

  def __init__(self, gpu: int, clock: int | None = None, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.gpu = gpu
    self.clock = clock
    self.after = [
      *self.after,
      lambda item: isinstance(item, PersistenceMode) and item.gpu == gpu,
    ]

  def __str__(self) -> str:
    return f"ClockLock(gpu = {self.gpu})"

  def merge(self, other: ConfigItem) -> ClockLock:
    assert isinstance(other, ClockLock) and self == other
    if self.clock is not None and other.clock is not None:
      assert other.clock == self.clock, f"Conflicting clock in {self}"
    return ClockLock(
      gpu = self.gpu,
      clock = self.clock if self.clock is not None else other.clock,
      **self.merge_base_attrs(self, other),
    )
