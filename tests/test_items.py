from __future__ import annotations

import pytest

from gpupin.core import GpuPin
from gpupin.items import ClockLock, PersistenceMode, PowerLimit
from gpupin.model import ConfigGroup


def test_items_are_identified_by_gpu():
  assert ClockLock(0, 2790) == ClockLock(0, 1710)
  assert ClockLock(0, 2790) != ClockLock(1, 2790)
  assert PowerLimit(0, 450) != ClockLock(0, 450)
  assert len({PersistenceMode(0), PersistenceMode(0), PersistenceMode(1)}) == 2


def test_merge_identical_values():
  merged = ClockLock(0, 2790, tags = "training").merge(ClockLock(0, 2790, tags = "benchmark"))
  assert merged.clock == 2790
  assert merged.tags == {"training", "benchmark"}


def test_merge_fills_in_missing_values():
  assert PowerLimit(0).merge(PowerLimit(0, 450)).watts == 450
  assert PowerLimit(0, 450).merge(PowerLimit(0)).watts == 450


def test_merge_conflicting_values():
  with pytest.raises(AssertionError, match = "Conflicting clock"):
    ClockLock(0, 2790).merge(ClockLock(0, 1710))
  with pytest.raises(AssertionError, match = "Conflicting watts"):
    PowerLimit(0, 450).merge(PowerLimit(0, 300))
  with pytest.raises(AssertionError, match = "Conflicting enabled"):
    PersistenceMode(0, True).merge(PersistenceMode(0, False))


def test_clock_lock_and_power_limit_declare_their_order():
  clock_lock = ClockLock(3, 2790)
  power_limit = PowerLimit(3, 450)
  assert any(after(PersistenceMode(3)) for after in clock_lock.after)
  assert not any(after(PersistenceMode(2)) for after in clock_lock.after)
  assert any(after(clock_lock) for after in power_limit.after)


def test_merge_configs_across_groups():
  merged = GpuPin.merge_configs([
    ConfigGroup("training", [ClockLock(0, 2790), PowerLimit(0)]),
    ConfigGroup("power cap", [PowerLimit(0, 450)]),
  ])
  assert [item.watts for group in merged for item in group.provides if isinstance(item, PowerLimit)] == [450, 450]
