from __future__ import annotations

from shlex import join
from typing import Generator, Sequence

from gpupin.items.clock_lock import ClockLock
from gpupin.model import Action, ConfigManager, ConfigModel, Phase
from gpupin.nvidia_smi import NvidiaSmi, gpu_selector
from gpupin.utils.grouping import group_by
from gpupin.utils.colors import *
from gpupin.utils.json_store import JsonMapping, JsonStore


class ClockLockManager(ConfigManager[ClockLock]):
  managed_classes = [ClockLock]
  tool: NvidiaSmi
  applied: JsonMapping[str, int]
  executed: dict[str, int | None]

  def __init__(self, tool: NvidiaSmi, store: JsonStore):
    super().__init__()
    self.tool = tool
    self.applied = store.mapping("clock_lock")
    self.executed = {}

  def assert_installable(self, item: ClockLock, model: ConfigModel):
    assert item.clock is not None, "missing clock parameter"
    assert item.clock > 0, f"invalid clock: {item.clock}"

  def get_install_actions(self, items_to_check: Sequence[ClockLock], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for clock, items in group_by(items_to_check, lambda item: item.clock):
      assert clock is not None
      gpus = [item.gpu for item in items]
      argv = self.tool.lock_gpu_clocks_command(gpus, clock)
      yield Action(
        installs = items,
        description = f"lock graphics clock of GPU {gpu_selector(gpus)} to {clock} MHz",
        additional_info = f"{CYAN}{join(argv)}",
        execute = lambda argv = argv, items = items: self.lock_clocks(argv, items),
      )

  def get_reset_actions(self, items_to_reset: Sequence[ClockLock], model: ConfigModel, phase: Phase) -> Generator[Action]:
    if not items_to_reset:
      return
    gpus = [item.gpu for item in items_to_reset]
    argv = self.tool.reset_gpu_clocks_command(gpus)
    yield Action(
      removes = items_to_reset,
      description = f"reset graphics clock of GPU {gpu_selector(gpus)}",
      additional_info = f"{CYAN}{join(argv)}",
      execute = lambda: self.reset_clocks(argv, items_to_reset),
    )

  def initialize(self, model: ConfigModel, phase: Phase):
    self.executed = {}

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution" and self.executed:
      self.applied.update(self.executed)

  def lock_clocks(self, argv: list[str], items: Sequence[ClockLock]):
    self.tool.run(argv)
    for item in items:
      self.executed[str(item.gpu)] = item.clock

  def reset_clocks(self, argv: list[str], items: Sequence[ClockLock]):
    self.tool.run(argv)
    for item in items:
      self.executed[str(item.gpu)] = None
