from __future__ import annotations

from shlex import join
from typing import Generator, Sequence

from gpupin.items.persistence_mode import PersistenceMode
from gpupin.model import Action, ConfigManager, ConfigModel, Phase
from gpupin.nvidia_smi import NvidiaSmi, gpu_selector
from gpupin.utils.grouping import group_by
from gpupin.utils.colors import *
from gpupin.utils.json_store import JsonMapping, JsonStore


class PersistenceModeManager(ConfigManager[PersistenceMode]):
  managed_classes = [PersistenceMode]
  tool: NvidiaSmi
  applied: JsonMapping[str, bool]
  executed: dict[str, bool | None]

  def __init__(self, tool: NvidiaSmi, store: JsonStore):
    super().__init__()
    self.tool = tool
    self.applied = store.mapping("persistence_mode")
    self.executed = {}

  def assert_installable(self, item: PersistenceMode, model: ConfigModel):
    pass

  def get_install_actions(self, items_to_check: Sequence[PersistenceMode], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for enabled, items in group_by(items_to_check, lambda item: item.enabled):
      gpus = [item.gpu for item in items]
      argv = self.tool.persistence_mode_command(gpus, enabled)
      yield Action(
        installs = items,
        description = f"{'enable' if enabled else 'disable'} persistence mode on GPU {gpu_selector(gpus)}",
        additional_info = f"{CYAN}{join(argv)}",
        execute = lambda argv = argv, items = items: self.set_persistence_mode(argv, items),
      )

  def get_reset_actions(self, items_to_reset: Sequence[PersistenceMode], model: ConfigModel, phase: Phase) -> Generator[Action]:
    if not items_to_reset:
      return
    gpus = [item.gpu for item in items_to_reset]
    argv = self.tool.persistence_mode_command(gpus, enabled = False)
    yield Action(
      removes = items_to_reset,
      description = f"disable persistence mode on GPU {gpu_selector(gpus)}",
      additional_info = f"{CYAN}{join(argv)}",
      execute = lambda: self.disable_persistence_mode(argv, items_to_reset),
    )

  def initialize(self, model: ConfigModel, phase: Phase):
    self.executed = {}

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution" and self.executed:
      self.applied.update(self.executed)

  def set_persistence_mode(self, argv: list[str], items: Sequence[PersistenceMode]):
    self.tool.run(argv)
    for item in items:
      self.executed[str(item.gpu)] = item.enabled

  def disable_persistence_mode(self, argv: list[str], items: Sequence[PersistenceMode]):
    self.tool.run(argv)
    for item in items:
      self.executed[str(item.gpu)] = None
