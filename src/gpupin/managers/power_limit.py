from __future__ import annotations

from shlex import join
from typing import Generator, Sequence

from gpupin.items.power_limit import PowerLimit
from gpupin.model import Action, ConfigManager, ConfigModel, Phase
from gpupin.nvidia_smi import NvidiaSmi, gpu_selector
from gpupin.status import parse_csv
from gpupin.utils.grouping import group_by
from gpupin.utils.colors import *
from gpupin.utils.json_store import JsonMapping, JsonStore
from gpupin.utils.logging import logger

DEFAULT_LIMIT_FIELDS = ["index", "power.default_limit"]


class PowerLimitManager(ConfigManager[PowerLimit]):
  managed_classes = [PowerLimit]
  tool: NvidiaSmi
  applied: JsonMapping[str, int]
  executed: dict[str, int | None]

  def __init__(self, tool: NvidiaSmi, store: JsonStore):
    super().__init__()
    self.tool = tool
    self.applied = store.mapping("power_limit")
    self.executed = {}

  def assert_installable(self, item: PowerLimit, model: ConfigModel):
    assert item.watts is not None, "missing watts parameter"
    assert item.watts > 0, f"invalid power limit: {item.watts}"

  def get_install_actions(self, items_to_check: Sequence[PowerLimit], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for watts, items in group_by(items_to_check, lambda item: item.watts):
      assert watts is not None
      gpus = [item.gpu for item in items]
      argv = self.tool.power_limit_command(gpus, watts)
      yield Action(
        installs = items,
        description = f"set power limit of GPU {gpu_selector(gpus)} to {watts} W",
        additional_info = f"{CYAN}{join(argv)}",
        execute = lambda argv = argv, items = items: self.set_power_limit(argv, items),
      )

  def get_reset_actions(self, items_to_reset: Sequence[PowerLimit], model: ConfigModel, phase: Phase) -> Generator[Action]:
    if not items_to_reset:
      return
    gpus = [item.gpu for item in items_to_reset]
    # the default limit is only known after the query, so it is shown as a placeholder
    set_default = f"{join(self.tool.command([gpus[0]], '-pl'))} <power.default_limit>"
    yield Action(
      removes = items_to_reset,
      description = f"restore default power limit of GPU {gpu_selector(gpus)}",
      additional_info = [
        f"{CYAN}{join(self.tool.query_command(gpus, DEFAULT_LIMIT_FIELDS))}",
        f"{CYAN}{set_default}" + (" (per GPU)" if len(gpus) > 1 else ""),
      ],
      execute = lambda: self.restore_default_limits(items_to_reset),
    )

  def initialize(self, model: ConfigModel, phase: Phase):
    self.executed = {}

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution" and self.executed:
      self.applied.update(self.executed)

  def set_power_limit(self, argv: list[str], items: Sequence[PowerLimit]):
    self.tool.run(argv)
    for item in items:
      self.executed[str(item.gpu)] = item.watts

  def default_limits(self, gpus: Sequence[int]) -> dict[int, str]:
    result: dict[int, str] = {}
    for row in parse_csv(self.tool.query(gpus, DEFAULT_LIMIT_FIELDS)):
      index, default_limit = row
      if default_limit is not None:
        result[int(index)] = default_limit
    return result

  def restore_default_limits(self, items: Sequence[PowerLimit]):
    defaults = self.default_limits([item.gpu for item in items])
    for item in items:
      default_limit = defaults.get(item.gpu, None)
      if default_limit is None:
        logger.warn(f"GPU {item.gpu} reports no default power limit, leaving the current limit in place")
        continue
      self.tool.run(self.tool.power_limit_command([item.gpu], default_limit))
      self.executed[str(item.gpu)] = None
