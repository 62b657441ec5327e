from __future__ import annotations

import os
from shutil import get_terminal_size
from typing import Generator, Iterable, Literal, Sequence, TypeAlias

import gpupin.utils.shell as shell_module
from gpupin.items import ClockLock, PersistenceMode, PowerLimit
from gpupin.model import *
from gpupin.nvidia_smi import NvidiaSmi
from gpupin.optimizer import InfeasibleError, InstallPhaseOptimizer
from gpupin.utils.colors import *
from gpupin.utils.confirm import confirm
from gpupin.utils.error_handling import handle_ctrl_c
from gpupin.utils.json_store import JsonStore
from gpupin.utils.logging import logger

RunMode: TypeAlias = Literal["apply", "reset"]


def profile_configs(gpus: Iterable[int], clock: int, power_limit: int, persistence: bool = True) -> list[ConfigGroup]:
  """One group per GPU: persistence mode, clock lock and power limit, in this order."""
  return [
    ConfigGroup(
      description = f"GPU {gpu}: {clock} MHz, {power_limit} W",
      provides = [
        PersistenceMode(gpu) if persistence else None,
        ClockLock(gpu, clock),
        PowerLimit(gpu, power_limit),
      ],
    ) for gpu in gpus
  ]


def reset_configs(gpus: Iterable[int], disable_persistence: bool = False) -> list[ConfigGroup]:
  return [
    ConfigGroup(
      description = f"GPU {gpu}: driver defaults",
      provides = [
        PersistenceMode(gpu, enabled = False) if disable_persistence else None,
        ClockLock(gpu),
        PowerLimit(gpu),
      ],
    ) for gpu in gpus
  ]


def managed_gpus(store: JsonStore) -> list[int]:
  """GPUs that currently have a clock lock or power limit applied by gpupin."""
  keys = [*store.mapping("clock_lock").keys(), *store.mapping("power_limit").keys()]
  return sorted({int(key) for key in keys})


class GpuPin:
  tool: NvidiaSmi
  managers: Sequence[ConfigManager]
  configs: Sequence[ConfigGroup]
  mode: RunMode

  def __init__(
    self,
    tool: NvidiaSmi,
    managers: Sequence[ConfigManager] | Iterable[ConfigManager],
    configs: Sequence[ConfigGroup],
    mode: RunMode = "apply",
  ):
    self.tool = tool
    self.configs = configs
    self.managers = list(managers)
    self.mode = mode
    self.assert_manager_consistency(self.managers, self.configs)
    if getattr(os, "geteuid", None) is not None and os.geteuid() != 0:
      logger.warn("not running as root - nvidia-smi will most likely refuse to change settings")

  def create_model(self) -> ConfigModel:
    merged_configs = self.merge_configs(self.configs)
    optimizer = InstallPhaseOptimizer(
      configs = self.get_managed_items_grouped(merged_configs),
      managers = self.managers,
    )

    try:
      install_steps = optimizer.calc_install_steps()
    except InfeasibleError:
      iis = optimizer.find_iis()
      print()
      printc(f"{RED}Unable to calculate a consistent execution order.")
      print("Please check the following items. Very likely there is a circular dependency between them.")
      print()
      printc(f"{BOLD}Inconsistent Subset:")
      for item in iis:
        print(f"- {item}")
      raise

    model = ConfigModel(
      configs = merged_configs,
      steps = install_steps if self.mode == "apply" else list(reversed(install_steps)),
    )

    if self.mode == "apply":
      self.assert_config_items_installable(model)
    return model

  def get_actions(self, model: ConfigModel, phase: Phase) -> Generator[Action]:
    for step in model.steps:
      if self.mode == "apply":
        yield from step.manager.get_install_actions(step.items_to_install, model, phase)
      else:
        yield from step.manager.get_reset_actions(step.items_to_install, model, phase)

  @handle_ctrl_c
  def plan(self, config_summary: bool = False) -> ExecutionPlan:
    phase: Phase = "planning"
    model = self.create_model()

    for manager in self.managers:
      manager.initialize(model, phase)
    actions = list(self.get_actions(model, phase))
    for manager in self.managers:
      manager.finalize(model, phase)

    if config_summary:
      printc(f"{BOLD}Config Summary:")
      for group in model.configs:
        printc(f"- {group.description}")
      print()

    if logger.messages:
      printc(f"{BOLD}Messages logged during planning:")
      for message in list(dict.fromkeys(logger.messages)):
        printc(f"- {message}")
      print()
      logger.clear()

    if actions:
      printc(f"{BOLD}Actions that will be executed (in order):")
      for action in actions:
        printc(f"- {self.color_for_action(action)}{action.description}")
        for info in action.additional_info:
          printc(f"  {info}")
      print()
    else:
      print("nothing to do.")

    return ExecutionPlan(
      expected_actions = actions,
      model = model,
    )

  @handle_ctrl_c
  def execute(self, plan: ExecutionPlan):
    logger.clear()
    phase: Phase = "execution"
    model = plan.model

    actions = list(self.get_actions(model, phase))
    if actions:
      # fail before the first invocation if nvidia-smi isn't available at all
      self.tool.resolve()

    for manager in self.managers:
      manager.initialize(model, phase)
    for action in actions:
      self.execute_action(action, plan)
    for manager in self.managers:
      manager.finalize(model, phase)

    if actions:
      self.print_divider_line()
    print("execution finished.")

    if logger.messages:
      print()
      printc(f"{BOLD}Messages logged during execution:")
      for message in list(dict.fromkeys(logger.messages)):
        printc(f"- {message}")

  @handle_ctrl_c
  def run(self, dry_run: bool = False, assume_yes: bool = False, config_summary: bool = False):
    plan = self.plan(config_summary = config_summary)
    if dry_run or not plan.expected_actions:
      return
    if not assume_yes:
      confirm("confirm execution")
    self.execute(plan)

  @classmethod
  def execute_action(cls, action: Action, plan: ExecutionPlan):
    try:
      shell_module.verbose_mode = True
      cls.print_divider_line()
      printc(f"executing: {cls.color_for_action(action)}{action.description}")
      if not any(action.is_covered_by(expected) for expected in plan.expected_actions):
        confirm("this action was not predicted during planning phase - please confirm to continue")
      action.execute()
    finally:
      shell_module.verbose_mode = False

  @classmethod
  def print_divider_line(cls):
    printc(f"{'-' * (get_terminal_size().columns - 1)}")

  @classmethod
  def get_managed_items_grouped(cls, merged_configs: Sequence[ConfigGroup]) -> Sequence[Sequence[ManagedConfigItem]]:
    result: list[list[ManagedConfigItem]] = []
    for config in merged_configs:
      managed_items_in_config = [item for item in config.provides if isinstance(item, ManagedConfigItem)]
      if managed_items_in_config:
        result.append(managed_items_in_config)
    return result

  @classmethod
  def assert_config_items_installable(cls, model: ConfigModel):
    """Checks that every item is fully configured according to its manager."""
    for install_step in model.steps:
      for item in install_step.items_to_install:
        try:
          install_step.manager.assert_installable(item, model)
        except AssertionError as e:
          raise AssertionError(f"{install_step.manager.__class__.__name__}: {item}: {e}")

  @classmethod
  def assert_manager_consistency(cls, managers: Sequence[ConfigManager], configs: Sequence[ConfigGroup]):
    """Checks that every item has exactly one manager."""
    for group in configs:
      for item in group.provides:
        if not isinstance(item, ManagedConfigItem): continue
        matching_managers = [manager for manager in managers if item.__class__ in manager.managed_classes]
        assert len(matching_managers) > 0, f"no manager found for class {item.__class__.__name__}"
        assert len(matching_managers) < 2, f"multiple managers found for class {item.__class__.__name__}"

  @classmethod
  def merge_configs(cls, configs: Sequence[ConfigGroup]) -> list[ConfigGroup]:
    # merge all items with the same identifier
    merged_items: dict[ConfigItem, ConfigItem] = {}
    for group in configs:
      for item in group.provides:
        item_prev = merged_items.get(item, None)
        merged_items[item] = item_prev.merge(item) if item_prev is not None else item

    # create new groups with the items replaced by their merged versions
    return [
      ConfigGroup(
        description = group.description,
        provides = [merged_items[item] for item in group.provides],
      ) for group in configs
    ]

  @classmethod
  def color_for_action(cls, action: Action) -> str:
    if action.removes:
      return RED
    elif action.installs:
      return GREEN
    else:
      return PURPLE
