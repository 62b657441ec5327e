from __future__ import annotations

import sys
from collections import defaultdict
from typing import Sequence

from pyscipopt import Model, SCIP_PARAMEMPHASIS, Variable  # type: ignore

from gpupin.model import ConfigItem, ConfigManager, InstallStep, ManagedConfigItem


class InfeasibleError(AssertionError):
  pass


class ExtraConstraints:
  same_value_groups: list[list[ManagedConfigItem]] = []
  different_value_pairs: list[tuple[ManagedConfigItem, ManagedConfigItem]] = []

  def __init__(self,
    same_value_groups: list[list[ManagedConfigItem]] | None = None,
    different_value_pairs: list[tuple[ManagedConfigItem, ManagedConfigItem]] | None = None,
  ):
    self.same_value_groups = same_value_groups or []
    self.different_value_pairs = different_value_pairs or []


class InstallPhaseOptimizer:
  """Calculates an installation order that respects all ordering constraints and minimizes
  the number of steps, so that each manager can batch as many GPUs as possible into one call."""
  managers: Sequence[ConfigManager]
  configs: Sequence[Sequence[ManagedConfigItem]]

  def __init__(self, configs: Sequence[Sequence[ManagedConfigItem]], managers: Sequence[ConfigManager]):
    self.managers = managers
    self.configs = configs

  def calc_install_steps(self) -> Sequence[InstallStep]:
    """Runs the solver repeatedly on a partially specified problem, adding constraints whenever
    a solution puts items of different managers at the same position."""
    solution: dict[ManagedConfigItem, int] = {}
    constraints: ExtraConstraints | None = ExtraConstraints()
    while constraints is not None:
      solution = self.solve(
        configs = self.configs,
        extra_constraints = constraints,
        is_iis_search = False,
      )
      constraints = self.adjust_constraints(solution, constraints)

    if not solution:
      return []

    execution_group_count = max(solution.values()) + 1
    execution_groups: list[list[ManagedConfigItem]] = [[] for i in range(execution_group_count)]
    for item in dict.fromkeys(item for config in self.configs for item in config):
      execution_groups[solution[item]].append(item)

    return [
      InstallStep(manager = self.manager_for(group[0]), items_to_install = group)
      for group in execution_groups if group
    ]

  def solve(
    self,
    is_iis_search: bool,
    configs: Sequence[Sequence[ManagedConfigItem]],
    extra_constraints: ExtraConstraints | None = None,
  ) -> dict[ManagedConfigItem, int]:
    extra_constraints = extra_constraints or ExtraConstraints()
    model = Model("gpupin")
    objective = model.addVar("objective", vtype = "I")

    # create a variable for each item
    items: list[ManagedConfigItem] = list(dict.fromkeys([item for config in configs for item in config]))
    item_to_pos_var: dict[ConfigItem, Variable] = {}
    for item in items:
      item_to_pos_var[item] = model.addVar(vtype = "I")

    # apply constraints enforcing the order within each group
    for config in configs:
      if not config:
        continue
      model.addCons(objective >= item_to_pos_var[config[-1]])
      for idx1, item1 in enumerate(config):
        for idx2, item2 in enumerate(config):
          if idx1 < idx2:
            pos1_var = item_to_pos_var[item1]
            pos2_var = item_to_pos_var[item2]
            distance = 1 if self.manager_for(item1) != self.manager_for(item2) else 0
            model.addCons(pos2_var - pos1_var >= distance)

    # apply the ordering constraints that are defined by the items themselves
    for subject in items:
      subject_pos = item_to_pos_var[subject]

      for after_element in subject.after:
        if isinstance(after_element, ManagedConfigItem):
          other_pos = item_to_pos_var.get(after_element, None)
          if other_pos is not None:
            model.addCons(subject_pos - other_pos >= 1)
        else:
          for other in [other for other in items if other != subject and after_element(other)]:
            model.addCons(subject_pos - item_to_pos_var[other] >= 1)

    # apply constraints that are added during the optimization process
    for bound_group in extra_constraints.same_value_groups:
      for item1, item2 in zip(bound_group[:-1], bound_group[1:]):
        model.addCons(item_to_pos_var[item1] == item_to_pos_var[item2])
    for item1, item2 in extra_constraints.different_value_pairs:
      model.addCons(abs(item_to_pos_var[item1] - item_to_pos_var[item2]) >= 1)

    model.hideOutput(True)
    model.setMinimize()
    model.setObjective(objective)
    if is_iis_search:
      model.setEmphasis(SCIP_PARAMEMPHASIS.FEASIBILITY)
    model.optimize()

    if model.getStatus() == "infeasible":
      raise InfeasibleError()

    sol = model.getBestSol()
    return dict((item, round(sol[item_to_pos_var[item]])) for item in items)

  def adjust_constraints(
    self,
    solution: dict[ManagedConfigItem, int],
    constraints: ExtraConstraints
  ) -> ExtraConstraints | None:
    """Checks the solution for steps that mix managers and adjusts future constraints accordingly."""
    items_by_pos: dict[int, list[ManagedConfigItem]] = defaultdict(list)
    for item, idx in solution.items():
      items_by_pos[idx].append(item)

    new_same_value_groups: list[list[ManagedConfigItem]] = []
    new_different_value_pairs = list(constraints.different_value_pairs)
    result = False
    for grouped in items_by_pos.values():
      items_by_manager: dict[ConfigManager, list[ManagedConfigItem]] = defaultdict(list)
      for other in grouped:
        items_by_manager[self.manager_for(other)].append(other)
      for items_for_manager in items_by_manager.values():
        new_same_value_groups.append(items_for_manager)
      subgroups = list(items_by_manager.values())
      for subgroup1, subgroup2 in zip(subgroups[:-1], subgroups[1:]):
        new_different_value_pairs.append((subgroup1[0], subgroup2[0]))
        result = True

    if result:
      return ExtraConstraints(new_same_value_groups, new_different_value_pairs)
    else:
      return None

  def find_iis(self) -> Sequence[ManagedConfigItem]:
    """Reduces the configs to an irreducible infeasible subset, to point the user at a circular dependency."""
    sys.stdout.write("calculating irreducible infeasible subset...")
    sys.stdout.flush()
    configs: Sequence[Sequence[ManagedConfigItem]] = self.configs

    # successively remove whole item classes
    item_classes = list(dict.fromkeys([item.__class__ for config in configs for item in config]))
    for item_class in item_classes:
      reduced_config = self.remove_item_class(configs, item_class)
      if not self.is_feasible(reduced_config):
        configs = reduced_config
      sys.stdout.write(".")
      sys.stdout.flush()

    # successively remove singular items
    for item in [item for config in configs for item in config]:
      reduced_config = self.remove_item(configs, item)
      if not self.is_feasible(reduced_config):
        configs = reduced_config
        sys.stdout.write(".")
        sys.stdout.flush()

    print()
    return list(dict.fromkeys([item for config in configs for item in config]))

  @classmethod
  def remove_item(cls, configs: Sequence[Sequence[ManagedConfigItem]], item: ManagedConfigItem) -> Sequence[Sequence[ManagedConfigItem]]:
    result: list[Sequence[ManagedConfigItem]] = []
    for config in configs:
      if item in config:
        reduced_items = [x for x in config if x != item]
        if reduced_items:
          result.append(reduced_items)
      else:
        result.append(config)
    return result

  @classmethod
  def remove_item_class(cls, configs: Sequence[Sequence[ManagedConfigItem]], item_class: type[ManagedConfigItem]) -> Sequence[Sequence[ManagedConfigItem]]:
    result: list[Sequence[ManagedConfigItem]] = []
    for config in configs:
      reduced_items = [x for x in config if x.__class__ != item_class]
      if len(reduced_items) != len(config):
        if reduced_items:
          result.append(reduced_items)
      else:
        result.append(config)
    return result

  def is_feasible(self, configs: Sequence[Sequence[ManagedConfigItem]]) -> bool:
    try:
      self.solve(configs = configs, is_iis_search = True)
      return True
    except InfeasibleError:
      return False

  def manager_for(self, item: ConfigItem) -> ConfigManager:
    for manager in self.managers:
      if item.__class__ in manager.managed_classes:
        return manager
    raise AssertionError(f"no manager found for {item}")
