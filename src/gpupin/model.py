from __future__ import annotations

from abc import ABCMeta, abstractmethod
from typing import Any, Callable, Generator, Generic, Iterable, Literal, Sequence, Type, TypeAlias, TypedDict, TypeVar

Phase: TypeAlias = Literal["planning", "execution"]


class ConfigItem(metaclass = ABCMeta):
  tags: set[str] = set()

  def __init__(self, tags: Iterable[str] | str | None = None):
    self.tags = {tags} if isinstance(tags, str) else {*(tags or [])}

  @abstractmethod
  def __str__(self):
    """Used whenever this item gets printed (during planning and in logs/exceptions). Items
    that are different with respect to __eq__ must also return different string representations."""
    pass

  def __eq__(self, other: Any) -> bool:
    """Returns true if the two objects refer to the same setting (with possibly differing values).
    Multiple ConfigItems that are equal will be merged together."""
    return str(self) == str(other)

  def __hash__(self):
    return hash(str(self))

  @abstractmethod
  def merge(self, other: ConfigItem) -> ConfigItem:
    """Called whenever there are multiple items with the same identifier. Merges those
    definitions together or raises an AssertionError if they're incompatible."""
    raise NotImplementedError(f"method not implemented: {self.__class__.__name__}.merge()")


class ManagedConfigItemBaseArgs(TypedDict, total = False):
  """Convenience type to avoid repetition in implemenations."""
  tags: Iterable[str] | str | None
  after: ManagedConfigItem | Iterable[ManagedConfigItem] | Callable[[ManagedConfigItem], bool] | None


class ManagedConfigItem(ConfigItem, metaclass = ABCMeta):
  """ConfigItems that are applied to a GPU. Each class requires a corresponding ConfigManager."""
  after: Sequence[ManagedConfigItem | Callable[[ManagedConfigItem], bool]]

  def __init__(
    self,
    tags: Iterable[str] | str | None = None,
    after: ManagedConfigItem | Iterable[ManagedConfigItem] | Callable[[ManagedConfigItem], bool] | None = None,
  ):
    super().__init__(tags)
    self.after = self.init_after(after)

  @classmethod
  def init_after(cls, arg: ManagedConfigItem | Iterable[ManagedConfigItem] | Callable[[ManagedConfigItem], bool] | None) -> Sequence[ManagedConfigItem | Callable[[ManagedConfigItem], bool]]:
    if arg is None:
      return []
    if isinstance(arg, ManagedConfigItem):
      return [arg]
    if callable(arg):
      return [arg]
    return list(arg)

  @staticmethod
  def merge_base_attrs(item1: ManagedConfigItem, item2: ManagedConfigItem) -> dict[str, Any]:
    return {
      "tags": item1.tags.union(item2.tags),
      "after": [*item1.after, *item2.after],
    }


T = TypeVar("T", bound = "ManagedConfigItem")


class ConfigManager(Generic[T], metaclass = ABCMeta):
  managed_classes: list[Type] = []

  @abstractmethod
  def assert_installable(self, item: T, model: ConfigModel):
    """Checks that an item is fully configured before anything gets applied."""
    pass

  @abstractmethod
  def get_install_actions(self, items_to_check: Sequence[T], model: ConfigModel, phase: Phase) -> Generator[Action]:
    """Returns the actions needed to apply the given items, in execution order."""
    pass

  @abstractmethod
  def get_reset_actions(self, items_to_reset: Sequence[T], model: ConfigModel, phase: Phase) -> Generator[Action]:
    """Returns the actions that revert the given items to the driver defaults."""
    pass

  def initialize(self, model: ConfigModel, phase: Phase):
    """Called at the start of a run."""
    pass

  def finalize(self, model: ConfigModel, phase: Phase):
    """Called at the end of a run, after all actions succeeded."""
    pass


class Action:
  """Represents a single invocation that applies (or resets) one or multiple ManagedConfigItems."""
  installs: Sequence[ManagedConfigItem]
  removes: Sequence[ManagedConfigItem]
  execute: Callable[[], None]
  description: str
  additional_info: list[str]

  def __init__(
    self,
    description: str,
    execute: Callable[[], None],
    additional_info: list[str] | str | None = None,
    installs: Sequence[ManagedConfigItem] | None = None,
    removes: Sequence[ManagedConfigItem] | None = None,
  ):
    self.installs = installs or []
    self.removes = removes or []
    self.description = description
    self.execute = execute
    self.additional_info = [additional_info] if isinstance(additional_info, str) else (additional_info or [])

  def is_covered_by(self, other: Action) -> bool:
    if not (set(self.installs) <= set(other.installs)):
      return False
    if not (set(self.removes) <= set(other.removes)):
      return False
    return True


class ExecutionPlan:
  """The result of the planning phase. It contains the ConfigModel and all actions that are expected
  to be run during execute(). Additional actions showing up during execution have to be confirmed."""
  model: ConfigModel
  expected_actions: Sequence[Action]

  def __init__(self, model: ConfigModel, expected_actions: Sequence[Action]):
    self.model = model
    self.expected_actions = expected_actions


class ConfigGroup:
  """A named set of items, usually all settings for one GPU."""
  description: str
  provides: Sequence[ConfigItem]

  def __init__(self, description: str, provides: Sequence[ConfigItem | None]):
    self.description = description
    self.provides = [item for item in provides if item is not None]

  def __str__(self):
    return f"ConfigGroup('{self.description}')"


class ConfigModel:
  """Models the target state and the install steps of a run."""
  configs: Sequence[ConfigGroup]
  steps: Sequence[InstallStep]

  def __init__(
    self,
    configs: Sequence[ConfigGroup],
    steps: Sequence[InstallStep],
  ):
    self.configs = configs
    self.steps = steps


class InstallStep:
  manager: ConfigManager
  items_to_install: Sequence[ManagedConfigItem]

  def __init__(self, manager: ConfigManager, items_to_install: Sequence[ManagedConfigItem]):
    self.items_to_install = items_to_install
    self.manager = manager
