from __future__ import annotations

import sys
from functools import wraps
from typing import Any, Callable, TypeVar, cast

from gpupin.config import ConfigError
from gpupin.utils.colors import RED, ENDC
from gpupin.utils.json_store import StateStoreError
from gpupin.utils.shell import CommandFailedError, ToolNotFoundError

FuncT = TypeVar("FuncT", bound = Callable[..., Any])

EXIT_CONFIG_ERROR = 2
EXIT_TOOL_NOT_FOUND = 127
EXIT_STATE_ERROR = 1


def handle_ctrl_c(func: FuncT) -> FuncT:
  @wraps(func)
  def wrapped(*args: Any, **kwargs: Any) -> Any:
    try:
      return func(*args, **kwargs)
    except KeyboardInterrupt:
      print()
      raise SystemExit("process interrupted by user")

  return cast(FuncT, wrapped)


def handle_tool_errors(func: Callable[..., int]) -> Callable[..., int]:
  """Turns the known failure modes into exit statuses. A failing nvidia-smi call keeps
  its own exit status and its stderr is passed on verbatim."""

  @wraps(func)
  def wrapped(*args: Any, **kwargs: Any) -> int:
    try:
      return func(*args, **kwargs)
    except ToolNotFoundError as e:
      print(f"{RED}{e}{ENDC}", file = sys.stderr)
      return EXIT_TOOL_NOT_FOUND
    except CommandFailedError as e:
      sys.stderr.write(e.stderr)
      sys.stderr.flush()
      return e.returncode
    except ConfigError as e:
      print(f"{RED}configuration error: {e}{ENDC}", file = sys.stderr)
      return EXIT_CONFIG_ERROR
    except StateStoreError as e:
      print(f"{RED}{e}{ENDC}", file = sys.stderr)
      return EXIT_STATE_ERROR
    except AssertionError as e:
      print(f"{RED}{e}{ENDC}", file = sys.stderr)
      return 1

  return wrapped
