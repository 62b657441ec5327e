from __future__ import annotations

import sys
from shlex import join
from shutil import which
from subprocess import CompletedProcess, run
from typing import Sequence

verbose_mode: bool = False


class ToolNotFoundError(Exception):
  tool: str

  def __init__(self, tool: str):
    super().__init__(f"tool not found: {tool}")
    self.tool = tool


class CommandFailedError(Exception):
  """Raised when an external command exits with a non-zero status. Keeps the original
  exit status and output so callers can pass them on unchanged."""
  argv: list[str]
  returncode: int
  stdout: str
  stderr: str

  def __init__(self, argv: Sequence[str], returncode: int, stdout: str, stderr: str):
    super().__init__(f"command failed with exit status {returncode}: {join(argv)}")
    self.argv = list(argv)
    self.returncode = returncode
    self.stdout = stdout
    self.stderr = stderr


def locate(tool: str) -> str:
  path = which(tool)
  if path is None:
    raise ToolNotFoundError(tool)
  return path


def shell(argv: Sequence[str], check: bool = True) -> CompletedProcess[str]:
  if verbose_mode:
    print(f"$ {join(argv)}")
  try:
    result = run(
      list(argv),
      check = False,
      capture_output = True,
      universal_newlines = True,
    )
  except FileNotFoundError:
    raise ToolNotFoundError(argv[0])
  if verbose_mode and result.stdout.strip():
    print(result.stdout.rstrip())
  if check and result.returncode != 0:
    raise CommandFailedError(argv, result.returncode, result.stdout, result.stderr)
  # warnings of successful calls are passed on as well, failures carry theirs in the exception
  if result.stderr:
    sys.stderr.write(result.stderr)
    sys.stderr.flush()
  return result


def shell_output(argv: Sequence[str], check: bool = True) -> str:
  return shell(argv, check = check).stdout.strip()
