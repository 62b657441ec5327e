from __future__ import annotations

from typing import Sequence

from gpupin.utils.shell import locate, shell, shell_output


def gpu_selector(gpus: Sequence[int]) -> str:
  return ",".join(str(gpu) for gpu in gpus)


class NvidiaSmi:
  """Builds and runs nvidia-smi invocations. Values are passed through exactly as given;
  privilege and capability checks are left to nvidia-smi itself."""
  executable: str
  path: str | None

  def __init__(self, executable: str = "nvidia-smi"):
    self.executable = executable
    self.path = None

  def resolve(self) -> str:
    """Looks up the executable once. Raises ToolNotFoundError if it isn't available."""
    if self.path is None:
      self.path = locate(self.executable)
    return self.path

  def command(self, gpus: Sequence[int] | None, *args: str) -> list[str]:
    argv = [self.path or self.executable]
    if gpus:
      argv += ["-i", gpu_selector(gpus)]
    return [*argv, *args]

  def persistence_mode_command(self, gpus: Sequence[int], enabled: bool) -> list[str]:
    return self.command(gpus, "-pm", "1" if enabled else "0")

  def lock_gpu_clocks_command(self, gpus: Sequence[int], clock: int) -> list[str]:
    return self.command(gpus, "-lgc", f"{clock},{clock}")

  def reset_gpu_clocks_command(self, gpus: Sequence[int]) -> list[str]:
    return self.command(gpus, "-rgc")

  def power_limit_command(self, gpus: Sequence[int], watts: int | str) -> list[str]:
    return self.command(gpus, "-pl", str(watts))

  def query_command(self, gpus: Sequence[int] | None, fields: Sequence[str]) -> list[str]:
    return self.command(gpus, f"--query-gpu={','.join(fields)}", "--format=csv,noheader,nounits")

  def run(self, argv: Sequence[str]):
    self.resolve()
    shell([self.path or self.executable, *argv[1:]])

  def query(self, gpus: Sequence[int] | None, fields: Sequence[str]) -> str:
    self.resolve()
    return shell_output(self.query_command(gpus, fields))
