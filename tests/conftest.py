from __future__ import annotations

from subprocess import CompletedProcess

import pytest

import gpupin.config
import gpupin.utils.shell
from gpupin.utils.logging import logger

NVIDIA_SMI = "/usr/bin/nvidia-smi"

STATUS_CSV = (
  "0, NVIDIA GeForce RTX 4090, P0, 2790, 312.45, 450.00, 61, Enabled\n"
  "1, NVIDIA GeForce RTX 4090, P8, 210, 21.30, 450.00, 34, Disabled\n"
)


class FakeNvidiaSmi:
  """Stands in for subprocess.run and records every invocation."""
  calls: list[list[str]]
  responses: list[tuple[str, int, str, str]]

  def __init__(self):
    self.calls = []
    self.responses = []

  def respond(self, match: str, returncode: int = 0, stdout: str = "", stderr: str = ""):
    """Invocations with an argument starting with `match` get the given result."""
    self.responses.append((match, returncode, stdout, stderr))

  def __call__(self, argv, **kwargs) -> CompletedProcess[str]:
    self.calls.append(list(argv))
    for match, returncode, stdout, stderr in self.responses:
      if any(arg.startswith(match) for arg in argv[1:]):
        return CompletedProcess(argv, returncode, stdout, stderr)
    return CompletedProcess(argv, 0, "", "")

  @property
  def args(self) -> list[list[str]]:
    return [call[1:] for call in self.calls]


@pytest.fixture
def state_file(tmp_path):
  return tmp_path / "state.json"


@pytest.fixture
def nvidia_smi(monkeypatch, tmp_path, state_file) -> FakeNvidiaSmi:
  fake = FakeNvidiaSmi()
  monkeypatch.setattr(gpupin.utils.shell, "run", fake)
  monkeypatch.setattr(gpupin.utils.shell, "which", lambda tool: NVIDIA_SMI if tool == "nvidia-smi" else None)
  monkeypatch.setattr(gpupin.config, "DEFAULT_CONFIG_FILE", str(tmp_path / "missing.conf"))
  for key in ["CONFIG", "GPU", "CLOCK", "POWER_LIMIT", "PERSISTENCE", "NVIDIA_SMI", "STATE_FILE", "EXPECT_PSTATES"]:
    monkeypatch.delenv(f"GPUPIN_{key}", raising = False)
  monkeypatch.setenv("GPUPIN_STATE_FILE", str(state_file))
  logger.clear()
  return fake


@pytest.fixture
def missing_nvidia_smi(nvidia_smi, monkeypatch) -> FakeNvidiaSmi:
  monkeypatch.setattr(gpupin.utils.shell, "which", lambda tool: None)
  return nvidia_smi


@pytest.fixture
def status_csv() -> str:
  return STATUS_CSV
