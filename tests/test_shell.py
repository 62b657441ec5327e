from __future__ import annotations

import json

import pytest

import gpupin.utils.shell
from gpupin.core import managed_gpus
from gpupin.nvidia_smi import NvidiaSmi
from gpupin.utils.json_store import JsonStore, StateStoreError
from gpupin.utils.shell import CommandFailedError, ToolNotFoundError, shell


def test_shell_raises_with_original_status(nvidia_smi):
  nvidia_smi.respond("-pl", returncode = 6, stdout = "", stderr = "Provided power limit 9000.00 W is not a valid power limit\n")
  with pytest.raises(CommandFailedError) as exc_info:
    shell(["nvidia-smi", "-pl", "9000"])
  assert exc_info.value.returncode == 6
  assert exc_info.value.stderr == "Provided power limit 9000.00 W is not a valid power limit\n"
  assert exc_info.value.argv == ["nvidia-smi", "-pl", "9000"]


def test_shell_passes_on_stderr_of_successful_calls(nvidia_smi, capsys):
  nvidia_smi.respond("-pm", stdout = "Enabled persistence mode for GPU 00000000:01:00.0.\n", stderr = "Warning: persistence mode is disabled on device 00000000:02:00.0.\n")
  assert shell(["nvidia-smi", "-pm", "1"]).returncode == 0
  captured = capsys.readouterr()
  assert captured.err == "Warning: persistence mode is disabled on device 00000000:02:00.0.\n"
  assert captured.out == ""


def test_vanished_executable_is_reported_as_missing(monkeypatch):
  def run(argv, **kwargs):
    raise FileNotFoundError(argv[0])
  monkeypatch.setattr(gpupin.utils.shell, "run", run)
  with pytest.raises(ToolNotFoundError):
    shell(["/opt/nvidia/nvidia-smi", "-q"])


def test_tool_resolves_configured_executable(nvidia_smi, monkeypatch):
  monkeypatch.setattr(gpupin.utils.shell, "which", lambda tool: "/opt/nvidia/bin/nvidia-smi" if tool == "/opt/nvidia/bin/nvidia-smi" else None)
  tool = NvidiaSmi("/opt/nvidia/bin/nvidia-smi")
  tool.run(tool.persistence_mode_command([0], enabled = True))
  assert nvidia_smi.calls == [["/opt/nvidia/bin/nvidia-smi", "-i", "0", "-pm", "1"]]
  with pytest.raises(ToolNotFoundError):
    NvidiaSmi("nvidia-smi").resolve()


def test_json_store_roundtrip(tmp_path):
  store_file = tmp_path / "cache" / "gpupin.json"
  store = JsonStore(str(store_file))
  store.mapping("clock_lock").update({"0": 2790, "1": 1710})
  store.mapping("clock_lock").update({"1": None})
  assert JsonStore(str(store_file)).mapping("clock_lock").keys() == ["0"]
  assert json.loads(store_file.read_text()) == {"clock_lock": {"0": 2790}}


def test_managed_gpus_are_read_from_clock_and_power_mappings(tmp_path):
  store = JsonStore(str(tmp_path / "gpupin.json"))
  store.mapping("persistence_mode").update({"3": True})
  store.mapping("clock_lock").update({"1": 2790})
  store.mapping("power_limit").update({"0": 450, "1": 450})
  assert managed_gpus(store) == [0, 1]


def test_json_store_ignores_unreadable_file(tmp_path):
  store_file = tmp_path / "gpupin.json"
  store_file.write_text("{not json")
  store = JsonStore(str(store_file))
  assert store.store == {}
  assert store.mapping("clock_lock").keys() == []


def test_json_store_reports_write_failures(tmp_path):
  blocker = tmp_path / "blocker"
  blocker.write_text("")
  store = JsonStore(str(blocker / "gpupin.json"))
  with pytest.raises(StateStoreError, match = "unable to write state file"):
    store.mapping("clock_lock").update({"0": 2790})
