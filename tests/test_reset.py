from __future__ import annotations

import json

from gpupin.cli import main

DEFAULT_LIMIT_QUERY = ["--query-gpu=index,power.default_limit", "--format=csv,noheader,nounits"]


def test_reset_restores_recorded_gpus(nvidia_smi, state_file):
  assert main(["apply", "--gpu", "0", "--clock", "2790", "--power-limit", "450", "--yes"]) == 0
  nvidia_smi.calls.clear()
  nvidia_smi.respond("--query-gpu", stdout = "0, 480.00\n")

  assert main(["reset", "--yes"]) == 0
  assert nvidia_smi.args == [
    ["-i", "0", *DEFAULT_LIMIT_QUERY],
    ["-i", "0", "-pl", "480.00"],
    ["-i", "0", "-rgc"],
  ]
  state = json.loads(state_file.read_text())
  assert state["clock_lock"] == {}
  assert state["power_limit"] == {}


def test_reset_disables_persistence_mode_last(nvidia_smi, state_file):
  assert main(["apply", "--gpu", "0,1", "--clock", "2790", "--power-limit", "450", "--yes"]) == 0
  assert json.loads(state_file.read_text())["persistence_mode"] == {"0": True, "1": True}
  nvidia_smi.calls.clear()
  nvidia_smi.respond("--query-gpu", stdout = "0, 450.00\n1, 450.00\n")
  assert main(["reset", "--gpu", "0,1", "--disable-persistence", "--yes"]) == 0
  assert nvidia_smi.args == [
    ["-i", "0,1", *DEFAULT_LIMIT_QUERY],
    ["-i", "0", "-pl", "450.00"],
    ["-i", "1", "-pl", "450.00"],
    ["-i", "0,1", "-rgc"],
    ["-i", "0,1", "-pm", "0"],
  ]
  state = json.loads(state_file.read_text())
  assert state["persistence_mode"] == {}
  assert state["clock_lock"] == {}
  assert state["power_limit"] == {}


def test_reset_skips_gpus_without_default_limit(nvidia_smi, capsys):
  nvidia_smi.respond("--query-gpu", stdout = "0, [N/A]\n")
  assert main(["reset", "--gpu", "0", "--yes"]) == 0
  assert nvidia_smi.args == [
    ["-i", "0", *DEFAULT_LIMIT_QUERY],
    ["-i", "0", "-rgc"],
  ]
  assert "GPU 0 reports no default power limit" in capsys.readouterr().out


def test_reset_without_managed_gpus(nvidia_smi, capsys):
  assert main(["reset", "--yes"]) == 0
  assert nvidia_smi.calls == []
  assert "nothing to reset" in capsys.readouterr().out


def test_reset_propagates_failure(nvidia_smi, capsys):
  nvidia_smi.respond("--query-gpu", stdout = "0, 450.00\n")
  nvidia_smi.respond("-rgc", returncode = 3, stderr = "Setting locked clocks is not supported for GPU 00000000:01:00.0.\n")
  assert main(["reset", "--gpu", "0", "--yes"]) == 3
  assert capsys.readouterr().err == "Setting locked clocks is not supported for GPU 00000000:01:00.0.\n"


def test_reset_dry_run_shows_default_limit_placeholder(nvidia_smi, capsys):
  assert main(["reset", "--gpu", "0,1", "--dry-run"]) == 0
  assert nvidia_smi.calls == []
  out = capsys.readouterr().out
  assert "nvidia-smi -i 0 -pl <power.default_limit> (per GPU)" in out
  assert "'<power.default_limit>'" not in out
