from __future__ import annotations

from pathlib import Path

import pytest

import gpupin.config
from gpupin.config import ConfigError, load_env_file, load_settings


@pytest.fixture
def config_file(tmp_path):
  path = tmp_path / "gpupin.conf"
  path.write_text(
    "# clock profile for the training box\n"
    "GPUPIN_GPU=0,1\n"
    "GPUPIN_CLOCK=\"2790\"\n"
    "GPUPIN_POWER_LIMIT='450'\n"
    "\n"
    "GPUPIN_PERSISTENCE=yes\n"
  )
  return path


def test_load_env_file(config_file):
  assert load_env_file(str(config_file)) == {
    "GPUPIN_GPU": "0,1",
    "GPUPIN_CLOCK": "2790",
    "GPUPIN_POWER_LIMIT": "450",
    "GPUPIN_PERSISTENCE": "yes",
  }


def test_load_env_file_rejects_malformed_lines(tmp_path):
  path = tmp_path / "broken.conf"
  path.write_text("GPUPIN_CLOCK 2790\n")
  with pytest.raises(ConfigError, match = "broken.conf:1"):
    load_env_file(str(path))


def test_settings_from_config_file(config_file):
  settings = load_settings(config_file = str(config_file), environ = {})
  assert settings.gpus == [0, 1]
  assert settings.clock == 2790
  assert settings.power_limit == 450
  assert settings.persistence is True


def test_environment_overrides_config_file(config_file):
  settings = load_settings(
    environ = {"GPUPIN_CONFIG": str(config_file), "GPUPIN_CLOCK": "1710", "GPUPIN_PERSISTENCE": "off"},
  )
  assert settings.clock == 1710
  assert settings.power_limit == 450
  assert settings.persistence is False


def test_command_line_overrides_environment(config_file):
  settings = load_settings(
    config_file = str(config_file),
    environ = {"GPUPIN_POWER_LIMIT": "300"},
    overrides = {"power_limit": "220", "clock": None, "gpu": "2"},
  )
  assert settings.power_limit == 220
  assert settings.clock == 2790
  assert settings.gpus == [2]


def test_defaults(monkeypatch, tmp_path):
  monkeypatch.setattr(gpupin.config, "DEFAULT_CONFIG_FILE", str(tmp_path / "missing.conf"))
  settings = load_settings(environ = {})
  assert settings.gpus is None
  assert settings.clock is None
  assert settings.power_limit is None
  assert settings.persistence is True
  assert settings.nvidia_smi == "nvidia-smi"
  assert settings.expect_pstates == ["P0", "P1", "P2"]


def test_missing_explicit_config_file(tmp_path):
  with pytest.raises(ConfigError, match = "unable to read config file"):
    load_settings(config_file = str(tmp_path / "nope.conf"), environ = {})


@pytest.mark.parametrize("key, value", [
  ("GPUPIN_CLOCK", "0"),
  ("GPUPIN_CLOCK", "2790MHz"),
  ("GPUPIN_POWER_LIMIT", "-450"),
  ("GPUPIN_GPU", "zero"),
  ("GPUPIN_GPU", ","),
  ("GPUPIN_PERSISTENCE", "maybe"),
  ("GPUPIN_EXPECT_PSTATES", "fast"),
])
def test_invalid_values(monkeypatch, tmp_path, key, value):
  monkeypatch.setattr(gpupin.config, "DEFAULT_CONFIG_FILE", str(tmp_path / "missing.conf"))
  with pytest.raises(ConfigError):
    load_settings(environ = {key: value})


def test_duplicate_gpu_indices_are_collapsed(monkeypatch, tmp_path):
  monkeypatch.setattr(gpupin.config, "DEFAULT_CONFIG_FILE", str(tmp_path / "missing.conf"))
  settings = load_settings(environ = {}, overrides = {"gpu": "1, 0, 1"})
  assert settings.gpus == [1, 0]


def test_example_config():
  example = Path(__file__).parent.parent / "example" / "gpupin.conf"
  settings = load_settings(config_file = str(example), environ = {})
  assert settings.gpus == [0, 1]
  assert settings.clock == 2790
  assert settings.power_limit == 450
  assert settings.expect_pstates == ["P0", "P2"]
