from __future__ import annotations

import os
from typing import Any, Mapping

DEFAULT_CONFIG_FILE = "/etc/gpupin.conf"
DEFAULT_STATE_FILE = "/var/cache/gpupin/gpupin.json"
DEFAULT_EXPECT_PSTATES = ["P0", "P1", "P2"]
ENV_PREFIX = "GPUPIN_"

TRUE_VALUES = ('true', '1', 'yes', 'y', 'on')
FALSE_VALUES = ('false', '0', 'no', 'n', 'off')


class ConfigError(Exception):
  pass


class Settings:
  """Effective settings after combining command line, environment and config file."""
  gpus: list[int] | None
  clock: int | None
  power_limit: int | None
  persistence: bool
  nvidia_smi: str
  state_file: str
  expect_pstates: list[str]

  def __init__(
    self,
    gpus: list[int] | None = None,
    clock: int | None = None,
    power_limit: int | None = None,
    persistence: bool = True,
    nvidia_smi: str = "nvidia-smi",
    state_file: str = DEFAULT_STATE_FILE,
    expect_pstates: list[str] | None = None,
  ):
    self.gpus = gpus
    self.clock = clock
    self.power_limit = power_limit
    self.persistence = persistence
    self.nvidia_smi = nvidia_smi
    self.state_file = state_file
    self.expect_pstates = expect_pstates or list(DEFAULT_EXPECT_PSTATES)

  def __repr__(self) -> str:
    return (
      f"Settings(gpus = {self.gpus}, clock = {self.clock}, power_limit = {self.power_limit}, "
      f"persistence = {self.persistence}, nvidia_smi = '{self.nvidia_smi}')"
    )


def load_env_file(file_path: str) -> dict[str, str]:
  """Reads KEY=VALUE lines. Empty lines and lines starting with # are ignored,
  values may be wrapped in single or double quotes."""
  result: dict[str, str] = {}
  with open(file_path, encoding = 'utf-8') as fh:
    for lineno, line in enumerate(fh, start = 1):
      line = line.strip()
      if not line or line.startswith('#'):
        continue
      if '=' not in line:
        raise ConfigError(f"{file_path}:{lineno}: expected KEY=VALUE, got '{line}'")
      key, value = line.split('=', 1)
      key, value = key.strip(), value.strip()
      if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        value = value[1:-1]
      result[key] = value
  return result


def parse_gpus(value: str) -> list[int]:
  gpus: list[int] = []
  for part in value.split(","):
    part = part.strip()
    if not part:
      continue
    try:
      gpu = int(part)
    except ValueError:
      raise ConfigError(f"invalid GPU index: '{part}'")
    if gpu < 0:
      raise ConfigError(f"invalid GPU index: {gpu}")
    if gpu not in gpus:
      gpus.append(gpu)
  if not gpus:
    raise ConfigError(f"no GPU index given in '{value}'")
  return gpus


def parse_positive_int(name: str, value: str | int) -> int:
  try:
    result = int(value)
  except ValueError:
    raise ConfigError(f"{name} must be an integer, got '{value}'")
  if result <= 0:
    raise ConfigError(f"{name} must be positive, got {result}")
  return result


def parse_bool(name: str, value: str | bool) -> bool:
  if isinstance(value, bool):
    return value
  if value.strip().lower() in TRUE_VALUES:
    return True
  if value.strip().lower() in FALSE_VALUES:
    return False
  raise ConfigError(f"{name} must be a boolean, got '{value}'")


def parse_pstates(value: str) -> list[str]:
  pstates = [part.strip().upper() for part in value.split(",") if part.strip()]
  if not pstates:
    raise ConfigError("at least one acceptable P-state is required")
  for pstate in pstates:
    if not (pstate.startswith("P") and pstate[1:].isdigit()):
      raise ConfigError(f"invalid P-state: '{pstate}'")
  return pstates


def load_settings(
  config_file: str | None = None,
  environ: Mapping[str, str] | None = None,
  overrides: Mapping[str, Any] | None = None,
) -> Settings:
  """Merges all configuration layers. Precedence: overrides (command line) > environment > config file."""
  environ = os.environ if environ is None else environ
  overrides = {key: value for key, value in (overrides or {}).items() if value is not None}

  explicit_file = config_file or environ.get(f"{ENV_PREFIX}CONFIG")
  file_values: dict[str, str] = {}
  if explicit_file:
    try:
      file_values = load_env_file(explicit_file)
    except OSError as e:
      raise ConfigError(f"unable to read config file {explicit_file}: {e.strerror}")
  elif os.path.isfile(DEFAULT_CONFIG_FILE):
    file_values = load_env_file(DEFAULT_CONFIG_FILE)

  def lookup(key: str) -> Any:
    if key in overrides:
      return overrides[key]
    env_key = f"{ENV_PREFIX}{key.upper()}"
    if env_key in environ:
      return environ[env_key]
    return file_values.get(env_key, None)

  settings = Settings()
  gpus = lookup("gpu")
  if gpus is not None:
    settings.gpus = parse_gpus(gpus) if isinstance(gpus, str) else parse_gpus(",".join(str(gpu) for gpu in gpus))
  clock = lookup("clock")
  if clock is not None:
    settings.clock = parse_positive_int("clock", clock)
  power_limit = lookup("power_limit")
  if power_limit is not None:
    settings.power_limit = parse_positive_int("power limit", power_limit)
  persistence = lookup("persistence")
  if persistence is not None:
    settings.persistence = parse_bool("persistence", persistence)
  nvidia_smi = lookup("nvidia_smi")
  if nvidia_smi:
    settings.nvidia_smi = nvidia_smi
  state_file = lookup("state_file")
  if state_file:
    settings.state_file = state_file
  expect_pstates = lookup("expect_pstates")
  if expect_pstates is not None:
    settings.expect_pstates = parse_pstates(expect_pstates)
  return settings
