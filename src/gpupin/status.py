from __future__ import annotations

import csv
import io
import json
from typing import Any, Sequence

from gpupin.nvidia_smi import NvidiaSmi
from gpupin.utils.colors import *

STATUS_FIELDS = [
  "index",
  "name",
  "pstate",
  "clocks.gr",
  "power.draw",
  "power.limit",
  "temperature.gpu",
  "persistence_mode",
]

UNAVAILABLE_VALUES = ("[N/A]", "N/A", "[Not Supported]", "[Unknown Error]", "")

# nvidia-smi prints power values with two decimals
POWER_LIMIT_TOLERANCE = 0.5


def parse_csv(text: str) -> list[list[str | None]]:
  """Parses the output of --format=csv,noheader,nounits. Unavailable values become None."""
  rows: list[list[str | None]] = []
  for row in csv.reader(io.StringIO(text), skipinitialspace = True):
    if not row:
      continue
    rows.append([None if value.strip() in UNAVAILABLE_VALUES else value.strip() for value in row])
  return rows


def to_float(value: str | None) -> float | None:
  if value is None:
    return None
  try:
    return float(value)
  except ValueError:
    return None


def to_int(value: str | None) -> int | None:
  number = to_float(value)
  return round(number) if number is not None else None


class GpuStatus:
  index: int
  name: str | None
  pstate: str | None
  clock_mhz: int | None
  power_draw_w: float | None
  power_limit_w: float | None
  temperature_c: int | None
  persistence_mode: bool | None

  def __init__(
    self,
    index: int,
    name: str | None = None,
    pstate: str | None = None,
    clock_mhz: int | None = None,
    power_draw_w: float | None = None,
    power_limit_w: float | None = None,
    temperature_c: int | None = None,
    persistence_mode: bool | None = None,
  ):
    self.index = index
    self.name = name
    self.pstate = pstate
    self.clock_mhz = clock_mhz
    self.power_draw_w = power_draw_w
    self.power_limit_w = power_limit_w
    self.temperature_c = temperature_c
    self.persistence_mode = persistence_mode

  @classmethod
  def from_row(cls, row: Sequence[str | None]) -> GpuStatus:
    if len(row) != len(STATUS_FIELDS):
      raise ValueError(f"expected {len(STATUS_FIELDS)} fields, got {len(row)}: {row}")
    index, name, pstate, clock, power_draw, power_limit, temperature, persistence = row
    if index is None:
      raise ValueError(f"missing GPU index: {row}")
    return GpuStatus(
      index = int(index),
      name = name,
      pstate = pstate,
      clock_mhz = to_int(clock),
      power_draw_w = to_float(power_draw),
      power_limit_w = to_float(power_limit),
      temperature_c = to_int(temperature),
      persistence_mode = (persistence.lower() == "enabled") if persistence is not None else None,
    )

  def to_dict(self) -> dict[str, Any]:
    return {
      "index": self.index,
      "name": self.name,
      "pstate": self.pstate,
      "clock_mhz": self.clock_mhz,
      "power_draw_w": self.power_draw_w,
      "power_limit_w": self.power_limit_w,
      "temperature_c": self.temperature_c,
      "persistence_mode": self.persistence_mode,
    }

  def __str__(self) -> str:
    return f"GPU {self.index} ({self.name or 'unknown'})"


def query_status(tool: NvidiaSmi, gpus: Sequence[int] | None = None) -> list[GpuStatus]:
  """Runs a single read-only query for all (or the selected) GPUs."""
  return [GpuStatus.from_row(row) for row in parse_csv(tool.query(gpus, STATUS_FIELDS))]


def verify_status(
  statuses: Sequence[GpuStatus],
  expect_pstates: Sequence[str],
  clock: int | None = None,
  power_limit: int | None = None,
) -> list[str]:
  """Compares the reported state against the expectations and returns all mismatches."""
  mismatches: list[str] = []
  for status in statuses:
    if status.pstate not in expect_pstates:
      mismatches.append(f"{status}: performance state {status.pstate or 'unknown'}, expected one of {', '.join(expect_pstates)}")
    if clock is not None and (status.clock_mhz is None or status.clock_mhz > clock):
      mismatches.append(f"{status}: graphics clock {fmt(status.clock_mhz, 'MHz')}, expected at most {clock} MHz")
    if power_limit is not None and (status.power_limit_w is None or abs(status.power_limit_w - power_limit) > POWER_LIMIT_TOLERANCE):
      mismatches.append(f"{status}: power limit {fmt(status.power_limit_w, 'W')}, expected {power_limit} W")
  return mismatches


def fmt(value: Any, unit: str) -> str:
  if value is None:
    return "n/a"
  if isinstance(value, float):
    return f"{value:.2f} {unit}"
  return f"{value} {unit}"


def print_status(statuses: Sequence[GpuStatus], expect_pstates: Sequence[str]):
  for status in statuses:
    pstate_color = GREEN if status.pstate in expect_pstates else YELLOW
    persistence = {True: "enabled", False: "disabled", None: "n/a"}[status.persistence_mode]
    printc(f"{BOLD}{status}")
    printc(f"  performance state: {pstate_color}{status.pstate or 'n/a'}")
    printc(f"  graphics clock:    {fmt(status.clock_mhz, 'MHz')}")
    printc(f"  power draw:        {fmt(status.power_draw_w, 'W')} / {fmt(status.power_limit_w, 'W')}")
    printc(f"  temperature:       {fmt(status.temperature_c, '°C')}")
    printc(f"  persistence mode:  {persistence}")


def status_json(statuses: Sequence[GpuStatus]) -> str:
  return json.dumps([status.to_dict() for status in statuses], indent = 2)
