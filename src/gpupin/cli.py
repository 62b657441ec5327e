from __future__ import annotations

import argparse
import sys
from typing import Sequence

from gpupin.config import ConfigError, Settings, load_settings
from gpupin.core import GpuPin, managed_gpus, profile_configs, reset_configs
from gpupin.nvidia_smi import NvidiaSmi
from gpupin.presets import ConfigManagerPresets
from gpupin.status import print_status, query_status, status_json, verify_status
from gpupin.utils.colors import *
from gpupin.utils.error_handling import handle_ctrl_c, handle_tool_errors
from gpupin.utils.json_store import JsonStore

EXIT_VERIFY_FAILED = 1


def build_parser() -> argparse.ArgumentParser:
  common = argparse.ArgumentParser(add_help = False)
  common.add_argument('-c', '--config', type = str, default = None, help = 'KEY=VALUE config file (default: /etc/gpupin.conf)')
  common.add_argument('-i', '--gpu', type = str, default = None, help = 'GPU index or comma-separated list of indices')
  common.add_argument('--nvidia-smi', type = str, default = None, help = 'name or path of the nvidia-smi executable')

  parser = argparse.ArgumentParser(
    prog = 'gpupin',
    description = 'Pin NVIDIA GPU clocks and power limits through nvidia-smi.',
  )
  subparsers = parser.add_subparsers(dest = 'command', required = True)

  apply = subparsers.add_parser('apply', parents = [common], help = 'enable persistence mode, lock the graphics clock and set the power limit')
  apply.add_argument('-g', '--clock', type = str, default = None, help = 'graphics clock to lock, in MHz')
  apply.add_argument('-p', '--power-limit', type = str, default = None, help = 'power limit in watts (W)')
  apply.add_argument('--no-persistence', action = 'store_true', default = False, help = 'do not enable persistence mode')
  apply.add_argument('--state-file', type = str, default = None, help = 'where applied settings are recorded')
  apply.add_argument('-n', '--dry-run', action = 'store_true', default = False, help = 'only print the planned invocations')
  apply.add_argument('-y', '--yes', action = 'store_true', default = False, help = 'do not ask for confirmation')
  apply.add_argument('-s', '--summary', action = 'store_true', default = False, help = 'print the config summary')

  status = subparsers.add_parser('status', parents = [common], help = 'print performance state, clock, power and temperature')
  status.add_argument('--json', action = 'store_true', default = False, help = 'print the report as JSON')

  verify = subparsers.add_parser('verify', parents = [common], help = 'check the reported state against the expected values')
  verify.add_argument('-e', '--expect', type = str, default = None, help = 'acceptable P-states, e.g. P0,P2')
  verify.add_argument('-g', '--clock', type = str, default = None, help = 'graphics clock must not exceed this value (MHz)')
  verify.add_argument('-p', '--power-limit', type = str, default = None, help = 'reported power limit must match this value (W)')

  reset = subparsers.add_parser('reset', parents = [common], help = 'restore driver default clocks and power limits')
  reset.add_argument('--disable-persistence', action = 'store_true', default = False, help = 'also disable persistence mode')
  reset.add_argument('--state-file', type = str, default = None, help = 'where applied settings are recorded')
  reset.add_argument('-n', '--dry-run', action = 'store_true', default = False, help = 'only print the planned invocations')
  reset.add_argument('-y', '--yes', action = 'store_true', default = False, help = 'do not ask for confirmation')

  return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
  return load_settings(
    config_file = args.config,
    overrides = {
      "gpu": args.gpu,
      "clock": getattr(args, "clock", None),
      "power_limit": getattr(args, "power_limit", None),
      "persistence": False if getattr(args, "no_persistence", False) else None,
      "nvidia_smi": args.nvidia_smi,
      "state_file": getattr(args, "state_file", None),
      "expect_pstates": getattr(args, "expect", None),
    },
  )


def cmd_apply(args: argparse.Namespace, settings: Settings) -> int:
  if settings.clock is None:
    raise ConfigError("no clock given (use --clock or GPUPIN_CLOCK)")
  if settings.power_limit is None:
    raise ConfigError("no power limit given (use --power-limit or GPUPIN_POWER_LIMIT)")

  tool = NvidiaSmi(settings.nvidia_smi)
  store = JsonStore(settings.state_file)
  gpupin = GpuPin(
    tool = tool,
    managers = ConfigManagerPresets.nvidia(tool, store),
    configs = profile_configs(settings.gpus or [0], settings.clock, settings.power_limit, settings.persistence),
  )
  gpupin.run(dry_run = args.dry_run, assume_yes = args.yes, config_summary = args.summary)
  return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
  statuses = query_status(NvidiaSmi(settings.nvidia_smi), settings.gpus)
  if args.json:
    print(status_json(statuses))
  else:
    print_status(statuses, settings.expect_pstates)
  return 0


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
  statuses = query_status(NvidiaSmi(settings.nvidia_smi), settings.gpus)
  mismatches = verify_status(statuses, settings.expect_pstates, settings.clock, settings.power_limit)
  if not statuses:
    printc(f"{YELLOW}no GPUs reported")
    return EXIT_VERIFY_FAILED
  if mismatches:
    for mismatch in mismatches:
      printc(f"{RED}- {mismatch}")
    return EXIT_VERIFY_FAILED
  for status in statuses:
    printc(f"{GREEN}- {status}: ok ({status.pstate})")
  return 0


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
  tool = NvidiaSmi(settings.nvidia_smi)
  store = JsonStore(settings.state_file)
  gpus = settings.gpus or managed_gpus(store)
  if not gpus:
    print("no GPUs recorded as managed, nothing to reset (use --gpu to select GPUs explicitly)")
    return 0
  gpupin = GpuPin(
    tool = tool,
    managers = ConfigManagerPresets.nvidia(tool, store),
    configs = reset_configs(gpus, args.disable_persistence),
    mode = "reset",
  )
  gpupin.run(dry_run = args.dry_run, assume_yes = args.yes)
  return 0


COMMANDS = {
  "apply": cmd_apply,
  "status": cmd_status,
  "verify": cmd_verify,
  "reset": cmd_reset,
}


@handle_ctrl_c
@handle_tool_errors
def main(argv: Sequence[str] | None = None) -> int:
  args = build_parser().parse_args(argv)
  settings = settings_from_args(args)
  return COMMANDS[args.command](args, settings)


if __name__ == "__main__":
  sys.exit(main())
