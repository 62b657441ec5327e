from gpupin.managers import *
from gpupin.model import ConfigManager
from gpupin.nvidia_smi import NvidiaSmi
from gpupin.utils.json_store import JsonStore


class ConfigManagerPresets:

  @staticmethod
  def nvidia(tool: NvidiaSmi, store: JsonStore) -> list[ConfigManager]:
    return [
      PersistenceModeManager(tool, store),
      ClockLockManager(tool, store),
      PowerLimitManager(tool, store),
    ]
