from gpupin.core import GpuPin, managed_gpus, profile_configs, reset_configs
from gpupin.items import *
from gpupin.model import Action, ConfigGroup, ConfigModel, ExecutionPlan
from gpupin.nvidia_smi import NvidiaSmi
from gpupin.presets import ConfigManagerPresets
