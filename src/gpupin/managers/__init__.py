from gpupin.managers.clock_lock import ClockLockManager
from gpupin.managers.persistence_mode import PersistenceModeManager
from gpupin.managers.power_limit import PowerLimitManager
