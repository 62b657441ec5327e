from gpupin.items.clock_lock import ClockLock
from gpupin.items.persistence_mode import PersistenceMode
from gpupin.items.power_limit import PowerLimit
