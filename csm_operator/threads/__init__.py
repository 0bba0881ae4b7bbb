"""Import the ThreadBase and subclasses"""
# Local
from .base import ThreadBase
from .timer import TimerThread
from .watch import ResourceWatchThread
from .work_queue import RateLimitedWorkQueue, ResourceKey
from .workers import WorkerPool
