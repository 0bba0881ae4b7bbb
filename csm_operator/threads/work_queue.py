"""
A rate limited work queue of resource keys. A key is never handed to two
workers at once and is queued at most once while it waits.
"""

# Standard
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional, Set
import threading

# First Party
import alog

# Local
from .. import config
from .timer import TimerThread

log = alog.use_channel("WRKQUE")


@dataclass(frozen=True)
class ResourceKey:
    """Identity of a managed resource in the queue"""

    namespace: str
    name: str

    def __str__(self):
        return f"{self.namespace}/{self.name}"


class RateLimitedWorkQueue:
    """Queue of keys with de-duplication, delayed adds and per-key
    exponential backoff for keys that keep failing
    """

    def __init__(
        self,
        name: str = "work_queue",
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        timer_thread: Optional[TimerThread] = None,
    ):
        """
        Args:
            name:  str
                Name of the queue used in logs
            base_delay:  Optional[float]
                Seconds of delay after the first failure of a key
            max_delay:  Optional[float]
                Upper bound of the delay of a key
            timer_thread:  Optional[TimerThread]
                Timer used for delayed adds. One is created and started when
                not given.
        """
        self.name = name
        self.base_delay = float(
            config.backoff_base_seconds if base_delay is None else base_delay
        )
        self.max_delay = float(
            config.backoff_max_seconds if max_delay is None else max_delay
        )
        self.timer_thread = timer_thread or TimerThread(name=f"{name}_timer")

        self._queue: Deque[ResourceKey] = deque()
        self._dirty: Set[ResourceKey] = set()
        self._processing: Set[ResourceKey] = set()
        self._failures: Dict[ResourceKey, int] = {}
        self._condition = threading.Condition()
        self._shutting_down = False

    ## Queue ###################################################################

    def add(self, key: ResourceKey):
        """Queue a key unless it is already waiting"""
        with self._condition:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)

            # A key being processed is queued again once it is done
            if key in self._processing:
                log.debug3("Deferring %s until its reconcile is done", key)
                return
            self._queue.append(key)
            self._condition.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[ResourceKey]:
        """Wait for the next key

        Returns:
            key:  Optional[ResourceKey]
                The next key or None once the queue shuts down or the
                timeout expires
        """
        with self._condition:
            if not self._condition.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: ResourceKey):
        """Mark a key as processed, requeuing it if it was added meanwhile"""
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._condition.notify()

    ## Delays ##################################################################

    def add_after(self, key: ResourceKey, delay: float):
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        log.debug2("Requeuing %s in %ss", key, delay)
        with self._condition:
            self.timer_thread.start_thread()
        self.timer_thread.put_event(
            datetime.now() + timedelta(seconds=delay), self.add, key
        )

    def add_rate_limited(self, key: ResourceKey):
        """Queue a key after its backoff delay"""
        self.add_after(key, self.when(key))

    def when(self, key: ResourceKey) -> float:
        """Record a failure of the key and get its next delay"""
        with self._condition:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** min(failures, 32)), self.max_delay)

    def forget(self, key: ResourceKey):
        """Reset the backoff of a key"""
        with self._condition:
            self._failures.pop(key, None)

    def num_requeues(self, key: ResourceKey) -> int:
        with self._condition:
            return self._failures.get(key, 0)

    ## Lifecycle ###############################################################

    def shut_down(self):
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()
        self.timer_thread.stop_thread()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def __len__(self):
        with self._condition:
            return len(self._queue)
