"""
The WorkerPool runs reconciles for the keys of a work queue. A key is never
reconciled by two workers at once, distinct keys run in parallel up to the
size of the pool.
"""

# Standard
from typing import Callable, List, Optional

# First Party
import alog

# Local
from .. import config
from .base import ThreadBase
from .work_queue import RateLimitedWorkQueue, ResourceKey

log = alog.use_channel("WORKERS")

# Seconds a worker waits on the queue before checking for shutdown
QUEUE_POLL_TIME = 1.0


class WorkerThread(ThreadBase):
    """A single worker which pulls keys until the pool shuts down"""

    def __init__(self, pool: "WorkerPool", index: int):
        super().__init__(name=f"{pool.name}_worker_{index}", daemon=True)
        self.pool = pool

    def run(self):
        while not self.should_stop():
            key = self.pool.queue.get(timeout=QUEUE_POLL_TIME)
            if key is None:
                if self.pool.queue.shutting_down:
                    return
                continue
            self.pool.process(key)


class WorkerPool:
    """Bounded pool of worker threads over a rate limited work queue"""

    def __init__(
        self,
        queue: RateLimitedWorkQueue,
        reconcile_fn: Callable,
        workers: Optional[int] = None,
        name: str = "worker_pool",
    ):
        """
        Args:
            queue:  RateLimitedWorkQueue
                The queue to pull keys from
            reconcile_fn:  Callable[[ResourceKey], ReconciliationResult]
                Function that reconciles a key. It must never raise.
            workers:  Optional[int]
                Number of worker threads. Defaults to
                config.max_concurrent_reconciles
            name:  str
                Name used for the threads
        """
        self.queue = queue
        self.reconcile_fn = reconcile_fn
        self.name = name
        self.size = max(int(workers or config.max_concurrent_reconciles), 1)
        self.threads: List[WorkerThread] = []

    ## Lifecycle ###############################################################

    def start(self):
        log.info("Starting %d workers for %s", self.size, self.name)
        self.threads = [WorkerThread(self, index) for index in range(self.size)]
        for thread in self.threads:
            thread.start_thread()

    def stop(self):
        for thread in self.threads:
            thread.stop_thread()
        self.queue.shut_down()

    def join(self, timeout: Optional[float] = None):
        for thread in self.threads:
            thread.join(timeout)

    ## Processing ##############################################################

    def process(self, key: ResourceKey):
        """Reconcile a single key and schedule its next pass from the result"""
        try:
            result = self.reconcile_fn(key)
            if result.requeue and result.requeue_params.requeue_after is not None:
                self.queue.forget(key)
                delay = result.requeue_params.requeue_after.total_seconds()
                log.debug("Requeuing %s after %ss", key, delay)
                self.queue.add_after(key, delay)
            elif result.requeue:
                log.debug("Requeuing %s with backoff", key)
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
        finally:
            self.queue.done(key)
