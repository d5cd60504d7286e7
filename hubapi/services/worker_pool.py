"""
Webhook Worker Pool

In-process queue of webhook jobs drained by a fixed number of worker
threads. A shared token bucket caps jobs per time window to protect the
database and downstream systems. Job ids are deduplicated against ids
seen recently, which is why the retry poller hands out fresh ids.

The queue holds only event ids; all retry state lives in the
webhook_events table, so losing the queue on restart loses nothing.
"""

import logging
import queue
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

from ..utils.metrics import webhook_queue_size
from ..utils.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    job_id: str
    event_id: str


_STOP = object()


class WebhookWorkerPool:
    def __init__(
        self,
        processor,
        concurrency: int = 5,
        rate_limit_max: int = 10,
        rate_limit_window_seconds: float = 1.0,
        dedup_window: int = 10000
    ):
        self.processor = processor
        self.concurrency = concurrency
        self.limiter = TokenBucket(rate_limit_max, rate_limit_window_seconds)
        self.dedup_window = dedup_window

        self._queue: "queue.Queue" = queue.Queue()
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._seen_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def add(self, job_id: str, event_id: str) -> bool:
        """Enqueue a job unless a job with the same id was seen recently."""
        with self._seen_lock:
            if job_id in self._seen:
                logger.debug(f"Job {job_id} already queued, skipping")
                return False
            self._seen[job_id] = None
            while len(self._seen) > self.dedup_window:
                self._seen.popitem(last=False)

        self._queue.put(Job(job_id=job_id, event_id=event_id))
        webhook_queue_size.set(self._queue.qsize())
        return True

    def start(self) -> None:
        if self.running:
            logger.warning("Webhook worker pool is already running")
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run, name=f"webhook-worker-{i}", daemon=True)
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Webhook worker pool started ({self.concurrency} workers)")

    def stop(self, timeout: float = 10.0) -> None:
        """Let in-flight jobs finish, then stop the workers. Queued jobs are dropped."""
        if not self._threads:
            return
        self._stop_event.set()
        for _ in self._threads:
            self._queue.put(_STOP)
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        self._threads = []
        logger.info("Webhook worker pool stopped")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued job has been processed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                if self._stop_event.is_set():
                    continue
                if not self.limiter.acquire(self._stop_event):
                    continue
                self.processor.process(job.event_id)
            except Exception as e:
                # process() converts failures into state transitions; this only
                # guards the loop against bugs so the pool keeps running
                logger.exception(f"Worker crashed on job {getattr(job, 'job_id', job)}: {e}")
            finally:
                self._queue.task_done()
                webhook_queue_size.set(self._queue.qsize())
