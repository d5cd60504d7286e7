"""
Webhook Retry Poller

Fixed-interval scan of webhook_events, separate from the worker pool so
polling cadence and processing concurrency can be tuned independently:

- FAILED events whose next_retry_at has passed are re-enqueued, oldest
  first, each under a fresh job id so queue dedup never swallows a retry
- PENDING events older than the grace period (queue lost on restart)
  are enqueued again
- PROCESSING events past their lease (worker died mid-job) get a failed
  attempt recorded, exactly as a timeout would

COMPLETED and DEAD_LETTER rows are never selected. A scan is skipped if
the previous one is still running. A second job purges expired
idempotency records.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..utils.db_helpers import select_batch_for_work
from .idempotency_store import IdempotencyStore

logger = logging.getLogger(__name__)

POLL_JOB_ID = "webhook_retry_poll"
PURGE_JOB_ID = "idempotency_purge"


def retry_job_id(event_id: str, attempts: int) -> str:
    return f"webhook-{event_id}-retry-{attempts}-{uuid.uuid4().hex[:8]}"


def resume_job_id(event_id: str) -> str:
    return f"webhook-{event_id}-resume-{uuid.uuid4().hex[:8]}"


@dataclass
class PollResult:
    retried: int = 0
    resumed: int = 0
    stalled: int = 0
    skipped: bool = False


class RetryPoller:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue,
        processor,
        interval_seconds: int = 30,
        batch_size: int = 100,
        pending_grace_seconds: int = 60,
        processing_lease_seconds: int = 300,
        purge_interval_seconds: int = 3600,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.pending_grace = timedelta(seconds=pending_grace_seconds)
        self.processing_lease = timedelta(seconds=processing_lease_seconds)
        self.purge_interval_seconds = purge_interval_seconds
        self.clock = clock

        self._scan_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._last_poll_at: Optional[datetime] = None
        self._last_result: Optional[PollResult] = None

    @classmethod
    def from_settings(cls, session_factory, queue, processor, settings) -> "RetryPoller":
        return cls(
            session_factory,
            queue,
            processor,
            interval_seconds=settings.retry_poll_interval_seconds,
            batch_size=settings.retry_poll_batch_size,
            pending_grace_seconds=settings.webhook_pending_grace_seconds,
            processing_lease_seconds=settings.webhook_processing_lease_seconds,
        )

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def poll_once(self) -> PollResult:
        if not self._scan_lock.acquire(blocking=False):
            logger.info("Previous retry scan still running, skipping")
            return PollResult(skipped=True)
        try:
            db = self.session_factory()
            try:
                result = PollResult(
                    stalled=self._fail_stalled(db),
                    retried=self._requeue_due(db),
                    resumed=self._resume_pending(db),
                )
            finally:
                db.close()
            self._last_poll_at = self.clock()
            self._last_result = result
            if result.retried or result.resumed or result.stalled:
                logger.info(
                    f"Retry poll: {result.retried} retried, {result.resumed} resumed, "
                    f"{result.stalled} stalled"
                )
            return result
        finally:
            self._scan_lock.release()

    def _requeue_due(self, db: Session) -> int:
        now = self.clock()
        events = select_batch_for_work(
            db,
            WebhookEvent,
            and_(
                WebhookEvent.status == WebhookEventStatus.FAILED.value,
                WebhookEvent.next_retry_at <= now,
            ),
            order_by=WebhookEvent.next_retry_at.asc(),
            limit=self.batch_size,
        )
        due = [(e.event_id, e.attempts) for e in events]
        db.commit()

        queued = 0
        for event_id, attempts in due:
            if self.queue.add(retry_job_id(event_id, attempts), event_id):
                queued += 1
        return queued

    def _resume_pending(self, db: Session) -> int:
        cutoff = self.clock() - self.pending_grace
        events = select_batch_for_work(
            db,
            WebhookEvent,
            and_(
                WebhookEvent.status == WebhookEventStatus.PENDING.value,
                WebhookEvent.received_at <= cutoff,
            ),
            order_by=WebhookEvent.received_at.asc(),
            limit=self.batch_size,
        )
        stale = [e.event_id for e in events]
        db.commit()

        queued = 0
        for event_id in stale:
            if self.queue.add(resume_job_id(event_id), event_id):
                queued += 1
        return queued

    def _fail_stalled(self, db: Session) -> int:
        cutoff = self.clock() - self.processing_lease
        events = select_batch_for_work(
            db,
            WebhookEvent,
            and_(
                WebhookEvent.status == WebhookEventStatus.PROCESSING.value,
                WebhookEvent.processing_started_at <= cutoff,
            ),
            order_by=WebhookEvent.processing_started_at.asc(),
            limit=self.batch_size,
        )
        failed = 0
        for event in events:
            result = self.processor.record_failure(
                db, event, f"Processing lease of {self.processing_lease.total_seconds():.0f}s expired"
            )
            if result.claimed:
                failed += 1
        db.commit()
        return failed

    def purge_idempotency(self) -> int:
        db = self.session_factory()
        try:
            return IdempotencyStore(db).purge_expired()
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Retry poller is already running")
            return True

        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.poll_once,
            IntervalTrigger(seconds=self.interval_seconds),
            id=POLL_JOB_ID,
            name="Webhook retry poll",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.purge_idempotency,
            IntervalTrigger(seconds=self.purge_interval_seconds),
            id=PURGE_JOB_ID,
            name="Expired idempotency purge",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Retry poller started (every {self.interval_seconds}s, batch {self.batch_size})")
        return True

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Retry poller stopped")

    def status(self) -> Dict:
        status = {
            "running": bool(self._scheduler and self._scheduler.running),
            "interval_seconds": self.interval_seconds,
            "last_poll": self._last_poll_at.isoformat() if self._last_poll_at else None,
            "jobs": [],
        }
        if self._scheduler is not None and self._scheduler.running:
            for job in self._scheduler.get_jobs():
                status["jobs"].append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                })
        if self._last_result is not None:
            status["last_result"] = {
                "retried": self._last_result.retried,
                "resumed": self._last_result.resumed,
                "stalled": self._last_result.stalled,
            }
        return status
