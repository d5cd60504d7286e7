"""
Webhook Processor

Advances one stored event through its state machine:

    claim:    PENDING | due FAILED  -> PROCESSING   (conditional UPDATE)
    success:  PROCESSING -> COMPLETED
    failure:  PROCESSING -> FAILED (next_retry_at = now + backoff)
              PROCESSING -> DEAD_LETTER (budget spent or permanent error)

Each handler runs on its own short-lived thread with its own session, and
the timeout is measured from the moment that thread starts. A timeout
counts as a failure. A handler that never returns holds only its own
thread, never the next event's. process() never raises, so a bad event
can not take a worker thread down with it.
"""

import json
import random
import threading
import uuid
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Set

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus
from ..models.ticket import Ticket, TicketStatus, TicketType
from ..models.webhook_event import ErrorCode, WebhookEvent, WebhookEventStatus
from ..utils.db_helpers import insert_ignore_conflict
from ..utils.logging_config import get_logger
from ..utils.metrics import record_webhook_transition
from . import availability  # noqa: F401  registers night release on cancel
from .errors import ConfigurationError, PermanentEventError
from .webhook_events import (
    ALL_EVENT_CLASSES,
    BookingCancelled,
    BookingCreated,
    BookingEvent,
    BookingModified,
    ChannelEvent,
    PropertyUpdated,
    UnknownEvent,
    parse_event,
)

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000


def compute_retry_delay(
    attempt: int,
    base_seconds: float = 30.0,
    jitter_max_seconds: float = 5.0,
    rng: Optional[random.Random] = None
) -> float:
    """
    Seconds until the next try after failed attempt number `attempt` (0-based).

    base * 2^attempt plus uniform jitter in [0, jitter_max).
    """
    rng = rng or random
    return base_seconds * (2 ** attempt) + rng.random() * jitter_max_seconds


@dataclass
class WebhookProcessResult:
    """Result of processing a webhook (async path)"""
    event_id: str
    status: Optional[str]  # None when the event was not claimable
    action: Optional[str] = None
    error: Optional[str] = None
    next_retry_at: Optional[datetime] = None

    @property
    def claimed(self) -> bool:
        return self.status is not None


class WebhookProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        base_backoff_seconds: float = 30.0,
        jitter_max_seconds: float = 5.0,
        dispatch_timeout_seconds: float = 30.0,
        automated_tickets: bool = False,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.base_backoff_seconds = base_backoff_seconds
        self.jitter_max_seconds = jitter_max_seconds
        self.dispatch_timeout_seconds = dispatch_timeout_seconds
        self.automated_tickets = automated_tickets
        self.rng = rng or random.Random()
        self.clock = clock
        self._handler_threads: Set[threading.Thread] = set()
        self._threads_lock = threading.Lock()

        self._handlers: Dict[type, Callable[[Session, ChannelEvent], str]] = {
            BookingCreated: self._handle_booking_created,
            BookingModified: self._handle_booking_modified,
            BookingCancelled: self._handle_booking_cancelled,
            PropertyUpdated: self._handle_property_updated,
            UnknownEvent: self._handle_unknown,
        }
        missing = [cls.__name__ for cls in ALL_EVENT_CLASSES if cls not in self._handlers]
        if missing:
            raise ConfigurationError(f"No webhook handler for {', '.join(missing)}")

    @classmethod
    def from_settings(cls, session_factory, settings) -> "WebhookProcessor":
        return cls(
            session_factory,
            base_backoff_seconds=settings.webhook_base_backoff_seconds,
            jitter_max_seconds=settings.webhook_jitter_max_seconds,
            dispatch_timeout_seconds=settings.webhook_dispatch_timeout_seconds,
            automated_tickets=settings.enable_automated_tickets,
        )

    def shutdown(self, timeout: float = 5.0) -> None:
        """Give handlers still running up to `timeout` seconds to finish."""
        with self._threads_lock:
            threads = list(self._handler_threads)
        for thread in threads:
            thread.join(timeout)
        still_running = [t.name for t in threads if t.is_alive()]
        if still_running:
            logger.warning(f"Abandoning {len(still_running)} webhook handlers still running: {still_running}")

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def claim(self, db: Session, event_id: str) -> Optional[WebhookEvent]:
        """
        Atomically move a PENDING or due FAILED event to PROCESSING.

        Returns None when another worker got there first, the retry is not
        due yet, or the event is terminal.
        """
        now = self.clock()
        result = db.execute(
            update(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.event_id == event_id,
                    or_(
                        WebhookEvent.status == WebhookEventStatus.PENDING.value,
                        and_(
                            WebhookEvent.status == WebhookEventStatus.FAILED.value,
                            or_(WebhookEvent.next_retry_at.is_(None), WebhookEvent.next_retry_at <= now),
                        ),
                    ),
                )
            )
            .values(
                status=WebhookEventStatus.PROCESSING.value,
                processing_started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return None
        return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()

    def mark_completed(self, db: Session, event: WebhookEvent, action: str) -> bool:
        now = self.clock()
        result = db.execute(
            update(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.id == event.id,
                    WebhookEvent.status == WebhookEventStatus.PROCESSING.value,
                )
            )
            .values(
                status=WebhookEventStatus.COMPLETED.value,
                result_action=action,
                processed_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            logger.webhook_transition(
                event.event_id, event.event_type,
                WebhookEventStatus.PROCESSING.value, WebhookEventStatus.COMPLETED.value,
                event.attempts,
            )
            record_webhook_transition(event.event_type, WebhookEventStatus.COMPLETED.value)
            return True
        return False

    def record_failure(
        self,
        db: Session,
        event: WebhookEvent,
        error: str,
        permanent: bool = False
    ) -> WebhookProcessResult:
        """
        Count a failed attempt and schedule the retry or dead-letter.

        The backoff exponent is the number of attempts made before this
        one, so the first failure waits base * 2^0.
        """
        now = self.clock()
        attempt_index = event.attempts or 0
        attempts = attempt_index + 1
        error = (error or "unknown error")[:MAX_ERROR_LENGTH]

        if permanent or attempts >= event.max_retries:
            new_status = WebhookEventStatus.DEAD_LETTER.value
            next_retry_at = None
        else:
            new_status = WebhookEventStatus.FAILED.value
            delay = compute_retry_delay(attempt_index, self.base_backoff_seconds, self.jitter_max_seconds, self.rng)
            next_retry_at = now + timedelta(seconds=delay)

        result = db.execute(
            update(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.id == event.id,
                    WebhookEvent.status == WebhookEventStatus.PROCESSING.value,
                    WebhookEvent.attempts == attempt_index,
                )
            )
            .values(
                status=new_status,
                attempts=attempts,
                last_error=error,
                error_code=(ErrorCode.PERMANENT if permanent else ErrorCode.TRANSIENT).value,
                next_retry_at=next_retry_at,
                processed_at=now if new_status == WebhookEventStatus.DEAD_LETTER.value else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            # Someone else already moved this event on
            return WebhookProcessResult(event_id=event.event_id, status=None, error=error)

        logger.webhook_transition(
            event.event_id, event.event_type,
            WebhookEventStatus.PROCESSING.value, new_status, attempts, error,
        )
        record_webhook_transition(event.event_type, new_status)
        return WebhookProcessResult(
            event_id=event.event_id,
            status=new_status,
            action="error",
            error=error,
            next_retry_at=next_retry_at,
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, event_id: str) -> WebhookProcessResult:
        """Claim, dispatch and record the outcome of one event. Never raises."""
        db = self.session_factory()
        try:
            return self._process(db, event_id)
        except Exception as e:
            # The transition itself failed (e.g. database down); the poller's
            # lease sweep will pick the event up again.
            logger.exception(f"Could not record outcome for webhook {event_id}: {e}")
            db.rollback()
            return WebhookProcessResult(event_id=event_id, status=None, error=str(e))
        finally:
            db.close()

    def _process(self, db: Session, event_id: str) -> WebhookProcessResult:
        event = self.claim(db, event_id)
        if event is None:
            logger.debug(f"Webhook {event_id} not claimable, skipping")
            return WebhookProcessResult(event_id=event_id, status=None)

        try:
            parsed = parse_event(event.event_id, event.event_type, json.loads(event.payload_json))
        except (PermanentEventError, ValueError) as e:
            return self.record_failure(db, event, f"Malformed event: {e}", permanent=True)

        future = self._dispatch(parsed)
        try:
            action = future.result(timeout=self.dispatch_timeout_seconds)
        except FutureTimeout:
            logger.warning(f"Handler for webhook {event_id} still running after {self.dispatch_timeout_seconds}s")
            return self.record_failure(db, event, f"Handler timed out after {self.dispatch_timeout_seconds}s")
        except PermanentEventError as e:
            return self.record_failure(db, event, str(e), permanent=True)
        except Exception as e:
            return self.record_failure(db, event, f"{type(e).__name__}: {e}")

        if not self.mark_completed(db, event, action):
            return WebhookProcessResult(event_id=event_id, status=None, action=action)
        return WebhookProcessResult(event_id=event_id, status=WebhookEventStatus.COMPLETED.value, action=action)

    def _dispatch(self, event: ChannelEvent) -> "Future[str]":
        """Start the handler on a fresh thread and return its pending result."""
        future: "Future[str]" = Future()

        def run():
            future.set_running_or_notify_cancel()
            try:
                future.set_result(self._run_handler(event))
            except Exception as e:
                future.set_exception(e)
            finally:
                with self._threads_lock:
                    self._handler_threads.discard(threading.current_thread())

        thread = threading.Thread(target=run, name=f"webhook-handler-{event.event_id}", daemon=True)
        with self._threads_lock:
            self._handler_threads.add(thread)
        thread.start()
        return future

    def _run_handler(self, event: ChannelEvent) -> str:
        db = self.session_factory()
        try:
            action = self._handlers[type(event)](db, event)
            db.commit()
            return action
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Handlers (each must be safe to run more than once)
    # ------------------------------------------------------------------

    def _find_local_booking(self, db: Session, event: BookingEvent) -> Optional[Booking]:
        booking = db.query(Booking).filter(Booking.external_booking_id == event.booking_id).first()
        if booking is None and event.reference:
            booking = db.query(Booking).filter(Booking.id == event.reference).first()
        return booking

    def _reconcile(self, db: Session, event: BookingEvent) -> Optional[Booking]:
        """Populate the external id on the local booking, only if it is unset."""
        booking = self._find_local_booking(db, event)
        if booking is None:
            return None
        if booking.external_booking_id is None:
            booking.external_booking_id = event.booking_id
            logger.info(f"Booking {booking.id} reconciled with external id {event.booking_id}")
        elif booking.external_booking_id != event.booking_id:
            logger.warning(
                f"Booking {booking.id} already linked to {booking.external_booking_id}, "
                f"ignoring {event.booking_id}"
            )
        return booking

    def _ensure_cleaning_ticket(self, db: Session, event: BookingEvent, unit_id: Optional[str], due: date) -> bool:
        return insert_ignore_conflict(
            db,
            Ticket,
            {
                "id": str(uuid.uuid4()),
                "ticket_type": TicketType.CHECKOUT_CLEAN.value,
                "status": TicketStatus.OPEN.value,
                "external_booking_id": event.booking_id,
                "unit_id": unit_id,
                "due_date": due,
                "created_at": self.clock(),
            },
            conflict_columns=["external_booking_id", "ticket_type"],
        )

    def _handle_booking_created(self, db: Session, event: BookingCreated) -> str:
        booking = self._reconcile(db, event)
        if self.automated_tickets and event.check_out:
            unit_id = booking.unit_id if booking else event.room_id
            if self._ensure_cleaning_ticket(db, event, unit_id, event.check_out):
                logger.info(f"Checkout cleaning ticket created for {event.booking_id} on {event.check_out}")
        return "reconciled" if booking else "unmatched"

    def _handle_booking_modified(self, db: Session, event: BookingModified) -> str:
        booking = self._reconcile(db, event)
        if self.automated_tickets and event.check_out:
            unit_id = booking.unit_id if booking else event.room_id
            if not self._ensure_cleaning_ticket(db, event, unit_id, event.check_out):
                db.query(Ticket).filter(
                    Ticket.external_booking_id == event.booking_id,
                    Ticket.ticket_type == TicketType.CHECKOUT_CLEAN.value,
                    Ticket.status == TicketStatus.OPEN.value,
                ).update({"due_date": event.check_out}, synchronize_session=False)
        return "updated" if booking else "unmatched"

    def _handle_booking_cancelled(self, db: Session, event: BookingCancelled) -> str:
        booking = self._find_local_booking(db, event)
        if booking is not None and booking.is_active:
            booking.status = BookingStatus.CANCELLED.value
            logger.info(f"Booking {booking.id} cancelled by channel event {event.event_id}")

        cancelled_tickets = db.query(Ticket).filter(
            Ticket.external_booking_id == event.booking_id,
            Ticket.status == TicketStatus.OPEN.value,
        ).update({"status": TicketStatus.CANCELLED.value}, synchronize_session=False)
        if cancelled_tickets:
            logger.info(f"Cancelled {cancelled_tickets} tickets for {event.booking_id}")
        return "cancelled" if booking else "unmatched"

    def _handle_property_updated(self, db: Session, event: PropertyUpdated) -> str:
        logger.info(f"Property {event.property_id} updated on channel")
        return "acknowledged"

    def _handle_unknown(self, db: Session, event: UnknownEvent) -> str:
        logger.warning(f"Unhandled webhook type {event.event_type} ({event.event_id})")
        return "ignored"
