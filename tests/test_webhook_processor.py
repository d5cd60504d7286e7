"""
Tests for the Webhook Processor

Tests cover:
- Claim is conditional: terminal and not-yet-due events are skipped
- Success, transient failure with backoff, dead-letter on exhaustion
- Permanent errors and handler timeouts
- Booking reconciliation, cancellation and checkout tickets
"""

import random
import threading
import time
from datetime import timedelta

import pytest

from conftest import day
from hubapi.models.booking import Booking, BookingNight, BookingStatus
from hubapi.models.ticket import Ticket, TicketStatus
from hubapi.models.webhook_event import ErrorCode, WebhookEvent, WebhookEventStatus
from hubapi.services.booking_writer import BookingWriter
from hubapi.services.errors import PermanentEventError
from hubapi.services.webhook_events import BookingCreated
from hubapi.services.webhook_processor import WebhookProcessor
from hubapi.services.webhook_receiver import WebhookReceiver
from hubapi.utils.metrics import webhook_events_total


@pytest.fixture
def processor(database, clock):
    processor = WebhookProcessor(
        database.session_factory,
        dispatch_timeout_seconds=5.0,
        rng=random.Random(7),
        clock=clock,
    )
    yield processor
    processor.shutdown()


@pytest.fixture
def receive(session):
    def _receive(event_id, event_type="booking.created", max_retries=5, **payload):
        payload = {"id": event_id, "type": event_type, **payload}
        WebhookReceiver(session, lambda kind: max_retries).receive(event_id, event_type, payload)
        return event_id
    return _receive


def load(session, event_id) -> WebhookEvent:
    session.expire_all()
    return session.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).one()


def fail_with(processor, cls, exc):
    def handler(db, event):
        raise exc
    processor._handlers[cls] = handler


class TestReceive:
    def test_duplicate_event_stored_once(self, session):
        receiver = WebhookReceiver(session, lambda kind: 5)
        first = receiver.receive("evt-1", "booking.new", {"bookingId": "X1"})
        second = receiver.receive("evt-1", "booking.new", {"bookingId": "X1"})

        assert first.deduplicated is False
        assert second.deduplicated is True
        assert first.event_type == "booking.created"
        assert session.query(WebhookEvent).count() == 1

    def test_budget_per_type(self, session):
        budgets = {"booking.cancelled": 8}
        receiver = WebhookReceiver(session, lambda kind: budgets.get(kind, 5))
        receiver.receive("evt-1", "booking_cancelled", {"bookingId": "X1"})
        assert load(session, "evt-1").max_retries == 8


class TestStateMachine:
    def test_success(self, processor, session, receive):
        receive("evt-1", bookingId="X1")
        result = processor.process("evt-1")

        assert result.status == WebhookEventStatus.COMPLETED.value
        assert result.action == "unmatched"
        event = load(session, "evt-1")
        assert event.status == WebhookEventStatus.COMPLETED.value
        assert event.attempts == 0
        assert event.processed_at is not None
        assert webhook_events_total.get(event_type="booking.created", status="COMPLETED") == 1

    def test_transient_failure_schedules_retry(self, processor, session, receive, clock):
        """First failure: attempts 1, retry in [30s, 35s)"""
        receive("evt-1", bookingId="X1")
        fail_with(processor, BookingCreated, RuntimeError("db hiccup"))

        result = processor.process("evt-1")

        assert result.status == WebhookEventStatus.FAILED.value
        event = load(session, "evt-1")
        assert event.status == WebhookEventStatus.FAILED.value
        assert event.attempts == 1
        assert event.error_code == ErrorCode.TRANSIENT.value
        assert "db hiccup" in event.last_error
        assert clock.now + timedelta(seconds=30) <= event.next_retry_at < clock.now + timedelta(seconds=35)

    def test_not_due_is_not_claimed(self, processor, session, receive):
        receive("evt-1", bookingId="X1")
        fail_with(processor, BookingCreated, RuntimeError("boom"))
        processor.process("evt-1")

        result = processor.process("evt-1")

        assert result.claimed is False
        assert load(session, "evt-1").attempts == 1

    def test_dead_letter_after_budget(self, processor, session, receive, clock):
        """max_retries = 3: FAILED, FAILED, then DEAD_LETTER on the third attempt"""
        receive("evt-1", max_retries=3, bookingId="X1")
        fail_with(processor, BookingCreated, RuntimeError("boom"))

        statuses = []
        for _ in range(3):
            statuses.append(processor.process("evt-1").status)
            clock.advance(3600)

        assert statuses == ["FAILED", "FAILED", "DEAD_LETTER"]
        event = load(session, "evt-1")
        assert event.attempts == 3
        assert event.next_retry_at is None
        assert event.is_terminal
        assert event.processed_at is not None

    def test_backoff_doubles(self, processor, session, receive, clock):
        receive("evt-1", bookingId="X1")
        fail_with(processor, BookingCreated, RuntimeError("boom"))

        processor.process("evt-1")
        first_delay = (load(session, "evt-1").next_retry_at - clock.now).total_seconds()
        clock.advance(3600)
        processor.process("evt-1")
        second_delay = (load(session, "evt-1").next_retry_at - clock.now).total_seconds()

        assert 30 <= first_delay < 35
        assert 60 <= second_delay < 65

    @pytest.mark.parametrize("status", [WebhookEventStatus.COMPLETED, WebhookEventStatus.DEAD_LETTER])
    def test_terminal_events_never_reprocessed(self, processor, session, receive, status):
        receive("evt-1", bookingId="X1")
        session.query(WebhookEvent).update({"status": status.value})
        session.commit()

        assert processor.process("evt-1").claimed is False
        assert load(session, "evt-1").status == status.value

    def test_missing_event(self, processor):
        assert processor.process("does-not-exist").claimed is False


class TestErrorClassification:
    def test_malformed_event_is_permanent(self, processor, session, receive):
        """booking.created without bookingId can never succeed"""
        receive("evt-1")
        result = processor.process("evt-1")

        assert result.status == WebhookEventStatus.DEAD_LETTER.value
        event = load(session, "evt-1")
        assert event.attempts == 1
        assert event.error_code == ErrorCode.PERMANENT.value

    def test_bad_dates_are_permanent(self, processor, receive):
        receive("evt-1", bookingId="X1", checkIn="2030-01-12", checkOut="2030-01-10")
        assert processor.process("evt-1").status == WebhookEventStatus.DEAD_LETTER.value

    def test_handler_permanent_error(self, processor, receive):
        receive("evt-1", bookingId="X1")
        fail_with(processor, BookingCreated, PermanentEventError("rejected"))
        assert processor.process("evt-1").status == WebhookEventStatus.DEAD_LETTER.value

    def test_timeout_counts_as_failure(self, database, session, receive, clock):
        processor = WebhookProcessor(database.session_factory, dispatch_timeout_seconds=0.05, clock=clock)

        def slow(db, event):
            time.sleep(0.5)
            return "reconciled"
        processor._handlers[BookingCreated] = slow

        try:
            receive("evt-1", bookingId="X1")
            result = processor.process("evt-1")
        finally:
            processor.shutdown()

        assert result.status == WebhookEventStatus.FAILED.value
        assert "timed out" in load(session, "evt-1").last_error

    def test_hung_handler_does_not_block_next_event(self, database, session, receive, clock):
        processor = WebhookProcessor(database.session_factory, dispatch_timeout_seconds=0.2, clock=clock)
        release = threading.Event()

        def maybe_hang(db, event):
            if event.booking_id == "HANG":
                release.wait(10)
            return "reconciled"
        processor._handlers[BookingCreated] = maybe_hang

        try:
            receive("evt-hang", bookingId="HANG")
            receive("evt-ok", bookingId="X1")
            hung = processor.process("evt-hang")
            healthy = processor.process("evt-ok")
        finally:
            release.set()
            processor.shutdown()

        assert hung.status == WebhookEventStatus.FAILED.value
        assert healthy.status == WebhookEventStatus.COMPLETED.value
        assert load(session, "evt-ok").attempts == 0

    def test_unknown_type_is_ignored(self, processor, session, receive):
        receive("evt-1", event_type="rate.updated")
        result = processor.process("evt-1")
        assert result.status == WebhookEventStatus.COMPLETED.value
        assert load(session, "evt-1").result_action == "ignored"


@pytest.fixture
def local_booking(session, registry, make_unit, booking_payload):
    make_unit()
    result = BookingWriter(session, registry).create_booking(booking_payload(), "key-12345")
    return result.body["id"]


class TestHandlers:
    def test_created_reconciles_by_reference(self, processor, session, receive, local_booking):
        receive("evt-1", bookingId="CH-100", reference=local_booking)
        result = processor.process("evt-1")

        assert result.action == "reconciled"
        session.expire_all()
        assert session.get(Booking, local_booking).external_booking_id == "CH-100"

    def test_reconcile_never_overwrites(self, processor, session, receive, local_booking):
        receive("evt-1", bookingId="CH-100", reference=local_booking)
        receive("evt-2", event_type="booking.modified", bookingId="CH-200", reference=local_booking)
        processor.process("evt-1")
        processor.process("evt-2")

        session.expire_all()
        assert session.get(Booking, local_booking).external_booking_id == "CH-100"

    def test_cancel_releases_unit(self, processor, session, registry, receive, local_booking, booking_payload):
        receive("evt-1", bookingId="CH-100", reference=local_booking)
        receive("evt-2", event_type="booking.cancelled", bookingId="CH-100")
        processor.process("evt-1")
        result = processor.process("evt-2")

        assert result.action == "cancelled"
        session.expire_all()
        assert session.get(Booking, local_booking).status == BookingStatus.CANCELLED.value
        assert session.query(BookingNight).count() == 0

        rebooked = BookingWriter(session, registry).create_booking(booking_payload(), "key-67890")
        assert rebooked.status_code == 201

    def test_cancel_is_idempotent(self, processor, session, receive, local_booking):
        receive("evt-1", event_type="booking.cancelled", bookingId="CH-100", reference=local_booking)
        receive("evt-2", event_type="booking.cancelled", bookingId="CH-100", reference=local_booking)
        assert processor.process("evt-1").status == "COMPLETED"
        assert processor.process("evt-2").status == "COMPLETED"

    def test_checkout_ticket(self, database, session, receive, clock):
        processor = WebhookProcessor(database.session_factory, automated_tickets=True, clock=clock)
        try:
            receive("evt-1", bookingId="CH-100", roomId=7, checkIn="2030-01-10", checkOut="2030-01-12")
            receive("evt-2", bookingId="CH-100", checkIn="2030-01-10", checkOut="2030-01-12")
            receive("evt-3", event_type="booking.modified", bookingId="CH-100",
                    checkIn="2030-01-10", checkOut="2030-01-14")
            for event_id in ("evt-1", "evt-2", "evt-3"):
                processor.process(event_id)
        finally:
            processor.shutdown()

        ticket = session.query(Ticket).one()
        assert ticket.unit_id == "7"
        assert ticket.due_date == day(14)
        assert ticket.status == TicketStatus.OPEN.value

    def test_cancel_closes_tickets(self, database, session, receive, clock):
        processor = WebhookProcessor(database.session_factory, automated_tickets=True, clock=clock)
        try:
            receive("evt-1", bookingId="CH-100", checkIn="2030-01-10", checkOut="2030-01-12")
            receive("evt-2", event_type="booking.cancelled", bookingId="CH-100")
            processor.process("evt-1")
            processor.process("evt-2")
        finally:
            processor.shutdown()

        assert session.query(Ticket).one().status == TicketStatus.CANCELLED.value
