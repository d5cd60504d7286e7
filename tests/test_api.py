"""
API tests through the FastAPI app

Tests cover:
- Booking create, replay and error envelopes
- Webhook ingestion (disabled, accepted, deduplicated) and status
- Health, feature and metrics endpoints
"""

from unittest.mock import MagicMock

import pytest

from conftest import day
from hubapi.models.webhook_event import WebhookEvent


BOOKING = {
    "brand": "A",
    "unitId": "U1",
    "guestName": "Sara Ahmed",
    "guestEmail": "sara@example.com",
    "guestPhone": "+966500000000",
    "guests": 2,
    "checkIn": day(10).isoformat(),
    "checkOut": day(11).isoformat(),
}


def post_booking(client, body=None, key="abc12345"):
    headers = {"Idempotency-Key": key} if key is not None else {}
    return client.post("/api/bookings", json=body or BOOKING, headers=headers)


class TestBookingsApi:
    def test_create_and_replay(self, client_factory):
        client = client_factory()
        first = post_booking(client)
        assert first.status_code == 201
        assert first.json()["status"] == "PENDING"
        assert "X-Idempotent-Replay" not in first.headers

        replay = post_booking(client)
        assert replay.status_code == 201
        assert replay.json() == first.json()
        assert replay.headers["X-Idempotent-Replay"] == "true"

        fetched = client.get(f"/api/bookings/{first.json()['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == first.json()["id"]

    def test_conflict(self, client_factory):
        client = client_factory()
        post_booking(client)
        response = post_booking(client, {**BOOKING, "checkOut": day(12).isoformat()}, key="xyz98765")
        assert response.status_code == 409
        assert response.json()["code"] == "NOT_AVAILABLE"

    def test_writer_lock(self, client_factory):
        client = client_factory()
        response = post_booking(client, {**BOOKING, "brand": "B"})
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "WRITER_LOCK_VIOLATION"
        assert body["designatedWriter"] == "adapter"

    def test_missing_key(self, client_factory):
        response = post_booking(client_factory(), key=None)
        assert response.status_code == 400
        assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"

    def test_key_longer_than_column(self, client_factory):
        response = post_booking(client_factory(), key="k" * 200)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "IDEMPOTENCY_KEY_REQUIRED"
        assert body["maxLength"] == 128

    def test_key_reuse(self, client_factory):
        client = client_factory()
        post_booking(client)
        response = post_booking(client, {**BOOKING, "guests": 3})
        assert response.status_code == 422
        assert response.json()["code"] == "IDEMPOTENCY_KEY_REUSED"

    def test_invalid_body(self, client_factory):
        response = post_booking(client_factory(), {**BOOKING, "guestEmail": "not-an-email"})
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION"
        assert any(e["field"] == "guestEmail" for e in body["errors"])

    def test_checkout_before_checkin(self, client_factory):
        response = post_booking(client_factory(), {**BOOKING, "checkOut": day(9).isoformat()})
        assert response.status_code == 400

    def test_payments_disabled(self, client_factory):
        response = post_booking(client_factory(enable_payments=False))
        assert response.status_code == 503
        assert response.json()["code"] == "PAYMENTS_DISABLED"

    def test_booking_not_found(self, client_factory):
        response = client_factory().get("/api/bookings/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_quote(self, client_factory):
        response = client_factory().post("/api/bookings/quote", json={
            "brand": "a",
            "unitId": "U1",
            "checkIn": day(10).isoformat(),
            "checkOut": day(12).isoformat(),
        })
        assert response.status_code == 200
        body = response.json()
        assert body["nights"] == 2
        assert body["total"] == 1000.0
        assert body["available"] is True


class TestWebhooksApi:
    EVENT = {"id": "evt-1", "type": "booking.created", "bookingId": 100, "reference": "b-1"}

    def test_disabled_returns_204(self, client_factory):
        client = client_factory(enable_webhooks=False)
        response = client.post("/api/webhooks/channel", json=self.EVENT)
        assert response.status_code == 204

        db = client.app.state.db.session()
        try:
            assert db.query(WebhookEvent).count() == 0
        finally:
            db.close()

    def test_accept_and_deduplicate(self, client_factory):
        client = client_factory()
        first = client.post("/api/webhooks/channel", json=self.EVENT)
        second = client.post("/api/webhooks/channel", json=self.EVENT)

        assert first.status_code == 200
        assert first.json() == {"received": True, "deduplicated": False, "eventId": "evt-1"}
        assert second.json()["deduplicated"] is True

        status = client.get("/api/webhooks/status").json()
        assert status["counts"]["PENDING"] == 1
        assert status["counts"]["DEAD_LETTER"] == 0

    def test_dead_letter_listing(self, client_factory):
        client = client_factory()
        client.post("/api/webhooks/channel", json=self.EVENT)
        db = client.app.state.db.session()
        try:
            db.query(WebhookEvent).update({"status": "DEAD_LETTER", "last_error": "gave up"})
            db.commit()
        finally:
            db.close()

        body = client.get("/api/webhooks/dead-letter").json()
        assert body["total"] == 1
        assert body["items"][0]["event_id"] == "evt-1"
        assert body["items"][0]["last_error"] == "gave up"

    def test_missing_id_rejected(self, client_factory):
        response = client_factory().post("/api/webhooks/channel", json={"type": "booking.created"})
        assert response.status_code == 400


class TestOperationalEndpoints:
    def test_features(self, client_factory):
        body = client_factory().get("/health/features").json()
        assert body["brands"]["A"]["hubWrites"] is True
        assert body["brands"]["B"]["writer"] == "adapter"
        assert body["features"]["webhooks"] is True
        assert body["features"]["channel_sync"] is False

    def test_ready(self, client_factory):
        response = client_factory().get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "up"

    def test_metrics(self, client_factory):
        client = client_factory()
        post_booking(client)
        text = client.get("/metrics").text
        assert 'bookings_total{brand="A",outcome="created"} 1.0' in text
        assert "# TYPE http_requests_total counter" in text

    def test_request_id_header(self, client_factory):
        response = client_factory().get("/health/live", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"

    def test_request_context_cleared_when_route_raises(self, client_factory, monkeypatch):
        client = client_factory()
        cleared = MagicMock()
        monkeypatch.setattr("hubapi.main.clear_request_context", cleared)

        def boom():
            raise RuntimeError("boom")
        client.app.add_api_route("/boom", boom)

        with pytest.raises(RuntimeError):
            client.get("/boom", headers={"X-Request-ID": "req-2"})
        cleared.assert_called_once()

    def test_metrics_reads_live_queue_depth(self, client_factory):
        client = client_factory()
        client.app.state.worker_pool = MagicMock(queue_size=3)

        response = client.get("/metrics")

        assert response.headers["content-type"].startswith("text/plain")
        assert "webhook_queue_size 3" in response.text
