"""
Tests for the Idempotency Store

A key is bound to the first request hash and response for its TTL;
later writes for the same key never replace it.
"""

from datetime import datetime, timedelta

from hubapi.models.idempotency import IdempotencyRecord
from hubapi.services.idempotency_store import IdempotencyStore, hash_request


NOW = datetime(2030, 1, 1, 12, 0, 0)


class TestRequestHash:
    """Canonical JSON hashing"""

    def test_key_order_does_not_matter(self):
        assert hash_request({"a": 1, "b": [1, 2]}) == hash_request({"b": [1, 2], "a": 1})

    def test_value_change_changes_hash(self):
        assert hash_request({"guests": 1}) != hash_request({"guests": 2})

    def test_hash_is_sha256_hex(self):
        assert len(hash_request({})) == 64


class TestIdempotencyStore:
    """Lookup, first-write-wins and expiry"""

    def test_lookup_missing(self, session):
        assert IdempotencyStore(session).lookup("unknown-key", now=NOW) is None

    def test_store_then_lookup(self, session):
        store = IdempotencyStore(session)
        assert store.store("key-00001", "h1", 201, {"id": "b1"}, now=NOW) is True

        cached = store.lookup("key-00001", now=NOW + timedelta(hours=1))
        assert cached.request_hash == "h1"
        assert cached.status_code == 201
        assert cached.body == {"id": "b1"}

    def test_first_write_wins(self, session):
        """A second store for a live key is ignored, not an overwrite"""
        store = IdempotencyStore(session)
        store.store("key-00001", "h1", 201, {"id": "b1"}, now=NOW)
        assert store.store("key-00001", "h2", 201, {"id": "b2"}, now=NOW) is False

        cached = store.lookup("key-00001", now=NOW)
        assert cached.request_hash == "h1"
        assert cached.body == {"id": "b1"}
        assert session.query(IdempotencyRecord).count() == 1

    def test_expired_record_is_invisible(self, session):
        store = IdempotencyStore(session, ttl_hours=24)
        store.store("key-00001", "h1", 201, {"id": "b1"}, now=NOW)
        assert store.lookup("key-00001", now=NOW + timedelta(hours=24)) is None
        assert session.query(IdempotencyRecord).one().is_expired(NOW + timedelta(hours=24))

    def test_key_reusable_after_expiry(self, session):
        """Once expired, the key can be bound to a new request"""
        store = IdempotencyStore(session, ttl_hours=1)
        store.store("key-00001", "h1", 201, {"id": "b1"}, now=NOW)

        later = NOW + timedelta(hours=2)
        assert store.store("key-00001", "h2", 201, {"id": "b2"}, now=later) is True
        assert store.lookup("key-00001", now=later).request_hash == "h2"

    def test_purge_expired(self, session):
        store = IdempotencyStore(session, ttl_hours=1)
        store.store("old-key-001", "h1", 201, {}, now=NOW)
        store.store("new-key-001", "h2", 201, {}, now=NOW + timedelta(hours=2))

        assert store.purge_expired(now=NOW + timedelta(hours=2)) == 1
        assert [r.key for r in session.query(IdempotencyRecord).all()] == ["new-key-001"]
