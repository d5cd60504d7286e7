"""
Idempotency Store

Durable key -> (request hash, cached response) map with expiry.

The only write path is insert-ignore-conflict: a key, once bound to a
request hash, is never overwritten for the lifetime of the record.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models.idempotency import IdempotencyRecord
from ..utils.db_helpers import insert_ignore_conflict

logger = logging.getLogger(__name__)


def hash_request(payload: Dict[str, Any]) -> str:
    """SHA256 of the canonical JSON form (sorted keys, no whitespace)"""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CachedResponse:
    request_hash: str
    status_code: int
    body: Dict[str, Any]


class IdempotencyStore:
    def __init__(self, db: Session, ttl_hours: int = 24):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours)

    def lookup(self, key: str, now: Optional[datetime] = None) -> Optional[CachedResponse]:
        """Return the live record for a key, ignoring expired ones"""
        now = now or datetime.utcnow()
        record = self.db.query(IdempotencyRecord).filter(
            IdempotencyRecord.key == key,
            IdempotencyRecord.expires_at > now,
        ).first()
        if record is None:
            return None
        return CachedResponse(
            request_hash=record.request_hash,
            status_code=record.response_status,
            body=record.response_body,
        )

    def store(
        self,
        key: str,
        request_hash: str,
        status_code: int,
        body: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> bool:
        """
        Bind key to (hash, response) unless it is already bound.

        An expired record for the same key is deleted first so the key
        can be reused after its TTL. Returns True when this call wrote.
        """
        now = now or datetime.utcnow()
        self.db.query(IdempotencyRecord).filter(
            IdempotencyRecord.key == key,
            IdempotencyRecord.expires_at <= now,
        ).delete(synchronize_session=False)

        inserted = insert_ignore_conflict(
            self.db,
            IdempotencyRecord,
            {
                "key": key,
                "request_hash": request_hash,
                "response_status": status_code,
                "response_body": body,
                "created_at": now,
                "expires_at": now + self.ttl,
            },
            conflict_columns=["key"],
        )
        self.db.commit()
        if not inserted:
            logger.info(f"Idempotency key {key[:8]}... already bound, keeping first response")
        return inserted

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        deleted = self.db.query(IdempotencyRecord).filter(
            IdempotencyRecord.expires_at <= now
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info(f"Purged {deleted} expired idempotency records")
        return deleted
