"""
Dialect-aware query helpers.

PostgreSQL gets real row locks and ON CONFLICT inserts. SQLite (local
runs and tests) has no row locks, so the lock helpers fall back to plain
reads there and correctness rests on the unique constraints alone.
"""

from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

T = TypeVar("T")

# Dialects whose insert() supports on_conflict_do_nothing
_UPSERT_DIALECTS = {
    "postgresql": postgresql,
    "sqlite": sqlite,
}


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def is_postgres(db: Session) -> bool:
    return dialect_name(db) == "postgresql"


def acquire_row_lock(db: Session, model: Type[T], condition) -> Optional[T]:
    """
    Load one row, holding SELECT ... FOR UPDATE until commit or rollback.

    Used on the unit row so two bookings for the same unit serialize on
    PostgreSQL before either checks availability.
    """
    query = db.query(model).filter(condition)
    if is_postgres(db):
        query = query.with_for_update()
    return query.first()


def select_batch_for_work(
    db: Session,
    model: Type[T],
    condition,
    order_by=None,
    limit: int = 100
) -> List[T]:
    """
    Pick up to `limit` rows for processing.

    On PostgreSQL rows locked by another poller instance are skipped
    rather than waited on (FOR UPDATE SKIP LOCKED).
    """
    query = db.query(model).filter(condition)
    if order_by is not None:
        query = query.order_by(order_by)
    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)
    return query.limit(limit).all()


def insert_ignore_conflict(
    db: Session,
    model: Type[T],
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING.

    True when this call inserted the row, False when the conflict key was
    already taken. An existing row is never touched.
    """
    dialect = _UPSERT_DIALECTS.get(dialect_name(db))
    if dialect is None:
        raise NotImplementedError(f"insert_ignore_conflict is not supported on {dialect_name(db)}")

    stmt = dialect.insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
    return db.execute(stmt).rowcount == 1
