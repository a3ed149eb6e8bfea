"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers
- Per-resource in-process locks
- Commit helper that maps store failures to StoreUnavailable
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, TypeVar, Type
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        return db.bind.dialect.name == 'postgresql'
    except AttributeError:
        return False


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    try:
        return db.bind.dialect.name == 'sqlite'
    except AttributeError:
        return True  # Default to SQLite for safety


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False,
    skip_locked: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)
        skip_locked: If True, behave as "not found" when another transaction holds the row (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Example:
        room = acquire_row_lock(db, Room, Room.id == room_id)
    """
    query = db.query(model).filter(filter_condition)

    # Only apply locking on PostgreSQL
    if is_postgres(db):
        if skip_locked:
            query = query.with_for_update(skip_locked=True)
        elif nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()


class ResourceLockRegistry:
    """
    One lock per resource key, created on first use.

    Serializes check-then-commit sequences for a single resource inside this
    process. Different keys never contend with each other. Cross-process
    exclusion comes from the row lock taken inside the critical section.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield


resource_locks = ResourceLockRegistry()


def resource_lock(key: str):
    """Context manager holding the process-wide lock for one resource"""
    return resource_locks.hold(key)


def commit_or_raise(db: Session, operation: str) -> None:
    """
    Commit the session, rolling back and raising StoreUnavailable on failure.

    An operation must never look committed when it is not.
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store failure during {operation}: {e}")
        raise StoreUnavailable(f"Could not commit {operation}", cause=e) from e
