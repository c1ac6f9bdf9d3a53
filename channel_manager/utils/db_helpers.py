"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers (FOR UPDATE on PostgreSQL, no-op on SQLite)
"""

import logging
from typing import Optional, TypeVar, Type
from sqlalchemy.orm import Session, Query

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


def lock_query(db: Session, query: Query, skip_locked: bool = False) -> Query:
    """
    Apply FOR UPDATE to a query on PostgreSQL.

    SQLite has no row locks; callers serialize with an in-process lock
    and rely on version_id_col compare-and-set.
    """
    if not is_postgres(db):
        return query
    if skip_locked:
        return query.with_for_update(skip_locked=True)
    return query.with_for_update()


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Example:
        channel = acquire_row_lock(db, Channel, Channel.id == channel_id)
    """
    query = db.query(model).filter(filter_condition)

    if is_postgres(db):
        if nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()
