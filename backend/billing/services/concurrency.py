# Overview: Unit-of-work helpers: row locks, SQLite write transactions, and retry on contention.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, begin_write_transaction() provides the equivalent guarantee.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the database write lock up front on SQLite.

    Without it, two requests can both read the same stock level before
    either writes. BEGIN IMMEDIATE serializes them at the start of the
    unit of work instead of failing one at commit time.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        # Already writing in this unit of work; the lock is held
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB unit of work, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, timeouts) and
    StaleDataError (optimistic locking conflicts). Every failure rolls the
    session back before it propagates, so a failed unit of work never
    leaves flushed-but-uncommitted rows behind.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying unit of work after %s (attempt %d of %d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
