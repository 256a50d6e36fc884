# Overview: Transaction boundaries, row locking and contention mapping for billing writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BillingError, Contention
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole write
    transaction is serialized by begin_write(). populate_existing() makes
    sure the locked row is re-read instead of served from the identity map.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Open the write transaction for the current unit of work.

    SQLite: BEGIN IMMEDIATE takes the reserved lock up front, so two writers
    cannot both read-then-write the same rows. The busy timeout configured on
    the engine bounds the wait.
    PostgreSQL: bound row-lock waits with lock_timeout.
    """
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        dbapi_conn = db.session.connection().connection.dbapi_connection
        if not dbapi_conn.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        timeout_ms = int(current_app.config.get("LOCK_TIMEOUT_SECONDS", 5) * 1000)
        db.session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


def run_in_transaction(func):
    """
    Execute func() as a single atomic unit and commit.

    Any exception rolls the whole unit back. Lock timeouts, deadlocks and
    stale version_id conflicts surface as Contention (retryable); domain
    errors propagate unchanged.
    """
    try:
        begin_write()
        result = func()
        db.session.commit()
        return result
    except BillingError:
        db.session.rollback()
        raise
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        raise Contention(
            "Concurrent update in progress, retry the operation",
            details={"cause": type(exc).__name__},
        ) from exc
    except Exception:
        db.session.rollback()
        raise


def retry_on_contention(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Caller-side retry helper for operations that raised Contention.

    Core operations never call this themselves.
    """
    for attempt in range(attempts):
        try:
            return func()
        except Contention:
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
