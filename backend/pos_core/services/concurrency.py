# Overview: Service-layer operations for concurrency; transaction boundaries, row locks and bounded retries.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientStoreError
from ..extensions import db

logger = logging.getLogger(__name__)

# Deadlocks, lock timeouts, serialization failures and optimistic version conflicts
TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current transaction as a writer.

    On SQLite a deferred transaction that reads and then writes can fail to
    upgrade its lock while another writer is active. BEGIN IMMEDIATE queues
    writers on the database lock (bounded by the busy timeout) instead.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    failure=TransientStoreError,
):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    The session is rolled back on every failure, so nothing from a failed
    attempt is ever committed. Transient errors are retried with exponential
    backoff; when attempts run out they surface as `failure` (a
    TransientStoreError subclass). Every other exception propagates as-is.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Transient store error persisted after %d attempts: %s", attempts, exc)
                raise failure(details={"attempts": attempts}) from exc
            logger.warning("Transient store error (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
