# Overview: Transaction helpers shared by every ledger write path.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LedgerError, StorageUnavailableError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id columns catch the
    conflicting writer there instead (StaleDataError -> retry).
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a whole DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The callable must be the complete
    operation: it is re-run from scratch after a rollback, never resumed.

    A LedgerError or ValueError rolls the session back before propagating so no partial
    write survives. Exhausted retries surface as StorageUnavailableError.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (LedgerError, ValueError):
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Storage operation failed after %s attempts: %s", attempts, exc
                )
                raise StorageUnavailableError(
                    "Storage is temporarily unavailable, retry the operation",
                    attempts=attempts,
                ) from exc
            current_app.logger.warning(
                "Retrying storage operation (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))

