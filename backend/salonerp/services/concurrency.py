# Overview: Retry and deadline handling for ledger and reconciliation writes.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..extensions import db

logger = logging.getLogger(__name__)


def _setting(name: str, default):
    try:
        return current_app.config.get(name, default)
    except RuntimeError:
        # Outside an application context (scripts); fall back to defaults
        return default


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    deadline_seconds: float | None = None,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlocks) and StaleDataError
    (version_id conflicts). The session is rolled back before every retry, so
    a failed attempt never leaves partial state behind.

    Raises Conflict (retryable) once attempts or the deadline run out.
    """
    if attempts is None:
        attempts = _setting("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = _setting("LEDGER_RETRY_BACKOFF", 0.05)
    if deadline_seconds is None:
        deadline_seconds = _setting("LEDGER_DEADLINE_SECONDS", 5.0)

    started = time.monotonic()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            elapsed = time.monotonic() - started
            if attempt >= attempts - 1:
                raise Conflict(
                    f"concurrent update conflict after {attempts} attempts",
                    retryable=True,
                ) from exc
            delay = backoff_base * (2 ** attempt)
            if deadline_seconds and elapsed + delay > deadline_seconds:
                raise Conflict(
                    f"operation deadline of {deadline_seconds}s exceeded",
                    retryable=True,
                ) from exc
            logger.warning(
                "retrying after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise
