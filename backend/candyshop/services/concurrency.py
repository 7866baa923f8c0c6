# Overview: Retry and optimistic-locking helpers shared by the order services.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification, StorageUnavailable
from ..extensions import db

logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on transient storage failures.

    `func` must re-read everything it depends on; each retry re-validates
    from fresh data instead of replaying stale values.

    - OperationalError (locks, deadlocks, dropped connections) is retried
      up to `attempts` times, then surfaces as StorageUnavailable.
    - StaleDataError (optimistic version check failed) is never retried
      here; it surfaces as ConcurrentModification so the caller decides.
    - Domain errors propagate untouched after the session is rolled back.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Storage operation failed after %d attempts: %s", attempts, exc)
                raise StorageUnavailable(
                    "Storage temporarily unavailable, please retry",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Transient storage failure (attempt %d/%d), retrying", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except StaleDataError as exc:
            db.session.rollback()
            raise ConcurrentModification(
                "The record was modified by another request; reload and retry",
            ) from exc
        except Exception:
            db.session.rollback()
            raise


def check_expected_version(entity, expected_version: int | None, *, label: str = "order") -> None:
    """Reject a write whose client-observed version is no longer current."""
    if expected_version is None:
        return
    if entity.version_id != expected_version:
        raise ConcurrentModification(
            f"The {label} was modified by another request; reload and retry",
            details={
                "expected_version": expected_version,
                "current_version": entity.version_id,
            },
        )
