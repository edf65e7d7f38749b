# Overview: Retry, locking and commit helpers shared by the services.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConstraintError, TransientError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, dropped connections),
    StaleDataError (version_id compare-and-swap lost) and the TransientError
    that commit_or_raise() makes of an OperationalError. When the budget is
    exhausted the failure surfaces as TransientError.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, TransientError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientError(
                    "Store unavailable or record changed concurrently; retry the operation",
                    details={"reason": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))


def commit_or_raise() -> None:
    """
    Commit the session, translating store failures into the error taxonomy.

    IntegrityError -> ConstraintError, OperationalError -> TransientError.
    The session is rolled back either way.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConstraintError(
            "Store rejected the write",
            details={"reason": str(exc.orig)},
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        raise TransientError(
            "Store unavailable; retry the operation",
            details={"reason": exc.__class__.__name__},
        ) from exc
