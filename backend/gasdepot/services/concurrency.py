# Overview: Transaction boundary and row-lock helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import OrderingError, PersistenceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns catch the lost update there instead.
    """
    return query.with_for_update()


def _configured_attempts() -> int:
    try:
        return int(current_app.config.get("STALE_DATA_RETRY_ATTEMPTS", 3))
    except RuntimeError:
        # Outside an application context (plain scripts)
        return 3


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Run `func` as one database transaction and commit it.

    - OrderingError: rolled back and re-raised untouched.
    - StaleDataError (optimistic version conflict): rolled back and retried,
      at most `attempts` times in total.
    - Any other SQLAlchemyError: rolled back, surfaced as PersistenceError.

    `func` must be safe to re-run from scratch: it re-reads and re-locks
    everything it touches.
    """
    if attempts is None:
        attempts = _configured_attempts()
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except OrderingError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError(
                    "Concurrent update conflict, please retry",
                    {"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError() from exc
    # Unreachable: the loop either returns or raises
    raise PersistenceError()
