"""
Login Throttling Service

Failed logins are counted per identifier in the throttle_entries table, a
keyed counter with a TTL window. Too many failures inside the window lock
the identifier until locked_until. State lives in the database, so every
worker process sees the same counters.
"""
from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import ThrottleEntry
from ..time_utils import utcnow


MAX_FAILED_ATTEMPTS = 5
ATTEMPT_WINDOW = timedelta(hours=24)
LOCKOUT_DURATION = timedelta(minutes=15)


def _key(identifier: str) -> str:
    return f"login:{(identifier or '').strip().lower()}"


def _live_entry(identifier: str) -> ThrottleEntry | None:
    """The entry for identifier, or None if absent or its window has expired."""
    entry = db.session.get(ThrottleEntry, _key(identifier))
    if entry is None:
        return None
    now = utcnow()
    if entry.window_expires_at <= now and (entry.locked_until is None or entry.locked_until <= now):
        return None
    return entry


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """(True, seconds_remaining) while locked, else (False, None)."""
    entry = _live_entry(identifier)
    if entry is None or entry.locked_until is None:
        return False, None
    now = utcnow()
    if entry.locked_until <= now:
        return False, None
    return True, int((entry.locked_until - now).total_seconds())


def record_failed_attempt(identifier: str) -> int:
    """Count a failure; returns the failures inside the current window."""
    now = utcnow()
    key = _key(identifier)
    entry = db.session.get(ThrottleEntry, key)
    if entry is None:
        entry = ThrottleEntry(key=key, count=0, window_expires_at=now + ATTEMPT_WINDOW)
        db.session.add(entry)
    elif entry.window_expires_at <= now:
        entry.count = 0
        entry.window_expires_at = now + ATTEMPT_WINDOW
        entry.locked_until = None

    entry.count += 1
    if entry.count >= MAX_FAILED_ATTEMPTS:
        entry.locked_until = now + LOCKOUT_DURATION
    db.session.commit()
    return entry.count


def record_successful_login(identifier: str) -> None:
    """A successful login clears the counter."""
    entry = db.session.get(ThrottleEntry, _key(identifier))
    if entry is not None:
        db.session.delete(entry)
        db.session.commit()


def get_lockout_status(identifier: str) -> dict:
    entry = _live_entry(identifier)
    locked, seconds = is_account_locked(identifier)
    return {
        "locked": locked,
        "failed_attempts": entry.count if entry is not None else 0,
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds,
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() / 60),
    }


def purge_expired() -> int:
    """Delete entries whose window and lock have both passed."""
    now = utcnow()
    deleted = (
        db.session.query(ThrottleEntry)
        .filter(
            ThrottleEntry.window_expires_at <= now,
            db.or_(ThrottleEntry.locked_until.is_(None), ThrottleEntry.locked_until <= now),
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
