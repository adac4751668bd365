# Overview: Service-layer operations for concurrency; per-key locks, row locks and bounded retry.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db


# =============================================================================
# PER-KEY LOCKS
# =============================================================================

_registry_guard = threading.Lock()
_key_locks: dict[str, threading.RLock] = {}


def _lock_for_key(key: str) -> threading.RLock:
    with _registry_guard:
        lock = _key_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _key_locks[key] = lock
        return lock


def customer_key(customer_id: int) -> str:
    return f"customer:{customer_id}"


def shift_key(shift_id: int) -> str:
    return f"shift:{shift_id}"


@contextmanager
def keyed_lock(*keys):
    """
    Serialize work on the given keys within this process.

    WHY: A customer balance or a shift's totals must see one writer at a
    time. Keys are acquired in sorted order so two settlements touching the
    same customer and shift can never deadlock each other. Locks are
    re-entrant, so a service already holding a key may call another that
    takes it again.

    Cross-process safety comes from the row lock and version check below;
    this lock only keeps same-process writers from burning retries.
    """
    ordered = sorted({k for k in keys if k})
    acquired = []
    try:
        for key in ordered:
            lock = _lock_for_key(key)
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


# =============================================================================
# ROW LOCKS AND RETRY
# =============================================================================

def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing refreshes rows already in the identity map, so the
    caller sees the committed balance rather than one read before the lock.
    """
    return query.with_for_update().populate_existing()


def _retry_settings(attempts, backoff_base):
    if has_app_context():
        if attempts is None:
            attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)
    return attempts or 3, 0.1 if backoff_base is None else backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry; exhausting every attempt raises ConcurrencyConflict, with nothing
    committed.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if has_app_context():
                current_app.logger.warning(
                    "Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
                )
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Concurrent update conflict; please retry",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))

