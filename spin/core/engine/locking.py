"""
Locking protocol — acquire with bounded retry, release on every exit.

The lock store guarantees mutual exclusion; this module adds the retry
budget on contention and the scoping that makes sure a lock taken for a
module is given back whether the tool succeeded, failed, raised or the
run was cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from spin.adapters.locks.base import (
    Lock,
    LockAcquisitionTimeout,
    LockContentionError,
    LockError,
    LockStore,
)
from spin.core.errors import RunCancelled
from spin.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


def acquire_with_retry(
    store: LockStore,
    key: str,
    policy: RetryPolicy,
    cancel: threading.Event | None = None,
) -> Lock:
    """Acquire ``key``, retrying on contention within the policy's budget.

    Raises:
        LockAcquisitionTimeout: Still contended after max_attempts.
        RunCancelled: ``cancel`` was set while waiting between attempts.
        LockStoreError: The backend failed (not retried).
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return store.acquire(key)
        except LockContentionError as e:
            if policy.exhausted(attempt):
                raise LockAcquisitionTimeout(key, attempt, e.holder) from e

            delay = policy.delay(attempt)
            logger.info(
                "Lock '%s' held by %s; retrying in %.1fs (attempt %d/%d)",
                key,
                e.holder.owner if e.holder else "unknown holder",
                delay,
                attempt,
                policy.max_attempts,
            )
            if cancel is not None:
                if cancel.wait(delay):
                    raise RunCancelled(f"Cancelled while waiting for lock '{key}'") from e
            else:
                time.sleep(delay)


@contextmanager
def hold_lock(
    store: LockStore,
    key: str,
    policy: RetryPolicy,
    cancel: threading.Event | None = None,
) -> Iterator[Lock]:
    """Hold the lock for ``key`` for the duration of the with-block.

    A failure to release is logged, not raised: the lease expiry
    reclaims the lock, and the outcome of the protected call stands.
    """
    lock = acquire_with_retry(store, key, policy, cancel)
    logger.debug("Holding lock '%s' (lease %s)", key, lock.lease_id)
    try:
        yield lock
    finally:
        try:
            store.release(lock)
        except LockError as e:
            logger.error(
                "Failed to release lock '%s': %s (it will expire at its lease end)",
                key,
                e,
            )
