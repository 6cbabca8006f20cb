"""
In-memory lock store — same semantics as a remote store, one process.

Serves tests and single-process local runs. Several MemoryLockStore
instances sharing one ``table`` behave like independent processes
sharing one remote lock table.
"""

from __future__ import annotations

import logging
import threading
import time

from spin.adapters.locks.base import Lock, LockContentionError, LockStore

logger = logging.getLogger(__name__)


class LockTable:
    """The shared backing store: key → Lock, guarded by a mutex."""

    def __init__(self) -> None:
        self.locks: dict[str, Lock] = {}
        self.mutex = threading.Lock()


class MemoryLockStore(LockStore):
    """Lock store kept in a process-local table."""

    def __init__(
        self,
        owner: str | None = None,
        ttl_seconds: float = 3600.0,
        table: LockTable | None = None,
    ):
        super().__init__(owner=owner, ttl_seconds=ttl_seconds)
        self._table = table or LockTable()
        self._acquire_log: list[str] = []

    @property
    def name(self) -> str:
        return "memory"

    @property
    def table(self) -> LockTable:
        return self._table

    @property
    def acquire_log(self) -> list[str]:
        """Keys successfully acquired through this store, in order."""
        return self._acquire_log

    def acquire(self, key: str) -> Lock:
        with self._table.mutex:
            current = self._table.locks.get(key)
            if current is not None and not current.expired(time.time()):
                raise LockContentionError(key, current)
            if current is not None:
                logger.info("Reclaiming expired lock '%s' from %s", key, current.owner)
            lock = self._new_lock(key)
            self._table.locks[key] = lock
            self._acquire_log.append(key)
        logger.debug("Acquired lock '%s' as %s", key, self.owner)
        return lock

    def release(self, lock: Lock) -> None:
        with self._table.mutex:
            current = self._table.locks.get(lock.key)
            if current is None or current.lease_id != lock.lease_id:
                logger.warning(
                    "Lock '%s' is no longer held by %s; nothing to release",
                    lock.key,
                    lock.owner,
                )
                return
            del self._table.locks[lock.key]
        logger.debug("Released lock '%s'", lock.key)

    def describe(self, key: str) -> Lock | None:
        with self._table.mutex:
            return self._table.locks.get(key)

    def force_release(self, key: str) -> bool:
        with self._table.mutex:
            return self._table.locks.pop(key, None) is not None
