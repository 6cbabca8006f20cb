"""
Lock store base — the contract between the coordinator and a lock backend.

A lock store hands out leased, named mutual-exclusion tokens. The
backend, not this process, guarantees that at most one holder exists
per key: holders may be other processes on other machines.

Backends must provide atomic "acquire if absent or expired" semantics
and honour ``expires_at`` so that a crashed holder's lock is eventually
reclaimable.
"""

from __future__ import annotations

import os
import socket
import time
import uuid
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from spin.core.errors import SpinError


def default_owner() -> str:
    """Holder identity for locks taken by this process."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class Lock(BaseModel):
    """A held lock (or a description of someone else's)."""

    key: str
    owner: str
    lease_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = Field(default_factory=time.time)
    expires_at: float = 0.0   # epoch seconds; 0 = never

    def expired(self, now: float | None = None) -> bool:
        """Whether the lease has run out and the lock may be reclaimed."""
        if not self.expires_at:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


# ── Errors ──────────────────────────────────────────────────────


class LockError(SpinError):
    """Base class for lock failures."""


class LockContentionError(LockError):
    """The lock is held by someone else right now."""

    def __init__(self, key: str, holder: Lock | None = None):
        self.key = key
        self.holder = holder
        owner = holder.owner if holder else "unknown holder"
        super().__init__(f"Lock '{key}' is held by {owner}")


class LockAcquisitionTimeout(LockError):
    """Contention outlasted the retry budget."""

    def __init__(self, key: str, attempts: int, holder: Lock | None = None):
        self.key = key
        self.attempts = attempts
        self.holder = holder
        owner = holder.owner if holder else "unknown holder"
        super().__init__(
            f"Could not acquire lock '{key}' after {attempts} attempt(s); held by {owner}"
        )


class LockStoreError(LockError):
    """The backend itself failed (network, permissions, missing table)."""


# ── Protocol ────────────────────────────────────────────────────


class LockStore(ABC):
    """Abstract base class for lock backends.

    To create a new backend:
        1. Subclass LockStore
        2. Implement name, acquire, release, describe, force_release
        3. Wire it into ``create_lock_store``
    """

    def __init__(self, owner: str | None = None, ttl_seconds: float = 3600.0):
        self.owner = owner or default_owner()
        self.ttl_seconds = ttl_seconds

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g., 'dynamodb', 'memory')."""

    @abstractmethod
    def acquire(self, key: str) -> Lock:
        """Take the lock for ``key`` if it is free or its lease expired.

        Raises:
            LockContentionError: Someone else holds a live lease.
            LockStoreError: The backend failed.
        """

    @abstractmethod
    def release(self, lock: Lock) -> None:
        """Give back a lock this store handed out.

        Releasing a lock whose lease was meanwhile reclaimed by someone
        else must not remove the new holder's lock.
        """

    @abstractmethod
    def describe(self, key: str) -> Lock | None:
        """Current holder of ``key``, or None if free."""

    @abstractmethod
    def force_release(self, key: str) -> bool:
        """Remove the lock for ``key`` regardless of holder.

        Operator escape hatch. Returns whether a lock was removed.
        """

    def _new_lock(self, key: str) -> Lock:
        now = time.time()
        expires = now + self.ttl_seconds if self.ttl_seconds else 0.0
        return Lock(key=key, owner=self.owner, acquired_at=now, expires_at=expires)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} owner={self.owner!r}>"
