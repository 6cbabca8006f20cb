"""Lock stores — leased mutual exclusion over remote state.

Public re-exports plus the factory used by the CLI.
"""

from __future__ import annotations

import logging

from spin.adapters.locks.base import (
    Lock,
    LockAcquisitionTimeout,
    LockContentionError,
    LockError,
    LockStore,
    LockStoreError,
)
from spin.adapters.locks.dynamodb import DynamoDBLockStore
from spin.adapters.locks.memory import LockTable, MemoryLockStore
from spin.core.config.settings import Settings
from spin.core.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "DynamoDBLockStore",
    "Lock",
    "LockAcquisitionTimeout",
    "LockContentionError",
    "LockError",
    "LockStore",
    "LockStoreError",
    "LockTable",
    "MemoryLockStore",
    "create_lock_store",
]


def create_lock_store(settings: Settings) -> LockStore:
    """Build the lock store selected by the settings."""
    backend = settings.effective_lock_backend
    if backend == "dynamodb":
        return DynamoDBLockStore(
            table_name=settings.lock_table or "spin-locks",
            region=settings.lock_region,
            ttl_seconds=settings.lock_ttl,
        )
    if backend == "memory":
        logger.warning(
            "Using the in-process lock store: state is only protected against "
            "modules of this run, not against other processes"
        )
        return MemoryLockStore(ttl_seconds=settings.lock_ttl)
    raise ConfigError(f"Unknown lock backend '{backend}' (expected dynamodb or memory)")
