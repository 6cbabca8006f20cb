"""
DynamoDB lock store — the distributed backend.

One item per lock key in a table whose hash key is ``LockID``. Taking a
lock is a conditional put that only succeeds when no item exists or the
existing lease has expired; giving it back is a conditional delete on
our own lease id. ``ExpiresAt`` is registered as the table's TTL
attribute so DynamoDB also garbage-collects abandoned items.

The table layout matches what Terraform's own S3 backend uses for state
locking, so one table can serve both.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from spin.adapters.locks.base import Lock, LockContentionError, LockStore, LockStoreError

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "spin-locks"

_CONDITION_FAILED = "ConditionalCheckFailedException"


class DynamoDBLockStore(LockStore):
    """Lock store backed by a DynamoDB table.

    Args:
        table_name: Table holding the locks.
        region: AWS region of the table (None = boto3 default chain).
        owner: Holder identity written into every lock item.
        ttl_seconds: Lease length; expired leases are reclaimable.
        client: Pre-built boto3 DynamoDB client (tests inject fakes here).
    """

    def __init__(
        self,
        table_name: str = DEFAULT_TABLE,
        region: str | None = None,
        owner: str | None = None,
        ttl_seconds: float = 3600.0,
        client: Any = None,
    ):
        super().__init__(owner=owner, ttl_seconds=ttl_seconds)
        self.table_name = table_name
        self.region = region
        self._client = client

    @property
    def name(self) -> str:
        return "dynamodb"

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "dynamodb",
                region_name=self.region,
                config=Config(retries={"max_attempts": 5, "mode": "standard"}),
            )
        return self._client

    # ── Protocol ─────────────────────────────────────────────────

    def acquire(self, key: str) -> Lock:
        lock = self._new_lock(key)
        now = int(time.time())
        try:
            self.client.put_item(
                TableName=self.table_name,
                Item=_to_item(lock),
                ConditionExpression="attribute_not_exists(LockID) OR ExpiresAt <= :now",
                ExpressionAttributeValues={":now": {"N": str(now)}},
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                raise LockContentionError(key, self._describe_quietly(key)) from exc
            raise LockStoreError(f"Cannot acquire lock '{key}': {exc}") from exc
        except BotoCoreError as exc:
            raise LockStoreError(f"Cannot acquire lock '{key}': {exc}") from exc

        logger.debug("Acquired lock '%s' in %s as %s", key, self.table_name, self.owner)
        return lock

    def release(self, lock: Lock) -> None:
        try:
            self.client.delete_item(
                TableName=self.table_name,
                Key={"LockID": {"S": lock.key}},
                ConditionExpression="LeaseID = :lease",
                ExpressionAttributeValues={":lease": {"S": lock.lease_id}},
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                logger.warning(
                    "Lock '%s' is no longer held by %s (lease expired and was "
                    "reclaimed); nothing to release",
                    lock.key,
                    lock.owner,
                )
                return
            raise LockStoreError(f"Cannot release lock '{lock.key}': {exc}") from exc
        except BotoCoreError as exc:
            raise LockStoreError(f"Cannot release lock '{lock.key}': {exc}") from exc
        logger.debug("Released lock '%s'", lock.key)

    def describe(self, key: str) -> Lock | None:
        try:
            response = self.client.get_item(
                TableName=self.table_name,
                Key={"LockID": {"S": key}},
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as exc:
            raise LockStoreError(f"Cannot read lock '{key}': {exc}") from exc
        item = response.get("Item")
        return _from_item(item) if item else None

    def force_release(self, key: str) -> bool:
        try:
            response = self.client.delete_item(
                TableName=self.table_name,
                Key={"LockID": {"S": key}},
                ReturnValues="ALL_OLD",
            )
        except (BotoCoreError, ClientError) as exc:
            raise LockStoreError(f"Cannot release lock '{key}': {exc}") from exc
        removed = bool(response.get("Attributes"))
        if removed:
            logger.warning("Force-released lock '%s'", key)
        return removed

    # ── Table management ─────────────────────────────────────────

    def ensure_table(self, wait: bool = True) -> bool:
        """Create the lock table if it does not exist.

        Returns True when the table was created by this call.
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            return False
        except ClientError as exc:
            if _error_code(exc) != "ResourceNotFoundException":
                raise LockStoreError(f"Cannot inspect table {self.table_name}: {exc}") from exc

        logger.info("Creating lock table %s", self.table_name)
        try:
            self.client.create_table(
                TableName=self.table_name,
                AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
            )
            if wait:
                self.client.get_waiter("table_exists").wait(TableName=self.table_name)
            self.client.update_time_to_live(
                TableName=self.table_name,
                TimeToLiveSpecification={"Enabled": True, "AttributeName": "ExpiresAt"},
            )
        except (BotoCoreError, ClientError) as exc:
            raise LockStoreError(f"Cannot create table {self.table_name}: {exc}") from exc
        return True

    def _describe_quietly(self, key: str) -> Lock | None:
        try:
            return self.describe(key)
        except LockStoreError as exc:
            logger.debug("Cannot describe contended lock '%s': %s", key, exc)
            return None


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _to_item(lock: Lock) -> dict[str, dict[str, str]]:
    item = {
        "LockID": {"S": lock.key},
        "Owner": {"S": lock.owner},
        "LeaseID": {"S": lock.lease_id},
        "AcquiredAt": {"N": str(int(lock.acquired_at))},
    }
    # No ExpiresAt attribute means the lease never expires
    if lock.expires_at:
        item["ExpiresAt"] = {"N": str(int(lock.expires_at))}
    return item


def _from_item(item: dict[str, dict[str, str]]) -> Lock:
    return Lock(
        key=item["LockID"]["S"],
        owner=item.get("Owner", {}).get("S", "unknown"),
        lease_id=item.get("LeaseID", {}).get("S", ""),
        acquired_at=float(item.get("AcquiredAt", {}).get("N", "0")),
        expires_at=float(item.get("ExpiresAt", {}).get("N", "0")),
    )
