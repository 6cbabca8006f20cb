"""
Audit ledger — one line per run.

Every run-all appends an entry to ``<root>/.spin/audit.ndjson``
(newline-delimited JSON): what was run, by whom, and how every module
ended. Entries are never modified or deleted.
"""

from __future__ import annotations

import getpass
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from spin.core.engine.executor import RunReport

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".spin"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single run in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    user: str = ""
    command: list[str] = Field(default_factory=list)
    reverse: bool = False
    dry_run: bool = False

    status: str = ""               # ok, partial, failed, cancelled
    modules_total: int = 0
    modules_succeeded: int = 0
    modules_failed: int = 0
    modules_skipped: int = 0
    duration_ms: int = 0

    # path → status, and path → error/cause for the ones that did not succeed
    modules: dict[str, str] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_report(
        cls,
        report: RunReport,
        duration_ms: int = 0,
        dry_run: bool = False,
    ) -> AuditEntry:
        errors: dict[str, str] = {}
        for path, receipt in report.receipts.items():
            if receipt.failed:
                errors[path] = receipt.error or "failed"
            elif receipt.cause:
                errors[path] = f"skipped: upstream {receipt.cause} failed"

        return cls(
            run_id=report.run_id,
            user=_current_user(),
            command=report.command,
            reverse=report.reverse,
            dry_run=dry_run,
            status=report.status,
            modules_total=report.total,
            modules_succeeded=report.succeeded,
            modules_failed=report.failed,
            modules_skipped=report.skipped,
            duration_ms=duration_ms,
            modules={p: r.status for p, r in sorted(report.receipts.items())},
            errors=errors,
        )


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None, root: Path | None = None):
        if path is not None:
            self._path = path
        elif root is not None:
            self._path = root / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_DIR) / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. A ledger that cannot be written is logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s (%s)", entry.run_id, entry.status)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""
