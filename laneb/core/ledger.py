"""Append-only decision ledger shared by all work items."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from laneb.core.jsonio import append_jsonl, now_iso, read_jsonl


class LedgerError(RuntimeError):
    """Raised when a ledger record cannot be written."""


class Ledger:
    """Line-delimited JSON log of `{timestamp, action, work_id, ...}` records.

    Records are only ever appended; nothing rewrites or truncates the file.
    """

    def __init__(self, ledger_path: Path) -> None:
        self._ledger_path = ledger_path

    @property
    def path(self) -> Path:
        return self._ledger_path

    def append(self, action: str, *, work_id: str | None = None, now: datetime | None = None, **fields: Any) -> dict[str, Any]:
        if not action.strip():
            raise LedgerError("ledger action must be a non-empty string")
        reserved = {"timestamp", "action", "work_id"} & fields.keys()
        if reserved:
            raise LedgerError(f"ledger fields collide with reserved keys: {sorted(reserved)}")

        record: dict[str, Any] = {"timestamp": now_iso(now), "action": action}
        if work_id is not None:
            record["work_id"] = work_id
        record.update({k: v for k, v in fields.items() if v is not None})
        append_jsonl(self._ledger_path, record)
        return record

    def replay(self) -> tuple[dict[str, Any], ...]:
        return tuple(read_jsonl(self._ledger_path))

    def entries_for(self, work_id: str) -> tuple[dict[str, Any], ...]:
        return tuple(record for record in self.replay() if record.get("work_id") == work_id)
