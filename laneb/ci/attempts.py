"""Persisted CI remediation counters (CI/attempts.json)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from laneb.context import WorkPaths
from laneb.core.jsonio import now_iso, read_json_object, write_json_atomic


class CiAttempts(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = 1
    work_id: str
    fix_attempts: int = Field(default=0, ge=0)
    last_fix_attempt_at: Optional[str] = None
    last_fix_snapshot_hash: Optional[str] = None
    last_polled_snapshot_hash: Optional[str] = None
    unchanged_polls_in_fixing: int = Field(default=0, ge=0)
    updated_at: Optional[str] = None

    @field_validator("fix_attempts", "unchanged_polls_in_fixing", mode="before")
    @classmethod
    def _coerce_counter(cls, value: Any) -> int:
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    def record_fix_attempt(self, snapshot: str | None, *, now: datetime | None = None) -> None:
        self.fix_attempts += 1
        self.last_fix_attempt_at = now_iso(now)
        self.last_fix_snapshot_hash = snapshot
        self.unchanged_polls_in_fixing = 0

    def record_poll(self, snapshot: str, *, fixing: bool) -> bool:
        """Track a poll; returns True when the snapshot did not move while fixing."""
        unchanged = fixing and snapshot in (self.last_polled_snapshot_hash, self.last_fix_snapshot_hash)
        if unchanged:
            self.unchanged_polls_in_fixing += 1
        else:
            self.unchanged_polls_in_fixing = 0
        self.last_polled_snapshot_hash = snapshot
        return unchanged


def load_attempts(paths: WorkPaths) -> CiAttempts:
    """Read the counters; a missing file starts from zero.

    Raises:
        InvalidFormat: the file is not a JSON object.
    """
    payload = read_json_object(paths.ci_attempts, required=False) or {}
    payload["work_id"] = paths.work_id
    return CiAttempts.model_validate(payload)


def save_attempts(paths: WorkPaths, attempts: CiAttempts, *, now: datetime | None = None) -> None:
    attempts.updated_at = now_iso(now)
    write_json_atomic(paths.ci_attempts, attempts.model_dump(mode="json"))
