"""Advisory per-work-item lock.

Only one invocation may mutate a work item's artifact set at a time. The lock
is a file created exclusively (`O_CREAT | O_EXCL`) that records its holder:
pid, hostname, start time, and the operation it guards. A lock whose holder
started more than `stale_seconds` ago is assumed abandoned and replaced.
"""

from __future__ import annotations

import json
import os
import socket
import time
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from structlog import get_logger

logger = get_logger(__name__)


class WorkItemLockError(RuntimeError):
    """Raised when the work-item lock cannot be acquired in time."""


class WorkItemLock:
    """Exclusive lock file guarding one work-item directory."""

    def __init__(
        self,
        lock_path: Path,
        *,
        retry_seconds: float = 0.01,
        wait_seconds: float = 5.0,
        stale_seconds: int = 300,
    ) -> None:
        if wait_seconds <= 0:
            raise ValueError("wait_seconds must be > 0")
        if stale_seconds < 1:
            raise ValueError("stale_seconds must be >= 1")
        self._lock_path = lock_path
        self._retry_seconds = retry_seconds
        self._wait_seconds = wait_seconds
        self._stale_seconds = stale_seconds

    @property
    def path(self) -> Path:
        return self._lock_path

    def holder(self) -> dict[str, Any] | None:
        """Metadata of the current holder, or None when unlocked or unreadable."""
        try:
            raw = self._lock_path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    @contextmanager
    def hold(self, operation: str | None = None) -> Iterator[dict[str, Any]]:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        owner = {
            "token": uuid.uuid4().hex,
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "started_at": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "operation": operation,
        }
        deadline = time.monotonic() + self._wait_seconds
        while not self._try_acquire(owner):
            self._replace_if_stale()
            if time.monotonic() > deadline:
                current = self.holder() or {}
                raise WorkItemLockError(
                    f"timed out waiting for work item lock: {self._lock_path} "
                    f"(held by pid={current.get('pid')} operation={current.get('operation')})"
                )
            time.sleep(self._retry_seconds)

        try:
            yield owner
        finally:
            self._release(owner["token"])

    def _try_acquire(self, owner: dict[str, Any]) -> bool:
        try:
            fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(owner, handle, sort_keys=True)
            handle.write("\n")
        return True

    def _release(self, token: str) -> None:
        current = self.holder()
        if current is not None and current.get("token") != token:
            # Replaced as stale while we held it; the new holder owns the file.
            logger.warning("work_lock_lost", lock_path=str(self._lock_path), holder_pid=current.get("pid"))
            return
        self._lock_path.unlink(missing_ok=True)

    def _age_seconds(self) -> float | None:
        current = self.holder()
        started = current.get("started_at") if current else None
        if isinstance(started, str):
            try:
                parsed = datetime.fromisoformat(started.replace("Z", "+00:00"))
            except ValueError:
                parsed = None
            if parsed is not None and parsed.tzinfo is not None:
                return (datetime.now(UTC) - parsed).total_seconds()
        try:
            return time.time() - self._lock_path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _replace_if_stale(self) -> None:
        age_seconds = self._age_seconds()
        if age_seconds is None or age_seconds <= self._stale_seconds:
            return
        stale = self.holder() or {}
        try:
            self._lock_path.unlink()
        except FileNotFoundError:
            return
        logger.warning(
            "stale_work_lock_replaced",
            lock_path=str(self._lock_path),
            age_seconds=int(age_seconds),
            holder_pid=stale.get("pid"),
            holder_operation=stale.get("operation"),
        )
