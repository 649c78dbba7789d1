"""CI status snapshots: check normalization, overall verdict, and capped history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Literal, Mapping

from structlog import get_logger

from laneb.context import WorkPaths
from laneb.core.errors import InvalidFormat
from laneb.core.jsonio import now_iso, read_json_if_exists, read_json_object, sha256_hex, stable_dumps, write_json_atomic

logger = get_logger(__name__)

Overall = Literal["pending", "failed", "success"]

FAILING_CONCLUSIONS = frozenset({"failure", "timed_out", "cancelled", "canceled", "action_required"})
PENDING_STATUSES = frozenset({"queued", "in_progress", "pending", "waiting", "requested"})

# Fields that change on every poll without saying anything about CI itself.
_VOLATILE_FIELDS = ("captured_at", "latest_feedback")


def _lower(value: object) -> str | None:
    text = str(value or "").strip().lower()
    return text or None


def normalize_check(raw: Mapping[str, Any]) -> dict[str, Any] | None:
    name = str(raw.get("name") or "").strip()
    if not name:
        return None
    status = _lower(raw.get("status") or raw.get("state"))
    if status == "in progress":
        status = "in_progress"
    required = raw.get("required")
    return {
        "name": name,
        "status": status,
        "conclusion": _lower(raw.get("conclusion")),
        "url": raw.get("url") if isinstance(raw.get("url"), str) else None,
        "required": required if isinstance(required, bool) else None,
    }


def normalize_checks(raw_checks: Iterable[object]) -> list[dict[str, Any]]:
    checks = [c for c in (normalize_check(r) for r in raw_checks if isinstance(r, Mapping)) if c is not None]
    return sorted(checks, key=lambda c: c["name"])


def check_is_failing(check: Mapping[str, Any]) -> bool:
    return _lower(check.get("conclusion")) in FAILING_CONCLUSIONS


def check_is_pending(check: Mapping[str, Any]) -> bool:
    return _lower(check.get("status")) in PENDING_STATUSES


def compute_overall(checks: Iterable[Mapping[str, Any]]) -> Overall:
    checks = list(checks)
    if not checks:
        return "pending"
    if any(check_is_pending(c) for c in checks):
        return "pending"
    if any(check_is_failing(c) for c in checks):
        return "failed"
    return "success"


def ci_is_green(status: Mapping[str, Any] | None) -> bool:
    """Green means overall success, no failing or pending check, and at least one success."""
    if not status:
        return False
    if _lower(status.get("overall")) != "success":
        return False
    checks = [c for c in status.get("checks") or [] if isinstance(c, Mapping)]
    if any(check_is_failing(c) or check_is_pending(c) for c in checks):
        return False
    return any(_lower(c.get("conclusion")) == "success" for c in checks)


def snapshot_hash(status: Mapping[str, Any]) -> str:
    material = {k: v for k, v in status.items() if k not in _VOLATILE_FIELDS}
    return sha256_hex(stable_dumps(material))


def build_snapshot(
    work_id: str,
    pull_requests: list[dict[str, Any]],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Aggregate per-PR check results into one CI_Status.json document.

    Each item of `pull_requests` carries `repo_id`, `pr_number`, `head_sha` and
    its raw `checks`.
    """
    prs: list[dict[str, Any]] = []
    all_checks: list[dict[str, Any]] = []
    for pr in sorted(pull_requests, key=lambda p: str(p.get("repo_id") or "")):
        checks = normalize_checks(pr.get("checks") or [])
        prs.append(
            {
                "repo_id": pr.get("repo_id"),
                "pr_number": pr.get("pr_number"),
                "head_sha": pr.get("head_sha"),
                "overall": compute_overall(checks),
                "checks": checks,
            }
        )
        all_checks.extend({**check, "repo_id": pr.get("repo_id")} for check in checks)

    per_pr = [pr["overall"] for pr in prs]
    if not per_pr or "pending" in per_pr:
        overall: Overall = "pending"
    elif "failed" in per_pr:
        overall = "failed"
    else:
        overall = "success"

    return {
        "version": 1,
        "work_id": work_id,
        "captured_at": now_iso(now),
        "overall": overall,
        "head_sha": prs[0]["head_sha"] if len(prs) == 1 else None,
        "pull_requests": prs,
        "checks": all_checks,
        "latest_feedback": None,
    }


@dataclass(frozen=True)
class SnapshotWrite:
    status: dict[str, Any]
    snapshot_hash: str
    wrote_new_snapshot: bool


class CiStatusStore:
    """CI/CI_Status.json plus CI/CI_Status_History.json for one work item."""

    def __init__(self, paths: WorkPaths, *, history_limit: int = 20) -> None:
        self._paths = paths
        self._history_limit = history_limit

    def read(self) -> dict[str, Any] | None:
        return read_json_object(self._paths.ci_status, required=False)

    def history(self) -> list[dict[str, Any]]:
        payload = read_json_if_exists(self._paths.ci_status_history)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise InvalidFormat(f"expected a JSON array in {self._paths.ci_status_history}", path=str(self._paths.ci_status_history))
        return payload

    def write(self, status: dict[str, Any]) -> SnapshotWrite:
        """Persist `status` unless it is materially identical to the current snapshot.

        The replaced snapshot is appended to the history, which keeps at most
        `history_limit` entries.
        """
        next_hash = snapshot_hash(status)
        existing = self.read()
        if existing is not None and snapshot_hash(existing) == next_hash:
            return SnapshotWrite(status=existing, snapshot_hash=next_hash, wrote_new_snapshot=False)

        history = self.history()
        if existing is not None:
            history.append(existing)
        if self._history_limit > 0:
            history = history[-self._history_limit :]
        write_json_atomic(self._paths.ci_status_history, history)

        to_write = dict(status)
        if to_write.get("overall") == "failed":
            to_write["latest_feedback"] = [
                {"repo_id": c.get("repo_id"), "name": c["name"], "conclusion": c.get("conclusion"), "url": c.get("url")}
                for c in to_write.get("checks") or []
                if check_is_failing(c)
            ]
        write_json_atomic(self._paths.ci_status, to_write)
        logger.debug("ci_snapshot_written", work_id=self._paths.work_id, overall=to_write.get("overall"), snapshot_hash=next_hash)
        return SnapshotWrite(status=to_write, snapshot_hash=next_hash, wrote_new_snapshot=True)
