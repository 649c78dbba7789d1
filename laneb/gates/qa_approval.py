"""QA role signoff (QA_APPROVAL.json)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from structlog import get_logger

from laneb.context import WorkPaths
from laneb.core.errors import InvalidFormat, PreconditionFailure
from laneb.core.jsonio import now_iso, read_json_object, write_json_atomic
from laneb.validation import Err, validate_qa_approval

logger = get_logger(__name__)


def default_qa_approval(work_id: str) -> dict[str, Any]:
    return {"version": 1, "work_id": work_id, "status": "pending", "by": None, "notes": None, "updated_at": None}


def read_qa_approval(paths: WorkPaths) -> tuple[dict[str, Any], bool]:
    """Return `(approval, exists)`; a missing file reads as a pending default.

    Raises:
        InvalidFormat: the file exists but is not a valid QA approval.
    """
    raw = read_json_object(paths.qa_approval, required=False)
    if raw is None:
        return default_qa_approval(paths.work_id), False
    checked = validate_qa_approval(raw, expected_work_id=paths.work_id)
    if isinstance(checked, Err):
        raise InvalidFormat(f"invalid QA approval: {paths.qa_approval}", path=str(paths.qa_approval), errors=checked.errors)
    return checked.value, True


def set_qa_approval(
    paths: WorkPaths,
    status: str,
    *,
    by: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    normalized: Literal["approved", "rejected"]
    lowered = str(status or "").strip().lower()
    if lowered == "approved":
        normalized = "approved"
    elif lowered == "rejected":
        normalized = "rejected"
    else:
        raise PreconditionFailure("invalid QA status (expected approved|rejected)")
    who = str(by or "").strip()
    if not who:
        raise PreconditionFailure("QA approval requires a named approver")

    # Surface a corrupt existing file instead of overwriting it silently.
    read_qa_approval(paths)
    approval = {
        "version": 1,
        "work_id": paths.work_id,
        "status": normalized,
        "by": who,
        "notes": notes.strip() if notes and notes.strip() else None,
        "updated_at": now_iso(now),
    }
    write_json_atomic(paths.qa_approval, approval)
    logger.info("qa_approval_set", work_id=paths.work_id, status=normalized, by=who)
    return approval
