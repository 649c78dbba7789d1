"""Gate decision documents (APPLY_APPROVAL.json, MERGE_APPROVAL.json, QA_APPROVAL.json)."""

from __future__ import annotations

from typing import Any

from laneb.validation.result import Validated, from_diagnostics, is_non_empty_str, is_str_list

APPROVAL_STATUSES = ("pending", "approved", "rejected")
APPROVAL_MODES = ("auto", "manual")


def validate_approval(raw: object, *, expected_work_id: str | None = None) -> Validated[dict[str, Any]]:
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["approval must be a JSON object"])

    diagnostics: list[str] = []
    if raw.get("version") != 1:
        diagnostics.append("version must be 1")
    if not is_non_empty_str(raw.get("work_id")):
        diagnostics.append("work_id must be a non-empty string")
    elif expected_work_id and raw["work_id"] != expected_work_id:
        diagnostics.append("work_id does not match the work item")

    status = raw.get("status")
    if status not in APPROVAL_STATUSES:
        diagnostics.append("status must be pending|approved|rejected")
    if raw.get("mode") not in APPROVAL_MODES:
        diagnostics.append("mode must be auto|manual")
    if not is_non_empty_str(raw.get("bundle_hash")):
        diagnostics.append("bundle_hash must be a non-empty string")
    if not is_str_list(raw.get("reason_codes", [])):
        diagnostics.append("reason_codes must be string[]")
    if status == "approved":
        if not is_non_empty_str(raw.get("approved_by")):
            diagnostics.append("approved_by is required when approved")
        if not is_non_empty_str(raw.get("approved_at")):
            diagnostics.append("approved_at is required when approved")
    return from_diagnostics(dict(raw), diagnostics)


def validate_qa_approval(raw: object, *, expected_work_id: str | None = None) -> Validated[dict[str, Any]]:
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["qa approval must be a JSON object"])

    diagnostics: list[str] = []
    if raw.get("version") != 1:
        diagnostics.append("version must be 1")
    if expected_work_id and raw.get("work_id") != expected_work_id:
        diagnostics.append("work_id does not match the work item")
    status = raw.get("status")
    if status not in APPROVAL_STATUSES:
        diagnostics.append("status must be pending|approved|rejected")
    if status in ("approved", "rejected") and not is_non_empty_str(raw.get("by")):
        diagnostics.append("by is required once a QA decision is recorded")
    if raw.get("notes") is not None and not isinstance(raw.get("notes"), str):
        diagnostics.append("notes must be a string")
    return from_diagnostics(dict(raw), diagnostics)
