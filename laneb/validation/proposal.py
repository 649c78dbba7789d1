"""Proposal documents produced by upstream team agents."""

from __future__ import annotations

from typing import Any

from laneb.validation.result import Validated, from_diagnostics, is_non_empty_str

PROPOSAL_STATUSES = ("SUCCESS", "FAIL")


def validate_proposal(raw: object, *, expected_team_id: str | None = None) -> Validated[dict[str, Any]]:
    """Validate a proposal that is about to be pinned into a bundle.

    Only SUCCESS proposals with at least one SSOT reference are bundleable.
    """
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["proposal must be a JSON object"])

    diagnostics: list[str] = []
    status = raw.get("status")
    if status not in PROPOSAL_STATUSES:
        diagnostics.append("status must be SUCCESS|FAIL")
    elif status != "SUCCESS":
        diagnostics.append("status is not SUCCESS")

    if not is_non_empty_str(raw.get("agent_id")):
        diagnostics.append("agent_id must be a non-empty string")

    team_id = raw.get("team_id")
    if team_id is not None and not is_non_empty_str(team_id):
        diagnostics.append("team_id must be a non-empty string when present")
    if expected_team_id and is_non_empty_str(team_id) and team_id.strip() != expected_team_id:
        diagnostics.append(f"team_id {team_id.strip()!r} does not match {expected_team_id!r}")

    references = raw.get("ssot_references")
    if not isinstance(references, list) or not references:
        diagnostics.append("ssot_references must be a non-empty array")

    normalized = dict(raw)
    if is_non_empty_str(raw.get("agent_id")):
        normalized["agent_id"] = raw["agent_id"].strip()
    return from_diagnostics(normalized, diagnostics)
