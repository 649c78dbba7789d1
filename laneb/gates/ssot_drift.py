"""SSOT drift check: routed repos and planned paths vs. the work SSOT constraints."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from structlog import get_logger

from laneb.context import WorkContext
from laneb.core.errors import InvalidFormat, MissingArtifact
from laneb.core.jsonio import now_iso, read_json_object, read_text_if_exists, sha256_hex, write_json_atomic

logger = get_logger(__name__)


def _normalize_prefix(raw: object) -> str | None:
    text = str(raw or "").strip().replace("\\", "/")
    if not text:
        return None
    return text[2:] if text.startswith("./") else text


def path_matches_prefix(path: str, prefix: str) -> bool:
    normalized_path = _normalize_prefix(path)
    normalized_prefix = _normalize_prefix(prefix)
    if not normalized_path or not normalized_prefix:
        return False
    if normalized_path == normalized_prefix:
        return True
    if normalized_prefix.endswith("/"):
        return normalized_path.startswith(normalized_prefix)
    return normalized_path.startswith(f"{normalized_prefix}/")


def _violation(section: str, evidence: str) -> dict[str, str]:
    return {
        "rule_id": f"ssot.constraints.{section}",
        "doc": "ssot/constraints",
        "section": section,
        "evidence": evidence,
    }


def compute_violations(constraints: dict[str, Any] | None, repo_ids: list[str], impacted_paths: list[str]) -> list[dict[str, str]]:
    constraints = constraints or {}

    def strings(key: str) -> list[str]:
        value = constraints.get(key)
        return [str(item) for item in value] if isinstance(value, list) else []

    allowed_repos = strings("allowed_repo_ids")
    forbidden_repos = strings("forbidden_repo_ids")
    allowed_paths = strings("allowed_paths")
    forbidden_paths = strings("forbidden_paths")

    hard: list[dict[str, str]] = []
    for repo_id in repo_ids:
        if repo_id in forbidden_repos:
            hard.append(_violation("forbidden_repo_ids", f"repo_id {repo_id!r} is forbidden by SSOT constraints"))
        if allowed_repos and repo_id not in allowed_repos:
            hard.append(_violation("allowed_repo_ids", f"repo_id {repo_id!r} is not allowed by SSOT constraints"))

    for path in impacted_paths:
        for prefix in forbidden_paths:
            if path_matches_prefix(path, prefix):
                hard.append(_violation("forbidden_paths", f"path {path!r} matches forbidden prefix {prefix!r}"))
                break
        if allowed_paths and not any(path_matches_prefix(path, prefix) for prefix in allowed_paths):
            hard.append(_violation("allowed_paths", f"path {path!r} is not within any allowed_paths prefix"))
    return hard


def run_ssot_drift_check(context: WorkContext, work_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Compute and persist SSOT_DRIFT.json for a work item.

    Raises:
        MissingArtifact: the work SSOT bundle is absent.
        InvalidFormat: the SSOT bundle, routing, or a patch plan is not valid JSON.
    """
    paths = context.work(work_id)
    ssot_text = read_text_if_exists(paths.ssot_bundle)
    if ssot_text is None:
        raise MissingArtifact(f"missing artifact: {paths.ssot_bundle}", path=str(paths.ssot_bundle))
    try:
        ssot = json.loads(ssot_text)
    except json.JSONDecodeError as exc:
        raise InvalidFormat(f"invalid JSON in {paths.ssot_bundle}", path=str(paths.ssot_bundle)) from exc

    routing = read_json_object(paths.routing, required=False) or {}
    repo_ids = [str(r).strip() for r in routing.get("selected_repos") or [] if str(r or "").strip()]

    impacted: set[str] = set()
    for repo_id in repo_ids:
        plan = read_json_object(paths.patch_plan(repo_id), required=False)
        if plan is None:
            continue
        for edit in plan.get("edits") or []:
            if isinstance(edit, dict) and str(edit.get("path") or "").strip():
                impacted.add(str(edit["path"]).strip())
        scope = plan.get("scope")
        if isinstance(scope, dict):
            impacted.update(str(p).strip() for p in scope.get("allowed_paths") or [] if str(p or "").strip())

    constraints = ssot.get("constraints") if isinstance(ssot, dict) and isinstance(ssot.get("constraints"), dict) else None
    hard = compute_violations(constraints, repo_ids, sorted(impacted))
    report = {
        "version": 1,
        "work_id": paths.work_id,
        "bundle_sha256": sha256_hex(ssot_text),
        "created_at": now_iso(now),
        "hard_violations": hard,
        "soft_deviations": [],
    }
    write_json_atomic(paths.ssot_drift, report)
    logger.info("ssot_drift_checked", work_id=paths.work_id, hard_violations=len(hard))
    return report


def read_hard_violations(context: WorkContext, work_id: str) -> list[dict[str, Any]] | None:
    """Recorded hard violations, or None when no drift report exists.

    Raises:
        InvalidFormat: SSOT_DRIFT.json exists but is malformed.
    """
    paths = context.work(work_id)
    report = read_json_object(paths.ssot_drift, required=False)
    if report is None:
        return None
    hard = report.get("hard_violations", [])
    if not isinstance(hard, list):
        raise InvalidFormat(f"hard_violations must be an array in {paths.ssot_drift}", path=str(paths.ssot_drift))
    return [item for item in hard if isinstance(item, dict)]
