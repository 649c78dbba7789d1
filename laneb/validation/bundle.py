"""BUNDLE.json contract, including self-consistency of its hash."""

from __future__ import annotations

import re
from typing import Any

from laneb.core.pins import compute_bundle_hash
from laneb.validation.result import Validated, from_diagnostics, is_non_empty_str

INPUT_GROUPS = ("proposals", "patch_plan_jsons", "qa_plan_jsons", "ssot_bundle_jsons")

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


def bundle_pins(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    inputs = bundle.get("inputs") if isinstance(bundle.get("inputs"), dict) else {}
    pins: list[dict[str, Any]] = []
    for group in INPUT_GROUPS:
        entries = inputs.get(group)
        if isinstance(entries, list):
            pins.extend(entry for entry in entries if isinstance(entry, dict))
    return pins


def validate_bundle(raw: object, *, expected_work_id: str | None = None) -> Validated[dict[str, Any]]:
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["bundle must be a JSON object"])

    diagnostics: list[str] = []
    if raw.get("version") != 1:
        diagnostics.append("version must be 1")
    if not is_non_empty_str(raw.get("work_id")):
        diagnostics.append("work_id must be a non-empty string")
    elif expected_work_id and raw["work_id"] != expected_work_id:
        diagnostics.append("work_id does not match the work item")

    bundle_hash = raw.get("bundle_hash")
    if not isinstance(bundle_hash, str) or not _SHA256_RE.match(bundle_hash):
        diagnostics.append("bundle_hash must be a sha256 hex digest")

    repos = raw.get("repos")
    if not isinstance(repos, list) or not repos:
        diagnostics.append("repos must be a non-empty array")
    else:
        for index, repo in enumerate(repos):
            if not isinstance(repo, dict) or not is_non_empty_str(repo.get("repo_id")):
                diagnostics.append(f"repos[{index}].repo_id must be a non-empty string")

    inputs = raw.get("inputs")
    if not isinstance(inputs, dict):
        diagnostics.append("inputs must be an object")
    else:
        for group in INPUT_GROUPS:
            entries = inputs.get(group)
            if not isinstance(entries, list):
                diagnostics.append(f"inputs.{group} must be an array")
                continue
            for index, entry in enumerate(entries):
                if (
                    not isinstance(entry, dict)
                    or not is_non_empty_str(entry.get("path"))
                    or not isinstance(entry.get("sha256"), str)
                    or not _SHA256_RE.match(entry["sha256"])
                ):
                    diagnostics.append(f"inputs.{group}[{index}] must be {{path, sha256}}")

    if not diagnostics and compute_bundle_hash(bundle_pins(raw)) != bundle_hash:
        diagnostics.append("bundle_hash does not match the pinned inputs")
    return from_diagnostics(dict(raw), diagnostics)
