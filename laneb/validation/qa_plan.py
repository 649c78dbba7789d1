"""QA plan contract."""

from __future__ import annotations

import re
from typing import Any

from laneb.validation.result import Validated, from_diagnostics, is_non_empty_str

TEST_TYPES = ("unit", "integration", "e2e", "manual")
TEST_PRIORITIES = ("P0", "P1", "P2", "P3")
GAP_IMPACTS = ("low", "medium", "high")


def _looks_absolute(text: str) -> bool:
    return text.startswith("/") or "/opt/" in text or bool(re.search(r"[A-Za-z]:\\", text))


def _scan_absolute_paths(value: object, where: str, diagnostics: list[str]) -> None:
    if isinstance(value, str):
        if _looks_absolute(value):
            diagnostics.append(f"{where}: absolute paths are forbidden in QA artifacts")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _scan_absolute_paths(item, f"{where}[{index}]", diagnostics)
    elif isinstance(value, dict):
        for key, item in value.items():
            _scan_absolute_paths(item, f"{where}.{key}", diagnostics)


def _has_ssot_refs(items: list[Any]) -> bool:
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("ssot_refs"), list):
            if any(str(ref or "").strip() for ref in item["ssot_refs"]):
                return True
    return False


def validate_qa_plan(
    raw: object,
    *,
    expected_work_id: str | None = None,
    expected_repo_id: str | None = None,
) -> Validated[dict[str, Any]]:
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["qa plan must be a JSON object"])

    diagnostics: list[str] = []
    if raw.get("version") != 1:
        diagnostics.append("version must be 1")
    for key in ("work_id", "repo_id", "team_id"):
        if not is_non_empty_str(raw.get(key)):
            diagnostics.append(f"{key} missing/empty")
    if expected_work_id and raw.get("work_id") != expected_work_id:
        diagnostics.append("work_id does not match the work item")
    if expected_repo_id and raw.get("repo_id") != expected_repo_id:
        diagnostics.append("repo_id does not match the routed repo")

    derived = raw.get("derived_from")
    if not isinstance(derived, dict):
        diagnostics.append("derived_from must be an object")
    else:
        for key in ("patch_plan_path", "patch_plan_sha256"):
            if not is_non_empty_str(derived.get(key)):
                diagnostics.append(f"derived_from.{key} missing/empty")

    tests = raw.get("tests")
    gaps = raw.get("gaps")
    if not isinstance(tests, list):
        diagnostics.append("tests must be an array")
        tests = []
    if not isinstance(gaps, list):
        diagnostics.append("gaps must be an array")
        gaps = []

    for index, test in enumerate(tests):
        if not isinstance(test, dict):
            diagnostics.append(f"tests[{index}] must be an object")
            continue
        for key in ("test_id", "title"):
            if not is_non_empty_str(test.get(key)):
                diagnostics.append(f"tests[{index}].{key} missing/empty")
        if test.get("type") not in TEST_TYPES:
            diagnostics.append(f"tests[{index}].type invalid")
        if test.get("priority") not in TEST_PRIORITIES:
            diagnostics.append(f"tests[{index}].priority invalid")
        if not isinstance(test.get("ssot_refs"), list):
            diagnostics.append(f"tests[{index}].ssot_refs must be an array")

    for index, gap in enumerate(gaps):
        if not isinstance(gap, dict):
            diagnostics.append(f"gaps[{index}] must be an object")
            continue
        for key in ("gap_id", "description"):
            if not is_non_empty_str(gap.get(key)):
                diagnostics.append(f"gaps[{index}].{key} missing/empty")
        if gap.get("impact") not in GAP_IMPACTS:
            diagnostics.append(f"gaps[{index}].impact invalid")

    if not _has_ssot_refs(tests) and not _has_ssot_refs(gaps):
        diagnostics.append("qa plan must include at least one ssot_refs entry in tests[] or gaps[]")

    _scan_absolute_paths(raw, "qa", diagnostics)
    return from_diagnostics(dict(raw), diagnostics)
