"""Patch plan contract and its policy-dependent checks."""

from __future__ import annotations

import re
from typing import Any, Mapping

from laneb.validation.paths import (
    PathRuleError,
    compile_matchers,
    matches_any,
    normalize_repo_rel_path,
    validate_git_ref_name,
)
from laneb.validation.result import Validated, from_diagnostics, is_non_empty_str, is_str_list

RISK_LEVELS = ("low", "normal", "high")
EDIT_OPS = ("edit", "add", "delete")
DEFAULT_ALLOWED_OPS = ("edit", "add")
COMMAND_KEYS = ("cwd", "package_manager", "install", "lint", "test", "build")
PACKAGE_MANAGERS = (None, "npm", "yarn", "pnpm", "pip", "poetry", "uv")

_URL_RE = re.compile(r"https?://\S+")


def _command_has_absolute_path(command: str) -> bool:
    for token in _URL_RE.sub("URL", command).split():
        if token.startswith("/") or "=/" in token or re.match(r"^[A-Za-z]:\\", token):
            return True
    return False


def _validate_scope(scope: object, policy: Mapping[str, Any] | None, diagnostics: list[str]) -> tuple[list[str], list[str], list[str]]:
    if not isinstance(scope, dict):
        diagnostics.append("scope must be an object")
        return [], [], list(DEFAULT_ALLOWED_OPS)

    allowed_paths = scope.get("allowed_paths")
    if not is_str_list(allowed_paths) or not all(p.strip() for p in allowed_paths):
        diagnostics.append("scope.allowed_paths must be string[]")
        allowed_paths = []
    forbidden_paths = scope.get("forbidden_paths", [])
    if not is_str_list(forbidden_paths):
        diagnostics.append("scope.forbidden_paths must be string[] when present")
        forbidden_paths = []

    # Policy-level forbidden paths are added on top of the plan's own.
    policy_scope = policy.get("scope") if isinstance(policy, Mapping) else None
    if isinstance(policy_scope, dict) and is_str_list(policy_scope.get("forbidden_paths")):
        forbidden_paths = [*forbidden_paths, *policy_scope["forbidden_paths"]]

    raw_ops = scope.get("allowed_ops")
    allowed_ops = list(raw_ops) if isinstance(raw_ops, list) and raw_ops else list(DEFAULT_ALLOWED_OPS)
    if not all(op in EDIT_OPS for op in allowed_ops):
        diagnostics.append("scope.allowed_ops must be edit|add|delete[]")
    return list(allowed_paths), list(forbidden_paths), allowed_ops


def _validate_edits(
    edits: object,
    allowed_paths: list[str],
    forbidden_paths: list[str],
    allowed_ops: list[str],
    diagnostics: list[str],
) -> None:
    if not isinstance(edits, list):
        diagnostics.append("edits must be an array")
        return

    try:
        allowed = compile_matchers(allowed_paths)
        forbidden = compile_matchers(forbidden_paths)
    except PathRuleError as exc:
        diagnostics.append(f"scope paths invalid: {exc}")
        return

    for index, edit in enumerate(edits):
        label = f"edits[{index}]"
        if not isinstance(edit, dict):
            diagnostics.append(f"{label} must be an object")
            continue
        for forbidden_key in ("diff", "instructions"):
            if forbidden_key in edit:
                diagnostics.append(f"{label}.{forbidden_key} is forbidden; use {label}.patch")
        op = edit.get("op")
        if op not in EDIT_OPS:
            diagnostics.append(f"{label}.op must be edit|add|delete")
        elif op not in allowed_ops:
            diagnostics.append(f"{label}.op {op!r} is not allowed by scope.allowed_ops")
        if not is_non_empty_str(edit.get("rationale")):
            diagnostics.append(f"{label}.rationale must be a non-empty string")
        if not is_non_empty_str(edit.get("patch")):
            diagnostics.append(f"{label}.patch missing/empty")

        path = edit.get("path")
        if not is_non_empty_str(path):
            diagnostics.append(f"{label}.path must be a non-empty string")
            continue
        try:
            normalized = normalize_repo_rel_path(path)
        except PathRuleError as exc:
            diagnostics.append(f"{label}.path invalid: {exc}")
            continue
        if not matches_any(normalized, allowed):
            diagnostics.append(f"{label}.path {normalized!r} is out of scope (not under scope.allowed_paths)")
        if matches_any(normalized, forbidden):
            diagnostics.append(f"{label}.path {normalized!r} is forbidden by scope.forbidden_paths")


def _validate_commands(commands: object, diagnostics: list[str]) -> None:
    if not isinstance(commands, dict):
        diagnostics.append("commands must be an object")
        return
    for key in COMMAND_KEYS:
        if key not in commands:
            diagnostics.append(f"commands.{key} must be present (use null when not applicable)")
    if "cwd" in commands:
        try:
            normalize_repo_rel_path(commands["cwd"])
        except PathRuleError as exc:
            diagnostics.append(f"commands.cwd invalid: {exc}")
    if commands.get("package_manager") not in PACKAGE_MANAGERS:
        diagnostics.append("commands.package_manager is not a supported package manager")
    for key in ("install", "lint", "test", "build"):
        value = commands.get(key)
        if value is not None and not isinstance(value, str):
            diagnostics.append(f"commands.{key} must be string|null")
        elif isinstance(value, str) and _command_has_absolute_path(value):
            diagnostics.append(f"commands.{key} must not include absolute filesystem paths")


def validate_patch_plan(
    raw: object,
    *,
    policy: Mapping[str, Any] | None = None,
    expected_proposal_hash: str | None = None,
    expected_proposal_agent_id: str | None = None,
) -> Validated[dict[str, Any]]:
    """Validate a patch plan against its contract and the effective policy.

    The normalized value carries the resolved `scope` (defaults for
    `allowed_ops`, policy forbidden paths merged in).
    """
    if not isinstance(raw, dict):
        return from_diagnostics({}, ["patch plan must be a JSON object"])

    diagnostics: list[str] = []
    if raw.get("version") != 1:
        diagnostics.append("version must be 1")
    for key in ("work_id", "repo_id", "repo_path", "team_id", "kind", "intent_summary"):
        if not is_non_empty_str(raw.get(key)):
            diagnostics.append(f"{key} must be a non-empty string")
    if is_non_empty_str(raw.get("repo_path")):
        try:
            if normalize_repo_rel_path(raw["repo_path"]) == ".":
                diagnostics.append("repo_path must not be '.'")
        except PathRuleError as exc:
            diagnostics.append(f"repo_path invalid: {exc}")
    if "warnings" in raw and not is_str_list(raw["warnings"]):
        diagnostics.append("warnings must be string[] when present")

    target_branch = raw.get("target_branch")
    if not isinstance(target_branch, dict):
        diagnostics.append("target_branch must be an object")
    else:
        if target_branch.get("source") != "routing":
            diagnostics.append("target_branch.source must be 'routing'")
        if target_branch.get("confidence") != 1:
            diagnostics.append("target_branch.confidence must be 1")
        try:
            validate_git_ref_name(target_branch.get("name"))
        except PathRuleError as exc:
            diagnostics.append(f"target_branch.name invalid: {exc}")

    derived = raw.get("derived_from")
    if not isinstance(derived, dict):
        diagnostics.append("derived_from must be an object")
    else:
        for key in ("proposal_id", "proposal_hash", "proposal_agent_id", "timestamp"):
            if not is_non_empty_str(derived.get(key)):
                diagnostics.append(f"derived_from.{key} must be a non-empty string")
        if expected_proposal_hash and str(derived.get("proposal_hash") or "").strip() != expected_proposal_hash.strip():
            diagnostics.append("derived_from.proposal_hash does not match expected proposal hash")
        if expected_proposal_agent_id and str(derived.get("proposal_agent_id") or "").strip() != expected_proposal_agent_id.strip():
            diagnostics.append("derived_from.proposal_agent_id does not match expected proposal agent_id")

    allowed_paths, forbidden_paths, allowed_ops = _validate_scope(raw.get("scope"), policy, diagnostics)
    _validate_edits(raw.get("edits"), allowed_paths, forbidden_paths, allowed_ops, diagnostics)
    _validate_commands(raw.get("commands"), diagnostics)

    risk = raw.get("risk")
    if not isinstance(risk, dict):
        diagnostics.append("risk must be an object")
    else:
        if risk.get("level") not in RISK_LEVELS:
            diagnostics.append("risk.level must be low|normal|high")
        if not isinstance(risk.get("notes", ""), str):
            diagnostics.append("risk.notes must be a string")

    policy_kinds = policy.get("allowed_kinds") if isinstance(policy, Mapping) else None
    if is_str_list(policy_kinds) and is_non_empty_str(raw.get("kind")) and raw["kind"].strip() not in policy_kinds:
        diagnostics.append(f"kind {raw['kind'].strip()!r} is not allowed by policy")

    normalized = dict(raw)
    normalized["scope"] = {
        "allowed_paths": allowed_paths,
        "forbidden_paths": forbidden_paths,
        "allowed_ops": allowed_ops,
    }
    return from_diagnostics(normalized, diagnostics)


def edit_paths(plan: Mapping[str, Any]) -> list[str]:
    """Sorted, unique, normalized edit paths of an already validated plan."""
    paths: set[str] = set()
    for edit in plan.get("edits") or []:
        if not isinstance(edit, dict):
            continue
        try:
            normalized = normalize_repo_rel_path(edit.get("path"))
        except PathRuleError:
            continue
        if normalized != ".":
            paths.add(normalized)
    return sorted(paths)
