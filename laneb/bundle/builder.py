"""Content-addressed bundle of every input a work item is delivered from.

A bundle pins each consumed file as `{path, sha256}` (paths relative to the
work root) and derives `bundle_hash` from the deduplicated, path-sorted pins.
Nothing is written unless every routed repo validates.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from structlog import get_logger

from laneb.config.loader import load_policies, load_repo_registry
from laneb.config.schema import PolicyDocument, RepoRegistry
from laneb.context import WorkContext, WorkPaths
from laneb.core.errors import InvalidFormat
from laneb.core.jsonio import now_iso, read_json_object, read_text_if_exists, sha256_hex, write_json_atomic
from laneb.core.pins import Pin, compute_bundle_hash, normalize_pins
from laneb.policy.resolve import resolve_policy
from laneb.validation import Err, validate_patch_plan, validate_proposal, validate_qa_plan
from laneb.validation.bundle import bundle_pins

logger = get_logger(__name__)


@dataclass(frozen=True)
class BundleBuildResult:
    ok: bool
    work_id: str
    bundle: dict[str, Any] | None = None
    errors: tuple[str, ...] = ()

    @property
    def bundle_hash(self) -> str | None:
        return self.bundle["bundle_hash"] if self.bundle else None

    @property
    def message(self) -> str:
        if self.ok:
            return f"bundle built: {self.bundle_hash}"
        return f"bundle build failed for {self.work_id} ({len(self.errors)} error(s))"


@dataclass
class _PinSet:
    proposals: list[Pin] = field(default_factory=list)
    patch_plans: list[Pin] = field(default_factory=list)
    qa_plans: list[Pin] = field(default_factory=list)
    ssot: list[Pin] = field(default_factory=list)

    def all(self) -> list[Pin]:
        return [*self.proposals, *self.patch_plans, *self.qa_plans, *self.ssot]


def _pin(paths: WorkPaths, path: Path, text: str) -> Pin:
    return Pin(path=paths.rel(path), sha256=sha256_hex(text))


def selected_repos(paths: WorkPaths) -> list[str]:
    """Routed repo ids, sorted.

    Raises:
        MissingArtifact: ROUTING.json is absent.
        InvalidFormat: ROUTING.json has no usable `selected_repos`.
    """
    routing = cast(dict[str, Any], read_json_object(paths.routing))
    repos = routing.get("selected_repos")
    if not isinstance(repos, list):
        raise InvalidFormat(f"selected_repos missing in {paths.routing}", path=str(paths.routing))
    cleaned = sorted({str(repo).strip() for repo in repos if str(repo or "").strip()})
    if not cleaned:
        raise InvalidFormat(f"selected_repos is empty in {paths.routing}", path=str(paths.routing))
    return cleaned


def team_proposal_paths(paths: WorkPaths, team_id: str) -> list[Path]:
    if not paths.proposals_dir.is_dir():
        return []
    return sorted(p for p in paths.proposals_dir.glob(f"{team_id}__*.json") if p.is_file())


def _parse_json_text(text: str, path: Path, errors: list[str], label: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        errors.append(f"{label}: invalid JSON in {path.name}")
        return None
    if not isinstance(payload, dict):
        errors.append(f"{label}: {path.name} must contain a JSON object")
        return None
    return payload


class BundleBuilder:
    """Discovers, validates, and pins the inputs of one work item."""

    def __init__(
        self,
        context: WorkContext,
        *,
        registry: RepoRegistry | None = None,
        policies: PolicyDocument | None = None,
    ) -> None:
        self._context = context
        self._registry = registry if registry is not None else load_repo_registry(context.policy_root)
        self._policies = policies if policies is not None else load_policies(context.policy_root)

    def build(self, work_id: str, *, require_qa: bool | None = None, now: datetime | None = None) -> BundleBuildResult:
        paths = self._context.work(work_id)
        qa_required = self._context.settings.require_qa if require_qa is None else require_qa
        errors: list[str] = []
        pins = _PinSet()

        work_ssot_text = read_text_if_exists(paths.ssot_bundle)
        if work_ssot_text is None:
            return BundleBuildResult(ok=False, work_id=paths.work_id, errors=(f"missing SSOT bundle: {paths.rel(paths.ssot_bundle)}",))
        pins.ssot.append(_pin(paths, paths.ssot_bundle, work_ssot_text))

        proposal_files = sorted(paths.proposals_dir.glob("*.json")) if paths.proposals_dir.is_dir() else []
        if not proposal_files:
            return BundleBuildResult(ok=False, work_id=paths.work_id, errors=(f"missing proposals: {paths.rel(paths.proposals_dir)}/*.json",))
        proposal_sha: dict[Path, str] = {}
        for proposal_path in proposal_files:
            text = cast(str, read_text_if_exists(proposal_path))
            pin = _pin(paths, proposal_path, text)
            pins.proposals.append(pin)
            proposal_sha[proposal_path] = pin.sha256
            md_path = proposal_path.with_suffix(".md")
            md_text = read_text_if_exists(md_path)
            if md_text is not None:
                pins.proposals.append(_pin(paths, md_path, md_text))

        repos: list[dict[str, Any]] = []
        pinned_teams: set[str] = set()
        for repo_id in selected_repos(paths):
            try:
                entry = self._build_repo(paths, repo_id, proposal_sha, pins, pinned_teams, qa_required, errors)
            except InvalidFormat as exc:
                errors.append(f"{repo_id}: {exc.message}")
                continue
            if entry is not None:
                repos.append(entry)

        if errors:
            logger.info("bundle_build_failed", work_id=paths.work_id, errors=len(errors))
            return BundleBuildResult(ok=False, work_id=paths.work_id, errors=tuple(errors))

        bundle = {
            "version": 1,
            "work_id": paths.work_id,
            "created_at": now_iso(now),
            "ssot_bundle_path": paths.rel(paths.ssot_bundle),
            "ssot_bundle_sha256": sha256_hex(work_ssot_text),
            "repos": repos,
            "inputs": {
                "proposals": [p.to_dict() for p in normalize_pins(pins.proposals)],
                "patch_plan_jsons": [p.to_dict() for p in normalize_pins(pins.patch_plans)],
                "qa_plan_jsons": [p.to_dict() for p in normalize_pins(pins.qa_plans)],
                "ssot_bundle_jsons": [p.to_dict() for p in normalize_pins(pins.ssot)],
            },
            "bundle_hash": compute_bundle_hash(pins.all()),
        }
        return BundleBuildResult(ok=True, work_id=paths.work_id, bundle=bundle)

    def _build_repo(
        self,
        paths: WorkPaths,
        repo_id: str,
        proposal_sha: dict[Path, str],
        pins: _PinSet,
        pinned_teams: set[str],
        qa_required: bool,
        errors: list[str],
    ) -> dict[str, Any] | None:
        repo = self._registry.get(repo_id)
        if repo is None:
            errors.append(f"{repo_id}: repo not found in registry")
            return None
        team_id = repo.team_id.strip()
        if not team_id:
            errors.append(f"{repo_id}: team_id missing in registry")
            return None

        proposal_paths = team_proposal_paths(paths, team_id)
        if not proposal_paths:
            errors.append(f"{repo_id}: missing proposal for team {team_id} ({paths.rel(paths.proposals_dir)}/{team_id}__*.json)")
            return None
        proposal_path = proposal_paths[0]
        proposal = _parse_json_text(cast(str, read_text_if_exists(proposal_path)), proposal_path, errors, repo_id)
        if proposal is None:
            return None
        checked = validate_proposal(proposal, expected_team_id=team_id)
        if isinstance(checked, Err):
            errors.extend(f"{repo_id}: proposal {proposal_path.name}: {e}" for e in checked.errors)
            return None
        agent_id = checked.value["agent_id"]

        team_ssot_path = paths.team_ssot_bundle(team_id)
        if team_id not in pinned_teams:
            team_ssot_text = read_text_if_exists(team_ssot_path)
            if team_ssot_text is None:
                errors.append(f"{repo_id}: missing SSOT bundle for team {team_id} ({paths.rel(team_ssot_path)})")
                return None
            pins.ssot.append(_pin(paths, team_ssot_path, team_ssot_text))
            pinned_teams.add(team_id)

        plan_path = paths.patch_plan(repo_id)
        plan_text = read_text_if_exists(plan_path)
        if plan_text is None:
            errors.append(f"{repo_id}: missing patch plan ({paths.rel(plan_path)})")
            return None
        plan = _parse_json_text(plan_text, plan_path, errors, repo_id)
        if plan is None:
            return None
        policy = resolve_policy(repo, self._policies)
        plan_checked = validate_patch_plan(
            plan,
            policy=policy.effective,
            expected_proposal_hash=proposal_sha[proposal_path],
            expected_proposal_agent_id=agent_id,
        )
        if isinstance(plan_checked, Err):
            errors.extend(f"{repo_id}: patch plan: {e}" for e in plan_checked.errors)
            return None
        plan_sha = sha256_hex(plan_text)
        pins.patch_plans.append(Pin(path=paths.rel(plan_path), sha256=plan_sha))

        entry: dict[str, Any] = {
            "repo_id": repo_id,
            "team_id": team_id,
            "proposal_path": paths.rel(proposal_path),
            "proposal_sha256": proposal_sha[proposal_path],
            "ssot_bundle_json_path": paths.rel(team_ssot_path),
            "patch_plan_json_path": paths.rel(plan_path),
            "patch_plan_json_sha256": plan_sha,
            "risk_level": plan["risk"]["level"],
            "applied_policies": list(policy.applied),
        }
        if not qa_required:
            return entry

        qa_path = paths.qa_plan(repo_id)
        qa_text = read_text_if_exists(qa_path)
        if qa_text is None:
            errors.append(f"{repo_id}: missing QA plan ({paths.rel(qa_path)})")
            return None
        qa_plan = _parse_json_text(qa_text, qa_path, errors, repo_id)
        if qa_plan is None:
            return None
        qa_checked = validate_qa_plan(qa_plan, expected_work_id=paths.work_id, expected_repo_id=repo_id)
        if isinstance(qa_checked, Err):
            errors.extend(f"{repo_id}: QA plan: {e}" for e in qa_checked.errors)
            return None
        derived = qa_plan["derived_from"]
        if derived.get("patch_plan_sha256") != plan_sha:
            errors.append(f"{repo_id}: QA plan derived_from.patch_plan_sha256 does not match the current patch plan")
            return None
        recorded_proposal_sha = derived.get("proposal_sha256")
        if recorded_proposal_sha and recorded_proposal_sha != proposal_sha[proposal_path]:
            errors.append(f"{repo_id}: QA plan derived_from.proposal_sha256 does not match the current proposal")
            return None

        pins.qa_plans.append(_pin(paths, qa_path, qa_text))
        qa_md = qa_path.with_suffix(".md")
        qa_md_text = read_text_if_exists(qa_md)
        if qa_md_text is not None:
            pins.qa_plans.append(_pin(paths, qa_md, qa_md_text))
        entry.update(
            {
                "qa_plan_json_path": paths.rel(qa_path),
                "qa_tests": len(qa_plan["tests"]),
                "qa_gaps": len(qa_plan["gaps"]),
            }
        )
        return entry


def write_bundle(context: WorkContext, result: BundleBuildResult) -> Path:
    if not result.ok or result.bundle is None:
        raise ValueError("refusing to write a failed bundle build")
    paths = context.work(result.work_id)
    write_json_atomic(paths.bundle, result.bundle)
    logger.info("bundle_written", work_id=result.work_id, bundle_hash=result.bundle_hash)
    return paths.bundle


def read_bundle(context: WorkContext, work_id: str) -> dict[str, Any]:
    paths = context.work(work_id)
    return cast(dict[str, Any], read_json_object(paths.bundle))


def verify_bundle_pins(context: WorkContext, bundle: dict[str, Any]) -> list[str]:
    """Compare every pin with the live file; returns mismatch descriptions."""
    mismatches: list[str] = []
    for pin in normalize_pins(bundle_pins(bundle)):
        live = context.work_root / pin.path
        try:
            text = read_text_if_exists(live)
        except InvalidFormat:
            mismatches.append(f"pinned file unreadable: {pin.path}")
            continue
        if text is None:
            mismatches.append(f"pinned file missing: {pin.path}")
        elif sha256_hex(text) != pin.sha256:
            mismatches.append(f"pinned file changed: {pin.path}")
    return mismatches


__all__ = [
    "BundleBuildResult",
    "BundleBuilder",
    "read_bundle",
    "selected_repos",
    "team_proposal_paths",
    "verify_bundle_pins",
    "write_bundle",
]
