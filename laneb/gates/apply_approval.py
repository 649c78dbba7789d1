"""Apply-approval gate: permission to open PRs for a bundled work item."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from structlog import get_logger

from laneb.config.loader import load_policies, load_repo_registry
from laneb.config.schema import PolicyDocument, RepoRegistry
from laneb.context import WorkContext, WorkPaths
from laneb.core.errors import HashMismatch, InvalidFormat, MissingArtifact, StaleApproval
from laneb.core.jsonio import now_iso, read_json_object, read_text_if_exists, sha256_hex, write_json_atomic, write_text_atomic
from laneb.gates.risk import SENSITIVE_TEAMS, max_bucket, migration_paths, risk_bucket, sensitive_keywords
from laneb.gates.rules import Approved, Evaluation, Finding, Pending, Rule, evaluate
from laneb.gates.ssot_drift import run_ssot_drift_check
from laneb.bundle.builder import verify_bundle_pins
from laneb.policy.resolve import resolve_policy
from laneb.validation import Err, validate_approval, validate_bundle, validate_patch_plan

logger = get_logger(__name__)

ApprovalStatus = Literal["pending", "approved", "rejected"]


@dataclass
class RepoFacts:
    repo_id: str
    team_id: str
    kind: str = ""
    plan: dict[str, Any] | None = None
    plan_missing: bool = False
    plan_errors: list[str] = field(default_factory=list)
    proposal_problem: str | None = None
    policy: dict[str, Any] = field(default_factory=dict)

    @property
    def risk_bucket(self) -> str:
        risk = self.plan.get("risk") if self.plan else None
        return risk_bucket(risk.get("level") if isinstance(risk, dict) else None)


@dataclass
class ApplyFacts:
    work_id: str
    bundle_hash: str
    repos: list[RepoFacts]
    hard_violations: list[dict[str, Any]] = field(default_factory=list)
    drift_invalid: str | None = None

    @property
    def highest_risk(self) -> str:
        return max_bucket(repo.risk_bucket for repo in self.repos)


def patch_plan_rule(facts: ApplyFacts) -> list[Finding]:
    findings: list[Finding] = []
    for repo in facts.repos:
        if repo.plan_missing:
            findings.append(Finding("reject", "patch_plan_missing", f"{repo.repo_id}: patch plan not found"))
        for error in repo.plan_errors:
            findings.append(Finding("reject", "patch_plan_invalid", f"{repo.repo_id}: {error}"))
    return findings


def proposal_rule(facts: ApplyFacts) -> list[Finding]:
    return [
        Finding("reject", repo.proposal_problem, repo.repo_id)
        for repo in facts.repos
        if repo.proposal_problem is not None
    ]


def ssot_drift_rule(facts: ApplyFacts) -> list[Finding]:
    if facts.drift_invalid is not None:
        return [Finding("reject", "ssot_drift_invalid", facts.drift_invalid)]
    if facts.hard_violations:
        return [Finding("refuse", "ssot_hard_violation", f"{len(facts.hard_violations)} hard violation(s)")]
    return []


def _risk_rule(facts: ApplyFacts) -> list[Finding]:
    if facts.highest_risk == "high":
        return [Finding("refuse", "risk_high", "highest patch plan risk is high")]
    return []


def auto_approve_block(repo: RepoFacts) -> dict[str, Any] | None:
    approval = repo.policy.get("approval")
    auto = approval.get("auto_approve") if isinstance(approval, dict) else None
    return auto if isinstance(auto, dict) else None


def auto_approve_refusals(repo: RepoFacts, auto: dict[str, Any]) -> list[Finding]:
    """Refusals raised by one repo's `approval.auto_approve` block."""
    findings: list[Finding] = []
    if repo.plan is None:
        return findings
    if not auto.get("enabled", False):
        findings.append(Finding("refuse", "auto_approve_disabled", repo.repo_id))
    allowed_teams = auto.get("allowed_teams") or []
    if allowed_teams and repo.team_id not in allowed_teams:
        findings.append(Finding("refuse", "team_not_allowed", f"{repo.repo_id}: {repo.team_id}"))
    allowed_kinds = auto.get("allowed_kinds") or []
    if allowed_kinds and repo.kind not in allowed_kinds:
        findings.append(Finding("refuse", "kind_not_allowed", f"{repo.repo_id}: {repo.kind}"))
    level = repo.plan["risk"].get("level")
    if level in (auto.get("disallowed_risk_levels") or []):
        findings.append(Finding("refuse", "risk_level_disallowed", f"{repo.repo_id}: {level}"))
    if auto.get("require_clean_patch_plan", True) and repo.plan.get("warnings"):
        findings.append(Finding("refuse", "patch_plan_not_clean", repo.repo_id))
    if repo.team_id in SENSITIVE_TEAMS:
        findings.append(Finding("refuse", "team_disallowed", f"{repo.repo_id}: {repo.team_id}"))
    keywords = sensitive_keywords(repo.plan)
    if keywords:
        findings.append(Finding("refuse", "sensitive_keywords", f"{repo.repo_id}: {', '.join(keywords)}"))
    paths = migration_paths(repo.plan)
    if paths:
        findings.append(Finding("refuse", "migration_paths", f"{repo.repo_id}: {', '.join(paths[:6])}"))
    return findings


def _auto_approve_policy_rule(facts: ApplyFacts) -> list[Finding]:
    """Optional `approval.auto_approve` policy block, evaluated per repo."""
    findings: list[Finding] = []
    for repo in facts.repos:
        auto = auto_approve_block(repo)
        if auto is not None:
            findings.extend(auto_approve_refusals(repo, auto))
    return findings


APPLY_RULES: tuple[Rule[ApplyFacts], ...] = (
    patch_plan_rule,
    proposal_rule,
    ssot_drift_rule,
    _risk_rule,
    _auto_approve_policy_rule,
)


@dataclass(frozen=True)
class ApplyApprovalOutcome:
    approval: dict[str, Any]
    errors: tuple[str, ...]
    reused: bool = False

    @property
    def status(self) -> ApprovalStatus:
        return self.approval["status"]

    @property
    def reason_codes(self) -> tuple[str, ...]:
        return tuple(self.approval.get("reason_codes") or ())


def render_approval_markdown(title: str, doc: dict[str, Any]) -> str:
    lines = [f"# {title}", "", f"Work item: `{doc.get('work_id')}`", "", "## Status", ""]
    for key in ("status", "mode", "bundle_hash", "approved_at", "approved_by"):
        lines.append(f"- {key}: `{doc.get(key) if doc.get(key) is not None else '(null)'}`")
    scope = doc.get("scope") or {}
    lines.extend(["", "## Scope", ""])
    lines.append("- teams: " + (", ".join(f"`{t}`" for t in scope.get("teams") or []) or "(none)"))
    lines.append("- repos: " + (", ".join(f"`{r}`" for r in scope.get("repos") or []) or "(none)"))
    if doc.get("reason_codes"):
        lines.extend(["", "## Reason codes", ""])
        lines.extend(f"- `{code}`" for code in doc["reason_codes"])
    if doc.get("notes"):
        lines.extend(["", "## Notes", "", str(doc["notes"]).strip()])
    if doc.get("errors"):
        lines.extend(["", "## Validation errors", ""])
        lines.extend(f"- {error}" for error in doc["errors"])
    lines.append("")
    return "\n".join(lines)


def read_current_bundle(paths: WorkPaths) -> dict[str, Any]:
    """BUNDLE.json, validated and self-consistent.

    Raises:
        MissingArtifact, InvalidFormat, HashMismatch
    """
    bundle = read_json_object(paths.bundle)
    checked = validate_bundle(bundle, expected_work_id=paths.work_id)
    if isinstance(checked, Err):
        if any("does not match the pinned inputs" in e for e in checked.errors):
            raise HashMismatch(f"bundle hash is inconsistent: {paths.bundle}", path=str(paths.bundle), errors=checked.errors)
        raise InvalidFormat(f"invalid bundle: {paths.bundle}", path=str(paths.bundle), errors=checked.errors)
    return checked.value


class ApplyApprovalGate:
    """Evaluates and records the apply-approval decision for one work item."""

    artifact = "APPLY_APPROVAL"
    title = "Apply Approval"
    label = "apply approval"
    event = "apply_approval"
    rules: tuple[Rule[ApplyFacts], ...] = APPLY_RULES

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

    def _path(self, paths: WorkPaths) -> Path:
        return paths.root / f"{self.artifact}.json"

    def _stale_message(self) -> str:
        return f"{self.artifact}.json bundle_hash does not match current BUNDLE.json; reset the {self.label}"

    def current(self, work_id: str) -> dict[str, Any] | None:
        paths = self._context.work(work_id)
        existing = read_json_object(self._path(paths), required=False)
        if existing is None:
            return None
        checked = validate_approval(existing, expected_work_id=paths.work_id)
        if isinstance(checked, Err):
            raise InvalidFormat(f"invalid {self.label}: {self._path(paths)}", path=str(self._path(paths)), errors=checked.errors)
        return checked.value

    def require_fresh(self, work_id: str) -> dict[str, Any]:
        """The stored approval, guaranteed to reference the current bundle.

        Raises:
            MissingArtifact: no approval was requested yet.
            StaleApproval: the bundle changed after the decision.
        """
        paths = self._context.work(work_id)
        approval = self.current(work_id)
        if approval is None:
            raise MissingArtifact(f"missing artifact: {self._path(paths)}", path=str(self._path(paths)))
        bundle = read_current_bundle(paths)
        if approval["bundle_hash"] != bundle["bundle_hash"]:
            raise StaleApproval(
                self._stale_message(),
                path=str(self._path(paths)),
                errors=(f"approval={approval['bundle_hash']}", f"bundle={bundle['bundle_hash']}"),
            )
        return approval

    def request(self, work_id: str, *, now: datetime | None = None) -> ApplyApprovalOutcome:
        paths = self._context.work(work_id)
        bundle = read_current_bundle(paths)
        bundle_hash = bundle["bundle_hash"]

        existing = self.current(work_id)
        if existing is not None:
            if existing["bundle_hash"] != bundle_hash:
                raise StaleApproval(
                    self._stale_message(),
                    path=str(self._path(paths)),
                    errors=(f"approval={existing['bundle_hash']}", f"bundle={bundle_hash}"),
                )
            if existing["status"] in ("approved", "rejected"):
                return ApplyApprovalOutcome(approval=existing, errors=tuple(existing.get("errors") or ()), reused=True)

        mismatches = verify_bundle_pins(self._context, bundle)
        if mismatches:
            raise HashMismatch("bundle inputs changed since the bundle was built; rebuild the bundle", errors=mismatches)

        facts = self._collect_facts(paths, bundle, now=now)
        evaluation = evaluate(facts, self.rules)
        approval = self._decision_document(paths, bundle, facts, evaluation, now=now)
        self._write(paths, approval)
        logger.info(
            f"{self.event}_requested",
            work_id=paths.work_id,
            status=approval["status"],
            mode=approval["mode"],
            bundle_hash=bundle_hash,
            highest_risk=facts.highest_risk,
        )
        return ApplyApprovalOutcome(approval=approval, errors=tuple(approval["errors"]))

    def set_status(
        self,
        work_id: str,
        status: Literal["approved", "rejected"],
        *,
        approved_by: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Manual override; always recorded as `mode="manual"`."""
        paths = self._context.work(work_id)
        approval = dict(self.require_fresh(work_id))
        approval["status"] = status
        approval["mode"] = "manual"
        approval["approved_by"] = (approved_by or "").strip() or self._context.settings.default_approver
        approval["approved_at"] = now_iso(now) if status == "approved" else None
        approval["notes"] = notes.strip() if notes and notes.strip() else None
        approval["updated_at"] = now_iso(now)
        self._write(paths, approval)
        logger.info(f"{self.event}_manual", work_id=paths.work_id, status=status, approved_by=approval["approved_by"])
        return approval

    def reset(self, work_id: str, *, now: datetime | None = None) -> str | None:
        """Move the current decision aside so a fresh one can be requested.

        Returns the archive path (relative to the work root), or None when
        there was nothing to reset.
        """
        paths = self._context.work(work_id)
        text = read_text_if_exists(self._path(paths))
        if text is None:
            return None
        archive = paths.root / "approvals" / f"{self.artifact}.{sha256_hex(text)[:12]}.json"
        write_text_atomic(archive, text)
        self._path(paths).unlink()
        self._path(paths).with_suffix(".md").unlink(missing_ok=True)
        logger.info(f"{self.event}_reset", work_id=paths.work_id, archived=paths.rel(archive))
        return paths.rel(archive)

    def _collect_facts(self, paths: WorkPaths, bundle: dict[str, Any], *, now: datetime | None) -> ApplyFacts:
        repos: list[RepoFacts] = []
        for entry in bundle["repos"]:
            repo_id = entry["repo_id"]
            descriptor = self._registry.get(repo_id)
            team_id = str(entry.get("team_id") or (descriptor.team_id if descriptor else "")).strip()
            facts = RepoFacts(repo_id=repo_id, team_id=team_id)
            facts.policy = resolve_policy(descriptor, self._policies).effective if descriptor else {}

            proposal_sha: str | None = None
            agent_id: str | None = None
            proposal_path = str(entry.get("proposal_path") or "").strip()
            proposal_text = read_text_if_exists(self._context.work_root / proposal_path) if proposal_path else None
            if proposal_text is None:
                facts.proposal_problem = "proposal_missing"
            else:
                proposal_sha = sha256_hex(proposal_text)
                try:
                    proposal = json.loads(proposal_text)
                except json.JSONDecodeError:
                    facts.proposal_problem = "proposal_invalid"
                else:
                    if not isinstance(proposal, dict):
                        facts.proposal_problem = "proposal_invalid"
                    elif not isinstance(proposal.get("ssot_references"), list) or not proposal["ssot_references"]:
                        facts.proposal_problem = "ssot_references_missing"
                    if isinstance(proposal, dict) and isinstance(proposal.get("agent_id"), str):
                        agent_id = proposal["agent_id"].strip()

            plan_path = str(entry.get("patch_plan_json_path") or "").strip()
            plan_text = read_text_if_exists(self._context.work_root / plan_path) if plan_path else None
            if plan_text is None:
                facts.plan_missing = True
            else:
                try:
                    plan = json.loads(plan_text)
                except json.JSONDecodeError:
                    facts.plan_errors.append("invalid JSON")
                else:
                    checked = validate_patch_plan(
                        plan,
                        policy=facts.policy,
                        expected_proposal_hash=proposal_sha,
                        expected_proposal_agent_id=agent_id,
                    )
                    if isinstance(checked, Err):
                        facts.plan_errors.extend(checked.errors)
                    else:
                        facts.plan = checked.value
                        facts.kind = str(checked.value.get("kind") or "").strip()
            repos.append(facts)

        apply_facts = ApplyFacts(work_id=paths.work_id, bundle_hash=bundle["bundle_hash"], repos=repos)
        try:
            if read_text_if_exists(paths.ssot_drift) is None:
                run_ssot_drift_check(self._context, paths.work_id, now=now)
            drift = read_json_object(paths.ssot_drift)
        except InvalidFormat as exc:
            apply_facts.drift_invalid = exc.message
        else:
            hard = drift.get("hard_violations", []) if drift else []
            if not isinstance(hard, list):
                apply_facts.drift_invalid = "hard_violations must be an array"
            else:
                apply_facts.hard_violations = [item for item in hard if isinstance(item, dict)]
        return apply_facts

    def _decision_document(
        self,
        paths: WorkPaths,
        bundle: dict[str, Any],
        facts: ApplyFacts,
        evaluation: Evaluation[ApplyFacts],
        *,
        now: datetime | None,
    ) -> dict[str, Any]:
        decision = evaluation.decision
        timestamp = now_iso(now)
        auto = isinstance(decision, Approved)
        if auto:
            status: ApprovalStatus = "approved"
        elif isinstance(decision, Pending):
            status = "pending"
        else:
            status = "rejected"
        return {
            "version": 1,
            "work_id": paths.work_id,
            "status": status,
            "mode": "auto" if auto else "manual",
            "bundle_hash": bundle["bundle_hash"],
            "requested_at": timestamp,
            "updated_at": timestamp,
            "approved_at": timestamp if auto else None,
            "approved_by": "auto" if auto else None,
            "reason_codes": sorted(decision.reasons),
            "notes": None,
            "scope": {
                "teams": sorted({repo.team_id for repo in facts.repos if repo.team_id}),
                "repos": sorted({repo.repo_id for repo in facts.repos}),
            },
            "risk": {
                "highest": facts.highest_risk,
                "by_repo": {repo.repo_id: repo.risk_bucket for repo in facts.repos},
            },
            "errors": [f"{f.code}: {f.detail}" for f in evaluation.findings if f.severity == "reject"],
            "refusals": [f"{f.code}: {f.detail}" for f in evaluation.findings if f.severity == "refuse"],
        }

    def _write(self, paths: WorkPaths, approval: dict[str, Any]) -> None:
        write_json_atomic(self._path(paths), approval)
        write_text_atomic(self._path(paths).with_suffix(".md"), render_approval_markdown(self.title, approval))
