"""Plan-approval gate: sign-off on the bundled plans before apply is requested.

Plans are auto-approved only where every repo opts in through its
`approval.auto_approve` policy block; without one the gate waits for a human.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Literal

from structlog import get_logger

from laneb.bundle.builder import team_proposal_paths, verify_bundle_pins
from laneb.context import WorkPaths
from laneb.core.errors import HashMismatch, PolicyViolation, PreconditionFailure, StaleApproval
from laneb.core.jsonio import now_iso, read_json_object
from laneb.gates.apply_approval import (
    ApplyApprovalGate,
    ApplyFacts,
    auto_approve_block,
    auto_approve_refusals,
    patch_plan_rule,
    proposal_rule,
    read_current_bundle,
    ssot_drift_rule,
)
from laneb.gates.rules import Finding, Rule, evaluate

logger = get_logger(__name__)


def _plan_auto_approve_rule(facts: ApplyFacts) -> list[Finding]:
    findings: list[Finding] = []
    for repo in facts.repos:
        if repo.plan is None:
            continue
        if repo.risk_bucket == "unknown":
            findings.append(Finding("refuse", "risk_unknown", repo.repo_id))
        auto = auto_approve_block(repo)
        if auto is None:
            findings.append(Finding("refuse", "auto_approve_disabled", repo.repo_id))
        else:
            findings.extend(auto_approve_refusals(repo, auto))
    return findings


PLAN_RULES: tuple[Rule[ApplyFacts], ...] = (
    patch_plan_rule,
    proposal_rule,
    ssot_drift_rule,
    _plan_auto_approve_rule,
)


class PlanApprovalGate(ApplyApprovalGate):
    """PLAN_APPROVAL.json: same pinning and staleness rules as the apply gate."""

    artifact = "PLAN_APPROVAL"
    title = "Plan Approval"
    label = "plan approval"
    event = "plan_approval"
    rules = PLAN_RULES

    def approve(
        self,
        work_id: str,
        *,
        teams: Iterable[str] | None = None,
        approved_by: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Manual sign-off on the current bundle for `teams`.

        Teams default to the routing decision's `selected_teams`, and every
        approved team needs a proposal on disk.

        Raises:
            StaleApproval: an earlier decision references another bundle.
            HashMismatch: a pinned input changed after bundling.
            PolicyViolation: a patch plan or proposal in the bundle is invalid.
            PreconditionFailure: no teams, or a team without a proposal.
        """
        paths = self._context.work(work_id)
        bundle = read_current_bundle(paths)
        existing = self.current(work_id)
        if existing is not None and existing["bundle_hash"] != bundle["bundle_hash"]:
            raise StaleApproval(
                self._stale_message(),
                path=str(self._path(paths)),
                errors=(f"approval={existing['bundle_hash']}", f"bundle={bundle['bundle_hash']}"),
            )
        mismatches = verify_bundle_pins(self._context, bundle)
        if mismatches:
            raise HashMismatch("bundle inputs changed since the bundle was built; rebuild the bundle", errors=mismatches)

        evaluation = evaluate(self._collect_facts(paths, bundle, now=now), self.rules)
        errors = [f"{f.code}: {f.detail}" for f in evaluation.findings if f.severity == "reject"]
        if errors:
            raise PolicyViolation(f"cannot approve the plan for {paths.work_id}", errors=errors)

        scope_teams = self._scope_teams(paths, teams)
        if not scope_teams:
            raise PreconditionFailure("no teams given and ROUTING.json has no selected_teams")
        missing = [team for team in scope_teams if not team_proposal_paths(paths, team)]
        if missing:
            raise PreconditionFailure(
                f"missing proposal for team(s): {', '.join(missing)}",
                errors=[f"expected {paths.rel(paths.proposals_dir)}/{team}__*.json" for team in missing],
            )

        approval = self._manual_document(paths, bundle, "approved", scope_teams, approved_by, notes, existing, now=now)
        self._write(paths, approval)
        logger.info("plan_approval_manual", work_id=paths.work_id, status="approved", teams=scope_teams, approved_by=approval["approved_by"])
        return approval

    def reject(
        self,
        work_id: str,
        *,
        teams: Iterable[str] | None = None,
        approved_by: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        paths = self._context.work(work_id)
        bundle = read_current_bundle(paths)
        approval = self._manual_document(
            paths,
            bundle,
            "rejected",
            self._scope_teams(paths, teams),
            approved_by,
            notes,
            self.current(work_id),
            now=now,
        )
        self._write(paths, approval)
        logger.info("plan_approval_manual", work_id=paths.work_id, status="rejected", approved_by=approval["approved_by"])
        return approval

    def require_approved(self, work_id: str, *, required: bool) -> dict[str, Any] | None:
        """Plan approval as a precondition of the apply gate.

        A missing decision passes unless `required`; an existing one must be
        approved and reference the current bundle.
        """
        if self.current(work_id) is None:
            if required:
                raise PreconditionFailure("apply approval requires an approved plan; request the plan approval first")
            return None
        approval = self.require_fresh(work_id)
        if approval["status"] != "approved":
            raise PreconditionFailure(f"plan approval is {approval['status']}, not approved")
        return approval

    def _scope_teams(self, paths: WorkPaths, teams: Iterable[str] | None) -> list[str]:
        requested = [team.strip() for team in teams or () if team and team.strip()]
        if requested:
            return list(dict.fromkeys(requested))
        routing = read_json_object(paths.routing, required=False) or {}
        selected = routing.get("selected_teams")
        if not isinstance(selected, list):
            return []
        return [str(team).strip() for team in selected if str(team).strip()]

    def _manual_document(
        self,
        paths: WorkPaths,
        bundle: dict[str, Any],
        status: Literal["approved", "rejected"],
        teams: list[str],
        approved_by: str | None,
        notes: str | None,
        existing: dict[str, Any] | None,
        *,
        now: datetime | None,
    ) -> dict[str, Any]:
        timestamp = now_iso(now)
        previous = existing or {}
        return {
            "version": 1,
            "work_id": paths.work_id,
            "status": status,
            "mode": "manual",
            "bundle_hash": bundle["bundle_hash"],
            "requested_at": previous.get("requested_at") or timestamp,
            "updated_at": timestamp,
            "approved_at": timestamp if status == "approved" else None,
            "approved_by": (approved_by or "").strip() or self._context.settings.default_approver,
            "reason_codes": list(previous.get("reason_codes") or []),
            "notes": notes.strip() if notes and notes.strip() else None,
            "scope": {
                "teams": sorted(teams),
                "repos": sorted(repo["repo_id"] for repo in bundle["repos"]),
            },
            "errors": [],
            "refusals": list(previous.get("refusals") or []),
        }
