"""Merge-approval gate: permission to merge once CI is green."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, cast

from structlog import get_logger

from laneb.ci.status import ci_is_green
from laneb.context import WorkContext, WorkPaths
from laneb.core.errors import GovernanceError, InvalidFormat, MissingArtifact, PolicyViolation, PreconditionFailure, StaleApproval
from laneb.core.jsonio import now_iso, read_json_object, write_json_atomic, write_text_atomic
from laneb.core.ledger import Ledger
from laneb.core.stages import WorkStage
from laneb.events.decisions import write_waiver_packet
from laneb.events.feedback import FeedbackEventValidationError, FeedbackStore, FeedbackStoreError, append_knowledge_event
from laneb.gates.apply_approval import read_current_bundle, render_approval_markdown
from laneb.gates.qa_approval import read_qa_approval
from laneb.gates.qa_audit import QaAudit, audit_obligations, derive_obligations, reconcile_obligations
from laneb.gates.risk import classify_risk_level
from laneb.validation import Err, validate_approval

logger = get_logger(__name__)


class CiNotGreen(PreconditionFailure):
    """CI drifted away from green after the item reached CI_GREEN."""


def repo_id_from_head_branch(work_id: str, head_branch: str | None) -> str | None:
    branch = str(head_branch or "").strip()
    if not branch:
        return None
    prefix = f"ai/{work_id}/"
    if branch.startswith(prefix):
        parts = [p for p in branch[len(prefix) :].split("/") if p]
        return parts[0] if parts else None
    parts = [p for p in branch.split("/") if p]
    return parts[-1] if parts else None


def read_pull_requests(paths: WorkPaths) -> list[dict[str, Any]]:
    """PR.json entries.

    Raises:
        MissingArtifact, InvalidFormat
    """
    pr_doc = read_json_object(paths.pr)
    prs = pr_doc.get("pull_requests") if pr_doc else None
    if not isinstance(prs, list) or not prs or not all(isinstance(pr, dict) for pr in prs):
        raise InvalidFormat(f"PR.json must list pull_requests: {paths.pr}", path=str(paths.pr))
    return prs


def _coverage_message(work_id: str, audit: QaAudit) -> str:
    missing = ", ".join(audit.missing)
    return (
        f"merge approval blocked: QA obligations require {missing} tests, but no corresponding "
        f"test edits were found in patch plans for {work_id}; add tests or record a QA approval "
        f'with notes "waive: {",".join(audit.missing)}"'
    )


@dataclass(frozen=True)
class MergeDecision:
    approval: dict[str, Any]
    audit: QaAudit | None = None
    emitted: list[str] = field(default_factory=list)


class MergeApprovalGate:
    def __init__(self, context: WorkContext, ledger: Ledger) -> None:
        self._context = context
        self._ledger = ledger

    def current(self, work_id: str) -> dict[str, Any] | None:
        paths = self._context.work(work_id)
        raw = read_json_object(paths.merge_approval, required=False)
        if raw is None:
            return None
        checked = validate_approval(raw, expected_work_id=paths.work_id)
        if isinstance(checked, Err):
            raise InvalidFormat(f"invalid merge approval: {paths.merge_approval}", path=str(paths.merge_approval), errors=checked.errors)
        return checked.value

    def audit(self, paths: WorkPaths, bundle: dict[str, Any]) -> QaAudit:
        """Run the QA-obligation audit against every patch plan in the bundle.

        The recorded obligations are reconciled with those derived from the
        pinned plans, so an obligations file older than the bundle can only
        add requirements, never drop them.

        Raises:
            MissingArtifact: obligations or a pinned patch plan is absent.
            PolicyViolation: QA rejected the work, or coverage is missing.
        """
        recorded = read_json_object(paths.qa_obligations, required=False)
        if recorded is None:
            raise MissingArtifact(
                f"missing artifact: {paths.qa_obligations} (record QA plans first)", path=str(paths.qa_obligations)
            )
        qa_approval, _ = read_qa_approval(paths)

        plans: dict[str, dict[str, Any]] = {}
        edit_paths: list[str] = []
        for repo in bundle["repos"]:
            plan_path = self._context.work_root / repo["patch_plan_json_path"]
            plan = read_json_object(plan_path) or {}
            plans[repo["repo_id"]] = plan
            edit_paths.extend(str(edit.get("path")) for edit in plan.get("edits") or [] if isinstance(edit, dict))

        obligations = reconcile_obligations(
            recorded,
            derive_obligations(paths.work_id, plans),
            pinned_risk_levels=[repo.get("risk_level") for repo in bundle["repos"]],
        )
        if obligations["risk_level"] != classify_risk_level(recorded.get("risk_level")):
            logger.warning(
                "qa_obligations_outdated",
                work_id=paths.work_id,
                recorded_risk=recorded.get("risk_level"),
                bundle_risk=obligations["risk_level"],
            )

        result = audit_obligations(obligations, edit_paths, qa_approval)
        if result.qa_rejected:
            raise PolicyViolation(f"merge approval blocked: QA status is rejected ({paths.rel(paths.qa_approval)})")
        if not result.ok:
            raise PolicyViolation(_coverage_message(paths.work_id, result), errors=result.missing)
        return result

    def require_green(self, paths: WorkPaths) -> dict[str, Any]:
        status = read_json_object(paths.ci_status)
        if not ci_is_green(status):
            raise CiNotGreen(
                f"CI is not green for {paths.work_id} (overall={status.get('overall') if status else None})",
                path=str(paths.ci_status),
            )
        return cast(dict[str, Any], status)

    def request(self, work_id: str, stage: WorkStage | None, *, now: datetime | None = None) -> MergeDecision:
        """Create a pending merge approval.

        Raises:
            PreconditionFailure: the item is not at CI_GREEN.
            CiNotGreen: the recorded CI status is no longer green.
        """
        paths = self._context.work(work_id)
        if stage is not WorkStage.CI_GREEN:
            raise PreconditionFailure(
                f"merge approval cannot be requested unless stage is CI_GREEN (current_stage={stage.value if stage else None})"
            )
        bundle = read_current_bundle(paths)
        audit = self.audit(paths, bundle)
        read_pull_requests(paths)
        self.require_green(paths)

        approval = {
            "version": 1,
            "work_id": paths.work_id,
            "status": "pending",
            "mode": "manual",
            "bundle_hash": bundle["bundle_hash"],
            "requested_at": now_iso(now),
            "approved_at": None,
            "approved_by": None,
            "reason_codes": [],
            "notes": None,
            "dual_signoff_required": audit.dual_signoff_required,
            "owner_signoff": None,
            "qa_signoff": self._qa_signoff(audit),
        }
        self._write(paths, approval)
        logger.info("merge_approval_requested", work_id=paths.work_id, dual_signoff_required=audit.dual_signoff_required)
        return MergeDecision(approval=approval, audit=audit)

    def approve(
        self,
        work_id: str,
        *,
        approved_by: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> MergeDecision:
        """Owner signoff; re-checks CI, bundle freshness, QA coverage, and dual signoff.

        Raises:
            MissingArtifact, CiNotGreen, StaleApproval, PolicyViolation
        """
        paths = self._context.work(work_id)
        existing = self.current(work_id)
        if existing is None:
            raise MissingArtifact(f"missing artifact: {paths.merge_approval} (request merge approval first)", path=str(paths.merge_approval))
        if "ci_drift" in (existing.get("reason_codes") or []):
            raise PreconditionFailure("merge approval was invalidated by a CI drift; request a new merge approval")

        self.require_green(paths)
        bundle = read_current_bundle(paths)
        if existing["bundle_hash"] != bundle["bundle_hash"]:
            raise StaleApproval(
                "MERGE_APPROVAL.json bundle_hash does not match current BUNDLE.json",
                path=str(paths.merge_approval),
            )
        audit = self.audit(paths, bundle)
        owner = (approved_by or "").strip() or self._context.settings.default_approver
        if audit.dual_signoff_required:
            qa_by = str(audit.qa_approval.get("by") or "").strip()
            if audit.qa_status != "approved" or not qa_by:
                raise PolicyViolation(
                    "merge approval blocked: high-risk QA obligations require dual signoff (owner + QA); missing QA signoff"
                )
            if qa_by.casefold() == owner.casefold():
                raise PolicyViolation("merge approval blocked: owner and QA signoff must come from different approvers")

        timestamp = now_iso(now)
        approval = dict(existing)
        approval.update(
            {
                "status": "approved",
                "mode": "manual",
                "approved_at": timestamp,
                "approved_by": owner,
                "notes": notes.strip() if notes and notes.strip() else None,
                "dual_signoff_required": audit.dual_signoff_required,
                "owner_signoff": {"by": owner, "at": timestamp},
                "qa_signoff": self._qa_signoff(audit),
            }
        )
        self._write(paths, approval)
        logger.info("merge_approval_approved", work_id=paths.work_id, approved_by=owner)
        return MergeDecision(approval=approval, audit=audit)

    def reject(
        self,
        work_id: str,
        *,
        approved_by: str | None = None,
        notes: str | None = None,
        reason_code: str | None = None,
        now: datetime | None = None,
    ) -> MergeDecision:
        paths = self._context.work(work_id)
        existing = self.current(work_id)
        if existing is None:
            raise MissingArtifact(f"missing artifact: {paths.merge_approval}", path=str(paths.merge_approval))
        approval = dict(existing)
        codes = list(approval.get("reason_codes") or [])
        if reason_code and reason_code not in codes:
            codes.append(reason_code)
        approval.update(
            {
                "status": "rejected",
                "mode": "manual",
                "approved_at": None,
                "approved_by": (approved_by or "").strip() or self._context.settings.default_approver,
                "notes": notes.strip() if notes and notes.strip() else None,
                "reason_codes": sorted(codes),
            }
        )
        if approval.get("dual_signoff_required"):
            approval["owner_signoff"] = None
        self._write(paths, approval)
        logger.info("merge_approval_rejected", work_id=paths.work_id, reason_code=reason_code)
        return MergeDecision(approval=approval)

    def emit_feedback(self, decision: MergeDecision, *, now: datetime | None = None) -> list[str]:
        """Knowledge events, merge events, and waiver packets for an approved merge.

        Failures are recorded in the ledger and never undo the approval.
        """
        approval = decision.approval
        audit = decision.audit
        paths = self._context.work(approval["work_id"])
        emitted: list[str] = []
        try:
            prs = read_pull_requests(paths)
            ci_status = read_json_object(paths.ci_status) or {}
        except GovernanceError as exc:
            self._ledger.append("knowledge_event_emit_failed", work_id=paths.work_id, now=now, type="merge", error=exc.message)
            logger.warning("knowledge_event_emit_failed", work_id=paths.work_id, error=exc.message)
            return emitted

        head_by_repo = {
            str(pr.get("repo_id")): pr.get("head_sha")
            for pr in ci_status.get("pull_requests") or []
            if isinstance(pr, dict)
        }
        knowledge = FeedbackStore(self._context.knowledge_events_path)
        merges = FeedbackStore(self._context.merge_events_path)
        waived = audit.waived_obligations if audit else []
        qa_approval = audit.qa_approval if audit else {}
        qa_waiver = {
            "explicit": bool(waived),
            "waived_obligations": waived,
            "by": qa_approval.get("by"),
            "notes": qa_approval.get("notes"),
            "updated_at": qa_approval.get("updated_at"),
        }

        for pr in prs:
            repo_id = str(pr.get("repo_id") or "").strip() or repo_id_from_head_branch(paths.work_id, pr.get("head_branch"))
            commit = str(head_by_repo.get(str(repo_id)) or pr.get("head_sha") or ci_status.get("head_sha") or "").strip()
            pr_number = pr.get("pr_number") if isinstance(pr.get("pr_number"), int) else None
            try:
                if not repo_id:
                    raise InvalidFormat("unable to infer repo_id from PR head branch")
                if not commit:
                    raise InvalidFormat("missing CI head_sha; cannot emit merge event")

                if waived:
                    decision_id, wrote = write_waiver_packet(
                        self._context,
                        work_id=paths.work_id,
                        repo_id=repo_id,
                        waived=waived,
                        merge_commit_sha=commit,
                        merge_approved_by=str(approval.get("approved_by") or ""),
                        qa_approval=qa_approval,
                        risk_level=audit.risk_level if audit else "unknown",
                        now=now,
                    )
                    if wrote:
                        self._ledger.append(
                            "invariant_waiver_decision_created",
                            work_id=paths.work_id,
                            now=now,
                            repo_id=repo_id,
                            decision_id=decision_id,
                            waived_obligations=waived,
                        )
                        emitted.append(decision_id)

                append_knowledge_event(
                    knowledge,
                    {
                        "type": "merge",
                        "scope": f"repo:{repo_id}",
                        "repo_id": repo_id,
                        "work_id": paths.work_id,
                        "pr_number": pr_number,
                        "commit": commit,
                        "artifacts": {
                            "paths": [paths.rel(paths.pr), paths.rel(paths.ci_status), paths.rel(paths.merge_approval)],
                            "fingerprints": [f"bundle:{approval['bundle_hash']}"],
                        },
                        "summary": f"Merge approval approved for work {paths.work_id}; treated as merge signal for repo {repo_id}.",
                        "timestamp": now_iso(now),
                    },
                )
                self._ledger.append("knowledge_event_emitted", work_id=paths.work_id, now=now, type="merge", repo_id=repo_id, commit=commit)
                emitted.append(f"knowledge:{repo_id}")

                merges.append(
                    {
                        "type": "merge_approved",
                        "repo_id": repo_id,
                        "work_id": paths.work_id,
                        "pr_number": pr_number,
                        "pr_url": pr.get("url"),
                        "merge_commit_sha": commit,
                        "base_branch": pr.get("base_branch"),
                        "head_branch": pr.get("head_branch"),
                        "changed_paths": self._changed_paths(repo_id, audit),
                        "obligations": {k: v for k, v in (audit.obligations if audit else {}).items() if k.startswith("must_add_")},
                        "risk_level": audit.risk_level if audit else "unknown",
                        "qa_waiver": qa_waiver,
                        "timestamp": now_iso(now),
                    }
                )
                self._ledger.append("merge_event_logged", work_id=paths.work_id, now=now, repo_id=repo_id)
                emitted.append(f"merge:{repo_id}")
            except (GovernanceError, FeedbackEventValidationError, FeedbackStoreError, OSError) as exc:
                self._ledger.append(
                    "knowledge_event_emit_failed", work_id=paths.work_id, now=now, type="merge", repo_id=repo_id, error=str(exc)
                )
                logger.warning("knowledge_event_emit_failed", work_id=paths.work_id, repo_id=repo_id, error=str(exc))
        return emitted

    @staticmethod
    def _changed_paths(repo_id: str, audit: QaAudit | None) -> list[str]:
        for entry in (audit.obligations if audit else {}).get("changed_paths_by_repo") or []:
            if isinstance(entry, dict) and entry.get("repo_id") == repo_id:
                return list(entry.get("paths") or [])
        return []

    @staticmethod
    def _qa_signoff(audit: QaAudit) -> dict[str, Any]:
        return {
            "status": audit.qa_status,
            "by": audit.qa_approval.get("by"),
            "notes": audit.qa_approval.get("notes"),
            "updated_at": audit.qa_approval.get("updated_at"),
        }

    def _write(self, paths: WorkPaths, approval: dict[str, Any]) -> None:
        write_json_atomic(paths.merge_approval, approval)
        write_text_atomic(paths.merge_approval.with_suffix(".md"), _render_merge_markdown(approval))


def _render_merge_markdown(approval: dict[str, Any]) -> str:
    text = render_approval_markdown("Merge Approval", approval).rstrip("\n")
    lines = [text, "", "## Signoff", "", f"- dual_signoff_required: `{str(bool(approval.get('dual_signoff_required'))).lower()}`"]
    owner = approval.get("owner_signoff") or {}
    qa = approval.get("qa_signoff") or {}
    lines.append(f"- owner_signoff: `{owner.get('by') or '(null)'}` at `{owner.get('at') or '(null)'}`")
    lines.append(f"- qa_signoff: `{qa.get('status') or '(null)'}` by `{qa.get('by') or '(null)'}`")
    lines.append("")
    return "\n".join(lines)
