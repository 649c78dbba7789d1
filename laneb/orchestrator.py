"""Work-item state machine.

Every operation reads the persisted status, computes the next stage, and writes
a new snapshot plus a ledger entry. Mutations for one work item run under its
advisory lock; governance errors come back as failed `OperationResult`s and
leave the prior stage authoritative.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Callable, Iterable, Iterator, Literal, Mapping

from pydantic import ValidationError
from structlog import get_logger

from laneb.bundle.builder import BundleBuilder, BundleBuildResult, verify_bundle_pins, write_bundle
from laneb.ci.attempts import load_attempts, save_attempts
from laneb.ci.status import CiStatusStore, build_snapshot, snapshot_hash
from laneb.config.loader import load_policies, load_repo_registry
from laneb.config.schema import PolicyDocument, RepoRegistry
from laneb.context import WorkContext, WorkPaths
from laneb.core.errors import (
    GovernanceError,
    HashMismatch,
    InvalidFormat,
    MissingArtifact,
    OperationResult,
    PolicyViolation,
    PreconditionFailure,
    StaleApproval,
)
from laneb.core.jsonio import now_iso, read_json_object, sha256_hex, write_json_atomic, write_text_atomic
from laneb.core.ledger import Ledger
from laneb.core.lock import WorkItemLock, WorkItemLockError
from laneb.core.models import Routing, WorkMeta
from laneb.core.stages import (
    APPLY_APPROVAL_REQUESTABLE,
    BUNDLEABLE_STAGES,
    CI_POLLABLE_STAGES,
    SATISFIED_DEPENDENCY_STAGES,
    WorkStage,
)
from laneb.core.status_store import StatusStore
from laneb.events.decisions import DecisionChoice, DecisionsQueue, ratify_waiver, read_waiver_packet
from laneb.gates.apply_approval import ApplyApprovalGate, read_current_bundle
from laneb.gates.merge_approval import CiNotGreen, MergeApprovalGate, read_pull_requests
from laneb.gates.plan_approval import PlanApprovalGate
from laneb.gates.qa_approval import read_qa_approval, set_qa_approval
from laneb.gates.qa_audit import derive_obligations
from laneb.protocols import VcsProvider

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Operation = Callable[[WorkPaths, datetime], OperationResult]

LEGACY_GATE_ARTIFACTS = (
    ("GATE_A", "APPLY_APPROVAL"),
    ("GATE_B", "MERGE_APPROVAL"),
    ("APPROVAL", "PLAN_APPROVAL"),
)
APPROVAL_ARTIFACTS = ("PLAN_APPROVAL", "APPLY_APPROVAL", "MERGE_APPROVAL", "QA_APPROVAL")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _stage_names(stages: Iterable[WorkStage]) -> str:
    return ", ".join(sorted(stage.value for stage in stages))


class WorkItemOrchestrator:
    """Drives work items from intake to merge."""

    def __init__(
        self,
        context: WorkContext,
        *,
        registry: RepoRegistry | None = None,
        policies: PolicyDocument | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._context = context
        self._registry = registry if registry is not None else load_repo_registry(context.policy_root)
        self._policies = policies if policies is not None else load_policies(context.policy_root)
        self._clock = clock or _utc_now
        self._ledger = Ledger(context.ledger_path)
        self._decisions = DecisionsQueue(context)
        self._builder = BundleBuilder(context, registry=self._registry, policies=self._policies)
        self._plan_gate = PlanApprovalGate(context, registry=self._registry, policies=self._policies)
        self._apply_gate = ApplyApprovalGate(context, registry=self._registry, policies=self._policies)
        self._merge_gate = MergeApprovalGate(context, self._ledger)

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def decisions_queue(self) -> DecisionsQueue:
        return self._decisions

    # ------------------------------------------------------------------
    # plumbing

    @contextmanager
    def _mutation_guard(self, paths: WorkPaths, operation: str) -> Iterator[None]:
        settings = self._context.settings
        lock = WorkItemLock(
            paths.lock,
            retry_seconds=settings.lock_retry_seconds,
            wait_seconds=settings.lock_wait_seconds,
            stale_seconds=settings.lock_stale_seconds,
        )
        with lock.hold(operation):
            yield

    def _run(self, work_id: str, operation: Operation, *, name: str) -> OperationResult:
        try:
            paths = self._context.work(work_id)
        except GovernanceError as exc:
            return OperationResult.failure(exc, work_id=work_id)
        try:
            with self._mutation_guard(paths, name):
                return operation(paths, self._clock())
        except GovernanceError as exc:
            logger.info("operation_failed", operation=name, work_id=paths.work_id, kind=exc.kind, error=exc.message)
            return OperationResult.failure(exc, work_id=paths.work_id, stage=self._stage_or_none(paths))
        except WorkItemLockError as exc:
            logger.warning("operation_lock_timeout", operation=name, work_id=paths.work_id)
            return OperationResult(
                ok=False,
                work_id=paths.work_id,
                message=str(exc),
                error_kind="precondition_failure",
            )

    @staticmethod
    def _stage_or_none(paths: WorkPaths) -> str | None:
        try:
            stage = StatusStore(paths).current_stage()
        except GovernanceError:
            return None
        return stage.value if stage else None

    @staticmethod
    def _require_stage(paths: WorkPaths, allowed: Iterable[WorkStage], operation: str) -> WorkStage:
        if not paths.meta.exists():
            raise MissingArtifact(f"work item not found: missing {paths.rel(paths.meta)}", path=str(paths.meta))
        stage = StatusStore(paths).current_stage()
        allowed = frozenset(allowed)
        if stage not in allowed:
            raise PreconditionFailure(
                f"{operation} requires stage in [{_stage_names(allowed)}] "
                f"(current_stage={stage.value if stage else '(missing)'})"
            )
        assert stage is not None
        return stage

    def _transition(
        self,
        paths: WorkPaths,
        stage: WorkStage,
        *,
        action: str,
        now: datetime,
        blocked: bool | None = None,
        blocking_reason: str | None = None,
        artifacts: Mapping[str, Any] | None = None,
        repos: Mapping[str, Any] | None = None,
        note: str | None = None,
        **ledger_fields: Any,
    ) -> None:
        store = StatusStore(paths, history_limit=self._context.settings.status_history_limit)
        previous = store.current_stage()
        store.update(
            stage,
            blocked=blocked,
            blocking_reason=blocking_reason,
            artifacts=artifacts,
            repos=repos,
            note=note,
            now=now,
        )
        self._ledger.append(
            action,
            work_id=paths.work_id,
            now=now,
            from_stage=previous.value if previous else None,
            to_stage=stage.value,
            blocking_reason=blocking_reason,
            **ledger_fields,
        )
        logger.info(
            "work_stage_changed",
            work_id=paths.work_id,
            from_stage=previous.value if previous else None,
            to_stage=stage.value,
            blocked=bool(blocking_reason) if blocked is None else blocked,
        )

    @staticmethod
    def _ok(paths: WorkPaths, stage: WorkStage, message: str, **data: Any) -> OperationResult:
        return OperationResult(ok=True, work_id=paths.work_id, stage=stage.value, message=message, data=data)

    def _artifacts(self, paths: WorkPaths, *files: Any) -> dict[str, str]:
        return {file.name: paths.rel(file) for file in files}

    def _read_meta(self, paths: WorkPaths) -> WorkMeta:
        payload = read_json_object(paths.meta)
        try:
            return WorkMeta.model_validate(payload)
        except ValidationError as exc:
            raise InvalidFormat(f"invalid META.json: {paths.meta}", path=str(paths.meta), errors=_pydantic_errors(exc)) from exc

    def _read_routing(self, paths: WorkPaths) -> Routing:
        payload = read_json_object(paths.routing)
        try:
            return Routing.model_validate(payload)
        except ValidationError as exc:
            raise InvalidFormat(f"invalid ROUTING.json: {paths.routing}", path=str(paths.routing), errors=_pydantic_errors(exc)) from exc

    def _build(self, paths: WorkPaths, *, require_qa: bool, now: datetime, label: str) -> BundleBuildResult:
        result = self._builder.build(paths.work_id, require_qa=require_qa, now=now)
        if not result.ok:
            raise PolicyViolation(f"{label} failed for {paths.work_id}", errors=result.errors)
        return result

    def _plans_from_bundle(self, bundle: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        plans: dict[str, dict[str, Any]] = {}
        for repo in bundle["repos"]:
            plan = read_json_object(self._context.work_root / repo["patch_plan_json_path"])
            plans[repo["repo_id"]] = plan or {}
        return plans

    # ------------------------------------------------------------------
    # intake and routing

    def intake(
        self,
        text: str,
        *,
        source: str = "manual",
        work_id: str | None = None,
        depends_on: Iterable[str] = (),
        labels: Iterable[str] = (),
        priority: int = 50,
    ) -> OperationResult:
        body = str(text or "").strip()
        if not body:
            return OperationResult(ok=False, work_id=work_id, message="intake text is empty", error_kind="precondition_failure")
        now = self._clock()
        digest = sha256_hex(body)
        resolved_id = work_id or f"W-{now.astimezone(UTC).strftime('%Y%m%d-%H%M%S')}-{digest[:8]}"

        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            if paths.meta.exists():
                raise PreconditionFailure(f"work item already exists: {paths.work_id}")
            meta = WorkMeta(
                work_id=paths.work_id,
                created_at=now_iso(now),
                raw_intake_id=f"I-{digest[:12]}",
                priority=priority,
                depends_on=list(depends_on),
                labels=list(labels),
            )
            write_text_atomic(paths.intake, f"# Intake\n\nSource: {source}\n\n{body}\n")
            write_json_atomic(paths.meta, meta.model_dump(mode="json"))
            self._transition(
                paths,
                WorkStage.INTAKE_RECEIVED,
                action="intake_received",
                now=now,
                artifacts=self._artifacts(paths, paths.meta, paths.intake),
                source=source,
            )
            return self._ok(paths, WorkStage.INTAKE_RECEIVED, "intake recorded")

        return self._run(resolved_id, operation, name="intake")

    def route(self, work_id: str, routing: Mapping[str, Any]) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.INTAKE_RECEIVED, WorkStage.ROUTED, WorkStage.BLOCKED}, "route")
            try:
                decision = Routing.model_validate({**routing, "work_id": paths.work_id})
            except ValidationError as exc:
                raise InvalidFormat("invalid routing decision", errors=_pydantic_errors(exc)) from exc
            unknown = [repo for repo in decision.selected_repos if self._registry.get(repo) is None]
            if unknown:
                raise InvalidFormat("routing selects unknown repos", errors=[f"unknown repo: {r}" for r in unknown])

            teams = decision.selected_teams or sorted(
                {self._registry.get(repo).team_id for repo in decision.selected_repos} - {""}  # type: ignore[union-attr]
            )
            decision = decision.model_copy(update={"selected_teams": teams})
            write_json_atomic(paths.routing, decision.model_dump(mode="json"))

            meta = self._read_meta(paths)
            meta = meta.model_copy(
                update={
                    "team_id": teams[0] if len(teams) == 1 else meta.team_id,
                    "repo_scopes": list(decision.selected_repos),
                    "repo_id": decision.selected_repos[0] if len(decision.selected_repos) == 1 else None,
                    "target_branch": decision.target_branch or meta.target_branch,
                }
            )
            write_json_atomic(paths.meta, meta.model_dump(mode="json"))

            threshold = self._context.settings.routing_confidence_threshold
            needs_confirmation = not decision.confirmed and (
                decision.needs_confirmation or decision.routing_confidence < threshold
            )
            artifacts = self._artifacts(paths, paths.routing, paths.meta)
            if needs_confirmation:
                self._decisions.enqueue(
                    paths.work_id,
                    "routing",
                    reason="routing_needs_confirmation",
                    details=[f"routing_confidence={decision.routing_confidence}", f"threshold={threshold}"],
                    now=now,
                )
                self._transition(
                    paths,
                    WorkStage.BLOCKED,
                    action="routed",
                    now=now,
                    blocking_reason="routing_needs_confirmation",
                    artifacts=artifacts,
                    selected_repos=decision.selected_repos,
                )
                return self._ok(paths, WorkStage.BLOCKED, "routing needs confirmation", blocked=True)

            self._transition(
                paths,
                WorkStage.ROUTED,
                action="routed",
                now=now,
                artifacts=artifacts,
                selected_repos=decision.selected_repos,
            )
            return self._ok(paths, WorkStage.ROUTED, "routed", selected_repos=decision.selected_repos)

        return self._run(work_id, operation, name="route")

    def resolve_decision(self, work_id: str, choice: DecisionChoice, *, by: str | None = None) -> OperationResult:
        """Two-choice human resolution: `A` confirm and continue, `B` escalate."""
        who = (by or "").strip() or self._context.settings.default_approver

        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            if not paths.meta.exists():
                raise MissingArtifact(f"work item not found: missing {paths.rel(paths.meta)}", path=str(paths.meta))
            entry = self._decisions.resolve(paths.work_id, choice, by=who, now=now)
            kind = str(entry.get("kind"))
            self._ledger.append("decision_resolved", work_id=paths.work_id, now=now, kind=kind, choice=choice, by=who)

            if choice == "B":
                write_text_atomic(
                    paths.escalation,
                    f"# Escalation\n\nWork item: `{paths.work_id}`\n\n- decision: `{entry.get('decision_id')}`\n"
                    f"- kind: `{kind}`\n- reason: {entry.get('reason')}\n- by: `{who}`\n- at: `{now_iso(now)}`\n",
                )
                self._transition(
                    paths,
                    WorkStage.ESCALATED,
                    action="escalated",
                    now=now,
                    blocked=True,
                    blocking_reason=f"escalated: {kind}",
                    artifacts=self._artifacts(paths, paths.escalation),
                )
                return self._ok(paths, WorkStage.ESCALATED, "escalated", decision_id=entry.get("decision_id"))
            return self._confirm(paths, kind, who, now)

        return self._run(work_id, operation, name="resolve_decision")

    def _confirm(self, paths: WorkPaths, kind: str, by: str, now: datetime) -> OperationResult:
        if kind == "routing":
            routing = self._read_routing(paths)
            routing = routing.model_copy(update={"confirmed": True, "confirmed_by": by, "confirmed_at": now_iso(now)})
            write_json_atomic(paths.routing, routing.model_dump(mode="json"))
            self._transition(paths, WorkStage.ROUTED, action="routing_confirmed", now=now, confirmed_by=by)
            return self._ok(paths, WorkStage.ROUTED, "routing confirmed")
        if kind == "dependencies":
            self._transition(paths, WorkStage.SWEEP_READY, action="dependencies_overridden", now=now, confirmed_by=by)
            return self._ok(paths, WorkStage.SWEEP_READY, "dependencies overridden")
        if kind == "plan_approval":
            return self._approve_plan(paths, now, teams=None, approved_by=by, notes="confirmed from decisions queue")
        if kind == "apply_approval":
            return self._approve_apply(paths, now, approved_by=by, notes="confirmed from decisions queue")
        if kind == "merge_approval":
            return self._approve_merge(paths, now, approved_by=by, notes="confirmed from decisions queue")
        if kind == "ci":
            attempts = load_attempts(paths)
            attempts.fix_attempts = 0
            attempts.unchanged_polls_in_fixing = 0
            save_attempts(paths, attempts, now=now)
            self._transition(paths, WorkStage.CI_FAILED, action="ci_remediation_resumed", now=now, blocked=False, confirmed_by=by)
            return self._ok(paths, WorkStage.CI_FAILED, "CI remediation resumed")
        raise PreconditionFailure(f"unsupported decision kind: {kind}")

    def sweep(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            stage = self._require_stage(paths, {WorkStage.ROUTED, WorkStage.BLOCKED}, "sweep")
            if stage is WorkStage.BLOCKED:
                snapshot = StatusStore(paths).require()
                if snapshot.blocking_reason != "dependencies_pending":
                    raise PreconditionFailure(f"work item is blocked: {snapshot.blocking_reason}")
            meta = self._read_meta(paths)
            pending: list[str] = []
            for dependency in meta.depends_on:
                dep_stage = StatusStore(self._context.work(dependency)).current_stage()
                if dep_stage not in SATISFIED_DEPENDENCY_STAGES:
                    pending.append(f"{dependency}={dep_stage.value if dep_stage else '(missing)'}")
            if pending:
                self._decisions.enqueue(paths.work_id, "dependencies", reason="dependencies_pending", details=pending, now=now)
                self._transition(
                    paths,
                    WorkStage.BLOCKED,
                    action="sweep_blocked",
                    now=now,
                    blocking_reason="dependencies_pending",
                    pending=pending,
                )
                return self._ok(paths, WorkStage.BLOCKED, "dependencies pending", blocked=True, pending=pending)

            self._decisions.close_kind(paths.work_id, "dependencies", now=now)
            self._transition(paths, WorkStage.SWEEP_READY, action="sweep_ready", now=now)
            return self._ok(paths, WorkStage.SWEEP_READY, "ready for planning")

        return self._run(work_id, operation, name="sweep")

    # ------------------------------------------------------------------
    # planning and bundling

    def record_patch_plans(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.SWEEP_READY, WorkStage.PATCH_PLANNED}, "record_patch_plans")
            result = self._build(paths, require_qa=False, now=now, label="patch plan validation")
            assert result.bundle is not None
            repos = {
                repo["repo_id"]: {"patch_plan": repo["patch_plan_json_path"], "risk_level": repo["risk_level"]}
                for repo in result.bundle["repos"]
            }
            self._transition(paths, WorkStage.PATCH_PLANNED, action="patch_plans_recorded", now=now, repos=repos)
            return self._ok(paths, WorkStage.PATCH_PLANNED, "patch plans validated", repos=sorted(repos))

        return self._run(work_id, operation, name="record_patch_plans")

    def record_qa_plans(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.PATCH_PLANNED, WorkStage.QA_PLANNED}, "record_qa_plans")
            result = self._build(paths, require_qa=True, now=now, label="QA plan validation")
            assert result.bundle is not None
            obligations = derive_obligations(paths.work_id, self._plans_from_bundle(result.bundle), now=now)
            write_json_atomic(paths.qa_obligations, obligations)
            self._transition(
                paths,
                WorkStage.QA_PLANNED,
                action="qa_obligations_recorded",
                now=now,
                artifacts=self._artifacts(paths, paths.qa_obligations),
                risk_level=obligations["risk_level"],
            )
            return self._ok(paths, WorkStage.QA_PLANNED, "QA plans validated", obligations=obligations)

        return self._run(work_id, operation, name="record_qa_plans")

    def bundle(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, BUNDLEABLE_STAGES, "bundle")
            result = self._build(paths, require_qa=self._context.settings.require_qa, now=now, label="bundle build")
            assert result.bundle is not None
            obligations = derive_obligations(paths.work_id, self._plans_from_bundle(result.bundle), now=now)
            write_json_atomic(paths.qa_obligations, obligations)
            write_bundle(self._context, result)

            plan_approval = self._plan_gate.current(paths.work_id)
            existing = self._apply_gate.current(paths.work_id)
            stale = existing is not None and existing["bundle_hash"] != result.bundle_hash
            self._transition(
                paths,
                WorkStage.BUNDLED,
                action="bundle_built",
                now=now,
                artifacts=self._artifacts(paths, paths.bundle, paths.qa_obligations),
                bundle_hash=result.bundle_hash,
                risk_level=obligations["risk_level"],
            )
            return self._ok(
                paths,
                WorkStage.BUNDLED,
                result.message,
                bundle_hash=result.bundle_hash,
                apply_approval_stale=stale,
                plan_approval_stale=plan_approval is not None and plan_approval["bundle_hash"] != result.bundle_hash,
            )

        return self._run(work_id, operation, name="bundle")

    # ------------------------------------------------------------------
    # plan approval

    def request_plan_approval(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            self._require_stage(paths, {WorkStage.BUNDLED}, "request_plan_approval")
            outcome = self._plan_gate.request(paths.work_id, now=now)
            approval = outcome.approval
            self._ledger.append(
                "plan_approval_requested",
                work_id=paths.work_id,
                now=now,
                bundle_hash=approval["bundle_hash"],
                status=approval["status"],
                reused=outcome.reused or None,
            )
            artifacts = self._artifacts(paths, paths.plan_approval, paths.plan_approval.with_suffix(".md"))
            codes = ", ".join(outcome.reason_codes)
            data = {"status": approval["status"], "mode": approval["mode"], "reason_codes": list(outcome.reason_codes)}

            if outcome.status == "approved":
                self._decisions.close_kind(paths.work_id, "plan_approval", now=now)
                action = "plan_approval_auto_approved" if approval["mode"] == "auto" else "plan_approval_approved"
                self._transition(paths, WorkStage.BUNDLED, action=action, now=now, blocked=False, artifacts=artifacts)
                return self._ok(paths, WorkStage.BUNDLED, "plan approval granted", **data)

            if outcome.status == "pending":
                self._decisions.enqueue(
                    paths.work_id,
                    "plan_approval",
                    reason=f"plan_approval_pending: {codes}",
                    details=approval.get("refusals") or [],
                    now=now,
                )
                self._transition(
                    paths,
                    WorkStage.BUNDLED,
                    action="plan_approval_pending",
                    now=now,
                    blocked=True,
                    blocking_reason=f"plan_approval_pending: {codes}",
                    artifacts=artifacts,
                )
                return self._ok(paths, WorkStage.BUNDLED, "plan approval requires a human decision", blocked=True, **data)

            self._transition(
                paths,
                WorkStage.REJECTED,
                action="plan_approval_rejected",
                now=now,
                blocked=True,
                blocking_reason=f"plan_approval_rejected: {codes}",
                artifacts=artifacts,
            )
            return OperationResult(
                ok=False,
                work_id=paths.work_id,
                stage=WorkStage.REJECTED.value,
                message="plan approval rejected",
                errors=outcome.errors,
                error_kind="policy_violation",
                data=data,
            )

        return self._run(work_id, operation, name="request_plan_approval")

    def approve_plan(
        self,
        work_id: str,
        *,
        teams: Iterable[str] | None = None,
        approved_by: str | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        return self._run(
            work_id,
            lambda paths, now: self._approve_plan(paths, now, teams=teams, approved_by=approved_by, notes=notes),
            name="approve_plan",
        )

    def _approve_plan(
        self,
        paths: WorkPaths,
        now: datetime,
        *,
        teams: Iterable[str] | None,
        approved_by: str | None,
        notes: str | None,
    ) -> OperationResult:
        self._migrate_legacy(paths, now)
        self._require_stage(paths, {WorkStage.BUNDLED, WorkStage.REJECTED}, "approve_plan")
        approval = self._plan_gate.approve(paths.work_id, teams=teams, approved_by=approved_by, notes=notes, now=now)
        self._decisions.close_kind(paths.work_id, "plan_approval", now=now)
        self._transition(
            paths,
            WorkStage.BUNDLED,
            action="plan_approval_approved",
            now=now,
            blocked=False,
            artifacts=self._artifacts(paths, paths.plan_approval, paths.plan_approval.with_suffix(".md")),
            approved_by=approval["approved_by"],
            teams=approval["scope"]["teams"],
            bundle_hash=approval["bundle_hash"],
        )
        return self._ok(
            paths,
            WorkStage.BUNDLED,
            "plan approval granted",
            status="approved",
            mode="manual",
            teams=approval["scope"]["teams"],
        )

    def reject_plan(
        self,
        work_id: str,
        *,
        teams: Iterable[str] | None = None,
        approved_by: str | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            self._require_stage(paths, {WorkStage.BUNDLED}, "reject_plan")
            approval = self._plan_gate.reject(paths.work_id, teams=teams, approved_by=approved_by, notes=notes, now=now)
            self._decisions.close_kind(paths.work_id, "plan_approval", now=now)
            self._transition(
                paths,
                WorkStage.REJECTED,
                action="plan_approval_rejected",
                now=now,
                blocked=True,
                blocking_reason="plan_approval_rejected",
                approved_by=approval["approved_by"],
                notes=approval["notes"],
            )
            return self._ok(paths, WorkStage.REJECTED, "plan approval rejected", status="rejected", mode="manual")

        return self._run(work_id, operation, name="reject_plan")

    def reset_plan_approval(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.BUNDLED, WorkStage.REJECTED}, "reset_plan_approval")
            archived = self._plan_gate.reset(paths.work_id, now=now)
            self._decisions.close_kind(paths.work_id, "plan_approval", now=now)
            self._transition(paths, WorkStage.BUNDLED, action="plan_approval_reset", now=now, blocked=False, archived=archived)
            return self._ok(paths, WorkStage.BUNDLED, "plan approval reset", archived=archived)

        return self._run(work_id, operation, name="reset_plan_approval")

    # ------------------------------------------------------------------
    # apply approval

    def request_apply_approval(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            self._require_stage(paths, APPLY_APPROVAL_REQUESTABLE, "request_apply_approval")
            self._plan_gate.require_approved(paths.work_id, required=self._context.settings.require_plan_approval)
            outcome = self._apply_gate.request(paths.work_id, now=now)
            approval = outcome.approval
            self._ledger.append(
                "apply_approval_requested",
                work_id=paths.work_id,
                now=now,
                bundle_hash=approval["bundle_hash"],
                status=approval["status"],
                reused=outcome.reused or None,
            )
            artifacts = self._artifacts(paths, paths.apply_approval, paths.apply_approval.with_suffix(".md"))
            codes = ", ".join(outcome.reason_codes)
            data = {"status": approval["status"], "mode": approval["mode"], "reason_codes": list(outcome.reason_codes)}

            if outcome.status == "approved":
                self._decisions.close_kind(paths.work_id, "apply_approval", now=now)
                action = "apply_approval_auto_approved" if approval["mode"] == "auto" else "apply_approval_approved"
                self._transition(paths, WorkStage.APPLY_APPROVAL_APPROVED, action=action, now=now, artifacts=artifacts)
                return self._ok(paths, WorkStage.APPLY_APPROVAL_APPROVED, "apply approval granted", **data)

            if outcome.status == "pending":
                self._decisions.enqueue(
                    paths.work_id,
                    "apply_approval",
                    reason=f"apply_approval_pending: {codes}",
                    details=approval.get("refusals") or [],
                    now=now,
                )
                self._transition(
                    paths,
                    WorkStage.APPLY_APPROVAL_PENDING,
                    action="apply_approval_pending",
                    now=now,
                    blocked=True,
                    blocking_reason=f"apply_approval_pending: {codes}",
                    artifacts=artifacts,
                )
                return self._ok(paths, WorkStage.APPLY_APPROVAL_PENDING, "apply approval requires a human decision", blocked=True, **data)

            self._transition(
                paths,
                WorkStage.REJECTED,
                action="apply_approval_rejected",
                now=now,
                blocked=True,
                blocking_reason=f"apply_approval_rejected: {codes}",
                artifacts=artifacts,
            )
            return OperationResult(
                ok=False,
                work_id=paths.work_id,
                stage=WorkStage.REJECTED.value,
                message="apply approval rejected",
                errors=outcome.errors,
                error_kind="policy_violation",
                data=data,
            )

        return self._run(work_id, operation, name="request_apply_approval")

    def approve_apply(self, work_id: str, *, approved_by: str | None = None, notes: str | None = None) -> OperationResult:
        return self._run(
            work_id,
            lambda paths, now: self._approve_apply(paths, now, approved_by=approved_by, notes=notes),
            name="approve_apply",
        )

    def _approve_apply(self, paths: WorkPaths, now: datetime, *, approved_by: str | None, notes: str | None) -> OperationResult:
        self._migrate_legacy(paths, now)
        self._require_stage(paths, {WorkStage.APPLY_APPROVAL_PENDING, WorkStage.REJECTED}, "approve_apply")
        approval = self._apply_gate.set_status(paths.work_id, "approved", approved_by=approved_by, notes=notes, now=now)
        self._decisions.close_kind(paths.work_id, "apply_approval", now=now)
        self._transition(
            paths,
            WorkStage.APPLY_APPROVAL_APPROVED,
            action="apply_approval_approved",
            now=now,
            approved_by=approval["approved_by"],
            notes=approval["notes"],
        )
        return self._ok(paths, WorkStage.APPLY_APPROVAL_APPROVED, "apply approval granted", status="approved", mode="manual")

    def reject_apply(self, work_id: str, *, approved_by: str | None = None, notes: str | None = None) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            self._require_stage(paths, {WorkStage.APPLY_APPROVAL_PENDING, WorkStage.APPLY_APPROVAL_APPROVED}, "reject_apply")
            approval = self._apply_gate.set_status(paths.work_id, "rejected", approved_by=approved_by, notes=notes, now=now)
            self._decisions.close_kind(paths.work_id, "apply_approval", now=now)
            self._transition(
                paths,
                WorkStage.REJECTED,
                action="apply_approval_rejected",
                now=now,
                blocked=True,
                blocking_reason="apply_approval_rejected",
                approved_by=approval["approved_by"],
                notes=approval["notes"],
            )
            return self._ok(paths, WorkStage.REJECTED, "apply approval rejected", status="rejected", mode="manual")

        return self._run(work_id, operation, name="reject_apply")

    def reset_apply_approval(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(
                paths,
                {WorkStage.BUNDLED, WorkStage.APPLY_APPROVAL_PENDING, WorkStage.APPLY_APPROVAL_APPROVED, WorkStage.REJECTED},
                "reset_apply_approval",
            )
            archived = self._apply_gate.reset(paths.work_id, now=now)
            self._decisions.close_kind(paths.work_id, "apply_approval", now=now)
            self._transition(paths, WorkStage.BUNDLED, action="apply_approval_reset", now=now, archived=archived)
            return self._ok(paths, WorkStage.BUNDLED, "apply approval reset", archived=archived)

        return self._run(work_id, operation, name="reset_apply_approval")

    # ------------------------------------------------------------------
    # apply and CI

    def apply(self, work_id: str, provider: VcsProvider) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.APPLY_APPROVAL_APPROVED}, "apply")
            approval = self._apply_gate.require_fresh(paths.work_id)
            if approval["status"] != "approved":
                raise PreconditionFailure(f"apply approval is {approval['status']}, not approved")
            bundle = read_current_bundle(paths)
            mismatches = verify_bundle_pins(self._context, bundle)
            if mismatches:
                raise HashMismatch("bundle inputs changed since approval; rebuild and re-approve", errors=mismatches)

            self._transition(paths, WorkStage.APPLYING, action="apply_started", now=now, bundle_hash=bundle["bundle_hash"])
            existing = read_json_object(paths.pr, required=False) or {}
            created = {pr["repo_id"]: pr for pr in existing.get("pull_requests") or [] if isinstance(pr, dict) and pr.get("repo_id")}
            failures: list[str] = []
            for repo in bundle["repos"]:
                repo_id = repo["repo_id"]
                if repo_id in created:
                    continue
                plan = read_json_object(self._context.work_root / repo["patch_plan_json_path"]) or {}
                base_branch = str((plan.get("target_branch") or {}).get("name") or "")
                head_branch = f"ai/{paths.work_id}/{repo_id}"
                response = provider.create_pull_request(
                    work_id=paths.work_id,
                    repo_id=repo_id,
                    base_branch=base_branch,
                    head_branch=head_branch,
                    patch_plan=plan,
                )
                if not response.get("ok"):
                    failures.append(f"{repo_id}: {response.get('message') or 'pull request creation failed'}")
                    continue
                created[repo_id] = {
                    "repo_id": repo_id,
                    "pr_number": response.get("pr_number"),
                    "url": response.get("url"),
                    "head_sha": response.get("head_sha"),
                    "head_branch": response.get("head_branch") or head_branch,
                    "base_branch": base_branch,
                    "created_at": now_iso(now),
                }

            write_json_atomic(
                paths.pr,
                {
                    "version": 1,
                    "work_id": paths.work_id,
                    "bundle_hash": bundle["bundle_hash"],
                    "pull_requests": [created[r] for r in sorted(created)],
                },
            )
            if failures:
                self._transition(
                    paths,
                    WorkStage.APPLY_APPROVAL_APPROVED,
                    action="apply_failed",
                    now=now,
                    blocked=True,
                    blocking_reason="apply_failed",
                    errors=failures,
                )
                return OperationResult(
                    ok=False,
                    work_id=paths.work_id,
                    stage=WorkStage.APPLY_APPROVAL_APPROVED.value,
                    message="apply failed",
                    errors=tuple(failures),
                    error_kind="precondition_failure",
                )

            artifacts = self._artifacts(paths, paths.pr)
            self._transition(paths, WorkStage.APPLIED, action="applied", now=now, artifacts=artifacts, pull_requests=len(created))
            self._transition(paths, WorkStage.CI_PENDING, action="ci_pending", now=now)
            return self._ok(paths, WorkStage.CI_PENDING, "pull requests opened", pull_requests=[created[r] for r in sorted(created)])

        return self._run(work_id, operation, name="apply")

    def poll_ci(self, work_id: str, provider: VcsProvider) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            stage = self._require_stage(paths, CI_POLLABLE_STAGES, "poll_ci")
            results: list[dict[str, Any]] = []
            for pr in read_pull_requests(paths):
                response = provider.list_checks(repo_id=pr["repo_id"], pr_number=pr["pr_number"])
                if not response.get("ok"):
                    self._ledger.append("ci_poll_failed", work_id=paths.work_id, now=now, repo_id=pr["repo_id"], error=response.get("message"))
                    raise PreconditionFailure(f"CI status query failed for {pr['repo_id']}: {response.get('message') or 'unknown error'}")
                results.append(
                    {
                        "repo_id": pr["repo_id"],
                        "pr_number": pr["pr_number"],
                        "head_sha": response.get("head_sha") or pr.get("head_sha"),
                        "checks": response.get("checks") or [],
                    }
                )

            store = CiStatusStore(paths, history_limit=self._context.settings.ci_status_history_limit)
            written = store.write(build_snapshot(paths.work_id, results, now=now))
            overall = written.status["overall"]
            attempts = load_attempts(paths)
            unchanged = attempts.record_poll(written.snapshot_hash, fixing=stage is WorkStage.CI_FIXING)
            save_attempts(paths, attempts, now=now)
            self._ledger.append(
                "ci_polled",
                work_id=paths.work_id,
                now=now,
                overall=overall,
                snapshot_hash=written.snapshot_hash,
                wrote_new_snapshot=written.wrote_new_snapshot,
            )
            artifacts = self._artifacts(paths, paths.ci_status)
            data = {"overall": overall, "snapshot_hash": written.snapshot_hash}

            if overall == "success":
                if stage is WorkStage.MERGE_APPROVAL_PENDING:
                    return self._ok(paths, stage, "CI still green", **data)
                self._transition(paths, WorkStage.CI_GREEN, action="ci_green", now=now, artifacts=artifacts)
                return self._ok(paths, WorkStage.CI_GREEN, "CI is green", **data)

            if stage in (WorkStage.CI_GREEN, WorkStage.MERGE_APPROVAL_PENDING):
                self._handle_ci_drift(paths, now, overall=overall)
                return self._ok(paths, WorkStage.CI_FAILED, "CI drifted from green", **data)

            if stage is WorkStage.CI_FIXING and unchanged:
                cap = self._context.settings.max_unchanged_polls_in_fixing
                if attempts.unchanged_polls_in_fixing >= cap:
                    return self._escalate_ci(paths, now, reason="ci_fix_stalled", detail=f"unchanged_polls_in_fixing={attempts.unchanged_polls_in_fixing}")
                return self._ok(paths, stage, "CI unchanged while fixing", unchanged_polls=attempts.unchanged_polls_in_fixing, **data)

            next_stage = WorkStage.CI_FAILED if overall == "failed" else WorkStage.CI_PENDING
            self._transition(paths, next_stage, action="ci_failed" if overall == "failed" else "ci_pending", now=now, artifacts=artifacts)
            return self._ok(paths, next_stage, f"CI {overall}", **data)

        return self._run(work_id, operation, name="poll_ci")

    def record_ci_fix_attempt(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.CI_FAILED}, "record_ci_fix_attempt")
            attempts = load_attempts(paths)
            cap = self._context.settings.max_ci_fix_attempts
            if attempts.fix_attempts >= cap:
                return self._escalate_ci(paths, now, reason="ci_fix_attempts_exhausted", detail=f"fix_attempts={attempts.fix_attempts}")
            status = CiStatusStore(paths).read()
            attempts.record_fix_attempt(snapshot_hash(status) if status else None, now=now)
            save_attempts(paths, attempts, now=now)
            self._transition(
                paths,
                WorkStage.CI_FIXING,
                action="ci_fix_attempt_recorded",
                now=now,
                artifacts=self._artifacts(paths, paths.ci_attempts),
                attempt=attempts.fix_attempts,
            )
            return self._ok(paths, WorkStage.CI_FIXING, f"fix attempt {attempts.fix_attempts}/{cap}", fix_attempts=attempts.fix_attempts)

        return self._run(work_id, operation, name="record_ci_fix_attempt")

    def _escalate_ci(self, paths: WorkPaths, now: datetime, *, reason: str, detail: str) -> OperationResult:
        self._decisions.enqueue(paths.work_id, "ci", reason=reason, details=[detail], now=now)
        self._transition(paths, WorkStage.ESCALATED, action="ci_escalated", now=now, blocked=True, blocking_reason=reason)
        return OperationResult(
            ok=False,
            work_id=paths.work_id,
            stage=WorkStage.ESCALATED.value,
            message=f"CI remediation escalated: {reason}",
            errors=(detail,),
            error_kind="precondition_failure",
        )

    def _handle_ci_drift(self, paths: WorkPaths, now: datetime, *, overall: str | None = None) -> None:
        current = self._merge_gate.current(paths.work_id)
        if current is not None and "ci_drift" not in (current.get("reason_codes") or []):
            self._merge_gate.reject(
                paths.work_id,
                approved_by="system",
                notes="CI drifted away from green",
                reason_code="ci_drift",
                now=now,
            )
            self._ledger.append("merge_approval_invalidated", work_id=paths.work_id, now=now, reason="ci_drift")
        self._decisions.close_kind(paths.work_id, "merge_approval", now=now)
        self._transition(paths, WorkStage.CI_FAILED, action="ci_drift_detected", now=now, blocked=False, overall=overall)

    # ------------------------------------------------------------------
    # merge approval and merge

    def request_merge_approval(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            stage = self._require_stage(paths, {WorkStage.CI_GREEN}, "request_merge_approval")
            try:
                decision = self._merge_gate.request(paths.work_id, stage, now=now)
            except CiNotGreen:
                self._handle_ci_drift(paths, now)
                raise
            self._decisions.enqueue(paths.work_id, "merge_approval", reason="merge_approval_pending", now=now)
            self._transition(
                paths,
                WorkStage.MERGE_APPROVAL_PENDING,
                action="merge_approval_requested",
                now=now,
                blocked=True,
                blocking_reason="merge_approval_pending",
                artifacts=self._artifacts(paths, paths.merge_approval, paths.merge_approval.with_suffix(".md")),
                bundle_hash=decision.approval["bundle_hash"],
            )
            return self._ok(
                paths,
                WorkStage.MERGE_APPROVAL_PENDING,
                "merge approval requires a human decision",
                blocked=True,
                dual_signoff_required=decision.approval["dual_signoff_required"],
            )

        return self._run(work_id, operation, name="request_merge_approval")

    def approve_merge(self, work_id: str, *, approved_by: str | None = None, notes: str | None = None) -> OperationResult:
        return self._run(
            work_id,
            lambda paths, now: self._approve_merge(paths, now, approved_by=approved_by, notes=notes),
            name="approve_merge",
        )

    def _approve_merge(self, paths: WorkPaths, now: datetime, *, approved_by: str | None, notes: str | None) -> OperationResult:
        self._migrate_legacy(paths, now)
        self._require_stage(paths, {WorkStage.MERGE_APPROVAL_PENDING}, "approve_merge")
        try:
            decision = self._merge_gate.approve(paths.work_id, approved_by=approved_by, notes=notes, now=now)
        except CiNotGreen:
            self._handle_ci_drift(paths, now)
            raise
        self._decisions.close_kind(paths.work_id, "merge_approval", now=now)
        self._transition(
            paths,
            WorkStage.MERGE_APPROVAL_APPROVED,
            action="merge_approval_approved",
            now=now,
            approved_by=decision.approval["approved_by"],
            notes=decision.approval["notes"],
        )
        emitted = self._merge_gate.emit_feedback(decision, now=now)
        return self._ok(paths, WorkStage.MERGE_APPROVAL_APPROVED, "merge approval granted", emitted=emitted)

    def reject_merge(self, work_id: str, *, approved_by: str | None = None, notes: str | None = None) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._migrate_legacy(paths, now)
            self._require_stage(paths, {WorkStage.MERGE_APPROVAL_PENDING, WorkStage.MERGE_APPROVAL_APPROVED}, "reject_merge")
            decision = self._merge_gate.reject(paths.work_id, approved_by=approved_by, notes=notes, now=now)
            self._transition(
                paths,
                WorkStage.MERGE_APPROVAL_PENDING,
                action="merge_approval_rejected",
                now=now,
                blocked=True,
                blocking_reason="merge_approval_rejected",
                approved_by=decision.approval["approved_by"],
                notes=decision.approval["notes"],
            )
            return self._ok(paths, WorkStage.MERGE_APPROVAL_PENDING, "merge approval rejected", status="rejected")

        return self._run(work_id, operation, name="reject_merge")

    def merge(self, work_id: str, provider: VcsProvider) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.MERGE_APPROVAL_APPROVED}, "merge")
            approval = self._merge_gate.current(paths.work_id)
            if approval is None or approval["status"] != "approved":
                raise PreconditionFailure("merge requires an approved MERGE_APPROVAL.json")
            bundle = read_current_bundle(paths)
            if approval["bundle_hash"] != bundle["bundle_hash"]:
                raise StaleApproval("MERGE_APPROVAL.json bundle_hash does not match current BUNDLE.json", path=str(paths.merge_approval))
            try:
                self._merge_gate.require_green(paths)
            except CiNotGreen:
                self._handle_ci_drift(paths, now)
                raise

            pr_doc = read_json_object(paths.pr) or {}
            prs = read_pull_requests(paths)
            failures: list[str] = []
            for pr in prs:
                if pr.get("merge_commit_sha"):
                    continue
                response = provider.merge_pull_request(repo_id=pr["repo_id"], pr_number=pr["pr_number"])
                if not response.get("ok"):
                    failures.append(f"{pr['repo_id']}: {response.get('message') or 'merge failed'}")
                    continue
                pr["merge_commit_sha"] = response.get("merge_commit_sha")
                pr["merged_at"] = now_iso(now)
            write_json_atomic(paths.pr, {**pr_doc, "pull_requests": prs})
            if failures:
                self._ledger.append("merge_failed", work_id=paths.work_id, now=now, errors=failures)
                raise PreconditionFailure("merge failed", errors=failures)

            self._transition(
                paths,
                WorkStage.MERGED,
                action="merged",
                now=now,
                merge_commits={pr["repo_id"]: pr["merge_commit_sha"] for pr in prs},
            )
            return self._ok(paths, WorkStage.MERGED, "merged", pull_requests=prs)

        return self._run(work_id, operation, name="merge")

    def close(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            self._require_stage(paths, {WorkStage.MERGED}, "close")
            self._transition(paths, WorkStage.DONE, action="done", now=now)
            return self._ok(paths, WorkStage.DONE, "done")

        return self._run(work_id, operation, name="close")

    # ------------------------------------------------------------------
    # QA signoff and waivers

    def set_qa_approval(
        self,
        work_id: str,
        status: Literal["approved", "rejected"],
        *,
        by: str,
        notes: str | None = None,
    ) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            if not paths.meta.exists():
                raise MissingArtifact(f"work item not found: missing {paths.rel(paths.meta)}", path=str(paths.meta))
            approval = set_qa_approval(paths, status, by=by, notes=notes, now=now)
            self._ledger.append("qa_approval_set", work_id=paths.work_id, now=now, status=approval["status"], by=approval["by"])
            return OperationResult(
                ok=True,
                work_id=paths.work_id,
                stage=self._stage_or_none(paths),
                message=f"QA {approval['status']}",
                data={"qa_approval": approval},
            )

        return self._run(work_id, operation, name="set_qa_approval")

    def ratify_waiver(self, decision_id: str, answer: Literal["confirm", "reject"], *, by: str) -> OperationResult:
        """Answer a waiver packet while holding the lock of the work item it belongs to."""
        try:
            work_id = str(read_waiver_packet(self._context, decision_id)["work_id"])
        except GovernanceError as exc:
            return OperationResult.failure(exc)

        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            packet = ratify_waiver(self._context, decision_id, answer, by=by, now=now)
            self._ledger.append(
                "invariant_waiver_ratified",
                work_id=paths.work_id,
                now=now,
                decision_id=decision_id,
                answer=answer,
                by=by,
            )
            return OperationResult(
                ok=True,
                work_id=paths.work_id,
                stage=self._stage_or_none(paths),
                message=f"waiver {packet['status']}",
                data={"decision": packet},
            )

        return self._run(work_id, operation, name="ratify_waiver")

    # ------------------------------------------------------------------
    # legacy artifacts and read helpers

    def migrate_legacy_gate_artifacts(self, work_id: str) -> OperationResult:
        def operation(paths: WorkPaths, now: datetime) -> OperationResult:
            migrated = self._migrate_legacy(paths, now)
            return OperationResult(
                ok=True,
                work_id=paths.work_id,
                stage=self._stage_or_none(paths),
                message=f"migrated {len(migrated)} legacy artifact(s)",
                data={"migrated": migrated},
            )

        return self._run(work_id, operation, name="migrate_legacy_gate_artifacts")

    def _migrate_legacy(self, paths: WorkPaths, now: datetime) -> list[str]:
        migrated: list[str] = []
        for legacy, current in LEGACY_GATE_ARTIFACTS:
            for suffix in (".json", ".md"):
                source = paths.root / f"{legacy}{suffix}"
                target = paths.root / f"{current}{suffix}"
                if source.exists() and not target.exists():
                    os.replace(source, target)
                    migrated.append(paths.rel(target))
                    self._ledger.append(
                        "legacy_gate_artifact_migrated",
                        work_id=paths.work_id,
                        now=now,
                        source=paths.rel(source),
                        target=paths.rel(target),
                    )
        return migrated

    def approval_status(self, work_id: str) -> OperationResult:
        """Every gate artifact with its status and staleness against the current bundle."""
        try:
            paths = self._context.work(work_id)
            bundle = read_json_object(paths.bundle, required=False)
            bundle_hash = bundle.get("bundle_hash") if bundle else None
            report: dict[str, Any] = {}
            for name in APPROVAL_ARTIFACTS:
                if name == "QA_APPROVAL":
                    qa, exists = read_qa_approval(paths)
                    report[name] = {"exists": exists, "status": qa["status"], "by": qa.get("by")}
                    continue
                doc = read_json_object(paths.root / f"{name}.json", required=False)
                if doc is None:
                    report[name] = {"exists": False}
                    continue
                recorded = doc.get("bundle_hash")
                report[name] = {
                    "exists": True,
                    "status": doc.get("status"),
                    "mode": doc.get("mode"),
                    "bundle_hash": recorded,
                    "stale": bool(bundle_hash and recorded and recorded != bundle_hash),
                }
        except GovernanceError as exc:
            return OperationResult.failure(exc, work_id=work_id)
        return OperationResult(
            ok=True,
            work_id=paths.work_id,
            stage=self._stage_or_none(paths),
            message="approval status",
            data={"bundle_hash": bundle_hash, "approvals": report},
        )

    def status(self, work_id: str) -> OperationResult:
        try:
            paths = self._context.work(work_id)
            snapshot = StatusStore(paths).require()
        except GovernanceError as exc:
            return OperationResult.failure(exc, work_id=work_id)
        return OperationResult(
            ok=True,
            work_id=paths.work_id,
            stage=snapshot.current_stage,
            message=snapshot.blocking_reason or snapshot.current_stage,
            data={"status": snapshot.model_dump(mode="json")},
        )

    def decisions(self, work_id: str | None = None) -> list[dict[str, Any]]:
        entries = self._decisions.entries()
        if work_id is None:
            return [e for e in entries if e.get("status") == "open"]
        return self._decisions.open_for(work_id)


def _pydantic_errors(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
