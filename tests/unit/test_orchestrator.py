"""Unit tests for the work-item state machine."""

import json
import re

from conftest import GREEN, RED, Workspace, write_json

from laneb.core.lock import WorkItemLock
from laneb.core.stages import WorkStage
from laneb.core.status_store import StatusStore
from laneb.events.decisions import write_waiver_packet


def _actions(ws, work_id):
    return [entry["action"] for entry in ws.orchestrator.ledger.entries_for(work_id)]


def test_intake_writes_meta_and_rejects_duplicates(workspace):
    orch = workspace.orchestrator

    result = orch.intake("Add a health endpoint", work_id="W-1", depends_on=["W-0"], labels=["api"])

    assert result.ok
    assert result.stage == "INTAKE_RECEIVED"
    meta = json.loads(workspace.paths("W-1").meta.read_text())
    assert meta["depends_on"] == ["W-0"]
    assert meta["raw_intake_id"].startswith("I-")
    assert "Add a health endpoint" in workspace.paths("W-1").intake.read_text()

    again = orch.intake("Add a health endpoint", work_id="W-1")
    assert not again.ok
    assert again.error_kind == "precondition_failure"
    assert _actions(workspace, "W-1") == ["intake_received"]


def test_intake_generates_work_id(workspace):
    result = workspace.orchestrator.intake("Rotate the build cache")
    assert result.ok
    assert re.fullmatch(r"W-\d{8}-\d{6}-[0-9a-f]{8}", result.work_id)


def test_empty_intake_is_refused(workspace):
    result = workspace.orchestrator.intake("   ")
    assert not result.ok
    assert result.message == "intake text is empty"


def test_low_confidence_routing_blocks_until_confirmed(workspace):
    orch = workspace.orchestrator
    orch.intake("Add a health endpoint", work_id="W-1")

    routed = orch.route("W-1", {"selected_repos": ["svc-api"], "routing_confidence": 0.3})

    assert routed.stage == "BLOCKED"
    snapshot = StatusStore(workspace.paths("W-1")).require()
    assert snapshot.blocking_reason == "routing_needs_confirmation"
    assert [d["kind"] for d in orch.decisions("W-1")] == ["routing"]

    confirmed = orch.resolve_decision("W-1", "A", by="lead")

    assert confirmed.ok
    assert confirmed.stage == "ROUTED"
    routing = json.loads(workspace.paths("W-1").routing.read_text())
    assert routing["confirmed"] is True
    assert routing["confirmed_by"] == "lead"
    meta = json.loads(workspace.paths("W-1").meta.read_text())
    assert meta["repo_id"] == "svc-api"
    assert meta["team_id"] == "core"
    assert orch.decisions("W-1") == []


def test_routing_to_unknown_repo_is_invalid(workspace):
    orch = workspace.orchestrator
    orch.intake("x", work_id="W-1")

    result = orch.route("W-1", {"selected_repos": ["ghost"]})

    assert not result.ok
    assert result.error_kind == "invalid_format"
    assert result.stage == "INTAKE_RECEIVED"


def test_operations_check_the_current_stage(workspace):
    orch = workspace.orchestrator
    orch.intake("x", work_id="W-1")

    result = orch.record_patch_plans("W-1")

    assert not result.ok
    assert result.error_kind == "precondition_failure"
    assert "current_stage=INTAKE_RECEIVED" in result.message
    assert orch.bundle("W-404").error_kind == "missing_artifact"
    assert orch.status("W-404").error_kind == "missing_artifact"


def test_sweep_waits_for_dependencies(workspace):
    orch = workspace.orchestrator
    orch.intake("dependency", work_id="W-0")
    orch.intake("dependent", work_id="W-1", depends_on=["W-0"])
    orch.route("W-1", {"selected_repos": ["svc-api"]})

    blocked = orch.sweep("W-1")

    assert blocked.stage == "BLOCKED"
    assert blocked.data["pending"] == ["W-0=INTAKE_RECEIVED"]
    assert [d["kind"] for d in orch.decisions("W-1")] == ["dependencies"]

    StatusStore(workspace.paths("W-0")).update(WorkStage.MERGED)
    ready = orch.sweep("W-1")

    assert ready.stage == "SWEEP_READY"
    assert orch.decisions("W-1") == []


def test_escalation_writes_escalation_file(workspace):
    orch = workspace.orchestrator
    orch.intake("x", work_id="W-1")
    orch.route("W-1", {"selected_repos": ["svc-api"], "needs_confirmation": True})

    result = orch.resolve_decision("W-1", "B", by="lead")

    assert result.stage == "ESCALATED"
    assert "kind: `routing`" in workspace.paths("W-1").escalation.read_text()
    assert StatusStore(workspace.paths("W-1")).require().blocked is True


def test_invalid_patch_plan_keeps_stage(workspace):
    workspace.start("W-1", ["svc-api"])
    workspace.write_patch_plan(
        "W-1", "svc-api", edits=[{"path": "docs/readme.md", "op": "edit", "rationale": "r", "patch": "+x"}]
    )

    result = workspace.orchestrator.record_patch_plans("W-1")

    assert not result.ok
    assert result.error_kind == "policy_violation"
    assert result.stage == "SWEEP_READY"
    assert any("out of scope" in e for e in result.errors)


def test_bundle_records_obligations_and_hash(workspace):
    workspace.bundled("W-1", ["svc-api"])
    paths = workspace.paths("W-1")

    obligations = json.loads(paths.qa_obligations.read_text())
    bundle = json.loads(paths.bundle.read_text())
    assert obligations["must_add_unit"] is True
    assert StatusStore(paths).current_stage() is WorkStage.BUNDLED
    assert _actions(workspace, "W-1")[-1] == "bundle_built"
    assert workspace.orchestrator.ledger.entries_for("W-1")[-1]["bundle_hash"] == bundle["bundle_hash"]


def test_manual_apply_approval_flow(workspace):
    workspace.bundled("W-1", ["svc-api"], risk="high")
    orch = workspace.orchestrator

    pending = orch.request_apply_approval("W-1")

    assert pending.stage == "APPLY_APPROVAL_PENDING"
    assert pending.data["reason_codes"] == ["risk_high"]
    assert StatusStore(workspace.paths("W-1")).require().blocking_reason == "apply_approval_pending: risk_high"
    assert [d["kind"] for d in orch.decisions("W-1")] == ["apply_approval"]

    approved = orch.resolve_decision("W-1", "A", by="owner")

    assert approved.stage == "APPLY_APPROVAL_APPROVED"
    approval = json.loads(workspace.paths("W-1").apply_approval.read_text())
    assert approval["mode"] == "manual"
    assert approval["approved_by"] == "owner"


def test_auto_apply_approval_is_logged(workspace):
    workspace.bundled("W-1", ["svc-api"])
    result = workspace.orchestrator.request_apply_approval("W-1")
    assert result.stage == "APPLY_APPROVAL_APPROVED"
    assert result.data["mode"] == "auto"
    assert "apply_approval_auto_approved" in _actions(workspace, "W-1")


def test_rebundle_marks_apply_approval_stale(workspace):
    workspace.bundled("W-1", ["svc-api"], risk="high")
    orch = workspace.orchestrator
    orch.request_apply_approval("W-1")

    workspace.write_patch_plan("W-1", "svc-api", risk="high", intent="Add health endpoint with details")
    workspace.write_qa_plan("W-1", "svc-api")
    rebuilt = orch.bundle("W-1")

    assert rebuilt.data["apply_approval_stale"] is True
    status = orch.approval_status("W-1")
    assert status.data["approvals"]["APPLY_APPROVAL"]["stale"] is True
    assert status.data["approvals"]["MERGE_APPROVAL"] == {"exists": False}

    stale = orch.request_apply_approval("W-1")
    assert stale.error_kind == "stale_approval"

    reset = orch.reset_apply_approval("W-1")
    assert reset.stage == "BUNDLED"
    assert orch.request_apply_approval("W-1").stage == "APPLY_APPROVAL_PENDING"


def test_apply_failure_is_retryable(workspace, provider):
    workspace.bundled("W-1", ["svc-api", "web-app"])
    orch = workspace.orchestrator
    orch.request_apply_approval("W-1")
    provider.fail_create.add("web-app")

    failed = orch.apply("W-1", provider)

    assert not failed.ok
    assert failed.stage == "APPLY_APPROVAL_APPROVED"
    assert failed.errors == ("web-app: remote rejected push",)
    assert StatusStore(workspace.paths("W-1")).require().blocking_reason == "apply_failed"

    provider.fail_create.clear()
    applied = orch.apply("W-1", provider)

    assert applied.stage == "CI_PENDING"
    assert [pr["repo_id"] for pr in provider.created] == ["svc-api", "web-app"]
    assert provider.created[0]["head_branch"] == "ai/W-1/svc-api"
    assert provider.created[0]["base_branch"] == "main"


def test_apply_refuses_edited_inputs(workspace, provider):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator
    orch.request_apply_approval("W-1")
    workspace.write_patch_plan("W-1", "svc-api", risk="normal")

    result = orch.apply("W-1", provider)

    assert result.error_kind == "hash_mismatch"
    assert provider.created == []


def test_ci_fix_loop_escalates_when_snapshot_stalls(workspace, provider):
    workspace.ci_green("W-1", ["svc-api"], provider)
    orch = workspace.orchestrator
    # Drift back to red from CI_GREEN, then try to fix.
    provider.set_all(RED)
    assert orch.poll_ci("W-1", provider).stage == "CI_FAILED"
    assert orch.record_ci_fix_attempt("W-1").stage == "CI_FIXING"

    first = orch.poll_ci("W-1", provider)
    second = orch.poll_ci("W-1", provider)
    third = orch.poll_ci("W-1", provider)

    assert first.stage == second.stage == "CI_FIXING"
    assert second.data["unchanged_polls"] == 2
    assert not third.ok
    assert third.stage == "ESCALATED"
    assert [d["kind"] for d in orch.decisions("W-1")] == ["ci"]

    resumed = orch.resolve_decision("W-1", "A", by="lead")
    assert resumed.stage == "CI_FAILED"
    attempts = json.loads(workspace.paths("W-1").ci_attempts.read_text())
    assert attempts["fix_attempts"] == 0


def test_ci_fix_attempts_are_capped(tmp_path, provider):
    ws = Workspace(tmp_path, max_ci_fix_attempts=1)
    ws.bundled("W-1", ["svc-api"])
    orch = ws.orchestrator
    orch.request_apply_approval("W-1")
    orch.apply("W-1", provider)
    provider.set_all(RED)
    assert orch.poll_ci("W-1", provider).stage == "CI_FAILED"
    assert orch.record_ci_fix_attempt("W-1").ok

    provider.set_all([{"name": "lint", "status": "completed", "conclusion": "failure"}])
    assert orch.poll_ci("W-1", provider).stage == "CI_FAILED"
    exhausted = orch.record_ci_fix_attempt("W-1")

    assert not exhausted.ok
    assert exhausted.stage == "ESCALATED"
    assert StatusStore(ws.paths("W-1")).require().blocking_reason == "ci_fix_attempts_exhausted"


def test_ci_query_failure_keeps_stage(workspace, provider):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator
    orch.request_apply_approval("W-1")
    orch.apply("W-1", provider)
    provider.fail_checks = True

    result = orch.poll_ci("W-1", provider)

    assert not result.ok
    assert result.stage == "CI_PENDING"
    assert "ci_poll_failed" in _actions(workspace, "W-1")


def test_ci_drift_invalidates_pending_merge_approval(workspace, provider):
    workspace.ci_green("W-1", ["svc-api"], provider)
    orch = workspace.orchestrator
    assert orch.request_merge_approval("W-1").stage == "MERGE_APPROVAL_PENDING"

    provider.set_all(RED)
    drifted = orch.poll_ci("W-1", provider)

    assert drifted.stage == "CI_FAILED"
    approval = json.loads(workspace.paths("W-1").merge_approval.read_text())
    assert approval["status"] == "rejected"
    assert approval["reason_codes"] == ["ci_drift"]
    assert "merge_approval_invalidated" in _actions(workspace, "W-1")
    assert orch.approve_merge("W-1", approved_by="owner").error_kind == "precondition_failure"


def test_merge_approval_requires_ci_green_stage(workspace, provider):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator
    orch.request_apply_approval("W-1")
    orch.apply("W-1", provider)

    result = orch.request_merge_approval("W-1")

    assert result.error_kind == "precondition_failure"
    assert not workspace.paths("W-1").merge_approval.exists()


def test_high_risk_merge_needs_distinct_qa_signoff(workspace, provider):
    edits = [
        {"path": "src/health.py", "op": "edit", "rationale": "endpoint", "patch": "+x"},
        {"path": "tests/test_health.py", "op": "add", "rationale": "unit", "patch": "+x"},
        {"path": "tests/integration/test_health_api.py", "op": "add", "rationale": "api", "patch": "+x"},
        {"path": "tests/e2e/test_health_flow.py", "op": "add", "rationale": "flow", "patch": "+x"},
    ]
    workspace.ci_green("W-1", ["svc-api"], provider, risk="high", edits=edits)
    orch = workspace.orchestrator
    requested = orch.request_merge_approval("W-1")
    assert requested.data["dual_signoff_required"] is True

    missing_qa = orch.approve_merge("W-1", approved_by="owner")
    assert missing_qa.error_kind == "policy_violation"
    assert "missing QA signoff" in missing_qa.message

    orch.set_qa_approval("W-1", "approved", by="Owner")
    same_person = orch.approve_merge("W-1", approved_by="owner")
    assert same_person.error_kind == "policy_violation"

    orch.set_qa_approval("W-1", "approved", by="qa-lead")
    approved = orch.approve_merge("W-1", approved_by="owner")

    assert approved.stage == "MERGE_APPROVAL_APPROVED"
    approval = json.loads(workspace.paths("W-1").merge_approval.read_text())
    assert approval["owner_signoff"]["by"] == "owner"
    assert approval["qa_signoff"]["by"] == "qa-lead"


def test_missing_tests_block_merge_until_waived(workspace, provider):
    edits = [{"path": "src/health.py", "op": "edit", "rationale": "endpoint", "patch": "+x"}]
    workspace.ci_green("W-1", ["svc-api"], provider, edits=edits)
    orch = workspace.orchestrator

    blocked = orch.request_merge_approval("W-1")
    assert blocked.error_kind == "policy_violation"
    assert blocked.errors == ("unit",)
    assert blocked.stage == "CI_GREEN"

    orch.set_qa_approval("W-1", "approved", by="qa-lead", notes="waive: unit (covered by contract suite)")
    assert orch.request_merge_approval("W-1").ok
    approved = orch.approve_merge("W-1", approved_by="owner")

    waiver_ids = [e for e in approved.data["emitted"] if e.startswith("DEC_invariant_waiver_")]
    assert len(waiver_ids) == 1
    assert "invariant_waiver_decision_created" in _actions(workspace, "W-1")

    ratified = orch.ratify_waiver(waiver_ids[0], "confirm", by="architect")
    assert ratified.ok
    assert ratified.data["decision"]["status"] == "confirmed"


def test_rejected_merge_approval_stays_pending(workspace, provider):
    workspace.ci_green("W-1", ["svc-api"], provider)
    orch = workspace.orchestrator
    orch.request_merge_approval("W-1")

    rejected = orch.reject_merge("W-1", approved_by="owner", notes="wait for release window")

    assert rejected.stage == "MERGE_APPROVAL_PENDING"
    assert StatusStore(workspace.paths("W-1")).require().blocking_reason == "merge_approval_rejected"
    assert orch.approve_merge("W-1", approved_by="owner").stage == "MERGE_APPROVAL_APPROVED"


def test_legacy_gate_artifacts_are_renamed(workspace):
    workspace.orchestrator.intake("x", work_id="W-1")
    paths = workspace.paths("W-1")
    write_json(paths.root / "GATE_A.json", {"version": 1})
    (paths.root / "GATE_A.md").write_text("# Gate A\n", encoding="utf-8")
    write_json(paths.root / "APPROVAL.json", {"version": 1})
    write_json(paths.plan_approval, {"version": 1, "kept": True})

    result = workspace.orchestrator.migrate_legacy_gate_artifacts("W-1")

    assert result.data["migrated"] == ["work/W-1/APPLY_APPROVAL.json", "work/W-1/APPLY_APPROVAL.md"]
    assert not (paths.root / "GATE_A.json").exists()
    assert (paths.root / "APPROVAL.json").exists()
    assert json.loads(paths.plan_approval.read_text())["kept"] is True
    assert _actions(workspace, "W-1").count("legacy_gate_artifact_migrated") == 2


def _covered_edits():
    return [
        {"path": "src/health.py", "op": "edit", "rationale": "endpoint", "patch": "+x"},
        {"path": "tests/test_health.py", "op": "add", "rationale": "unit", "patch": "+x"},
        {"path": "tests/integration/test_health_api.py", "op": "add", "rationale": "api", "patch": "+x"},
        {"path": "tests/e2e/test_health_flow.py", "op": "add", "rationale": "flow", "patch": "+x"},
    ]


def test_undecodable_patch_plan_fails_the_operation(workspace):
    workspace.start("W-1", ["svc-api"])
    workspace.paths("W-1").patch_plan("svc-api").write_bytes(b'{"version": 1, "x": "\xff\xfe"}')

    result = workspace.orchestrator.record_patch_plans("W-1")

    assert not result.ok
    assert result.error_kind == "policy_violation"
    assert result.stage == "SWEEP_READY"
    assert any("not valid UTF-8" in error for error in result.errors)


def test_rebundle_at_higher_risk_rederives_obligations(workspace, provider):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator
    paths = workspace.paths("W-1")
    assert json.loads(paths.qa_obligations.read_text())["risk_level"] == "low"

    workspace.write_patch_plan("W-1", "svc-api", risk="high", edits=_covered_edits())
    workspace.write_qa_plan("W-1", "svc-api")
    assert orch.bundle("W-1").ok

    obligations = json.loads(paths.qa_obligations.read_text())
    assert obligations["risk_level"] == "high"
    assert obligations["must_add_e2e"] is True
    assert orch.request_apply_approval("W-1").stage == "APPLY_APPROVAL_PENDING"
    assert orch.approve_apply("W-1", approved_by="owner").ok
    assert orch.apply("W-1", provider).ok
    provider.set_all(GREEN)
    assert orch.poll_ci("W-1", provider).stage == "CI_GREEN"

    requested = orch.request_merge_approval("W-1")
    assert requested.data["dual_signoff_required"] is True
    owner_only = orch.approve_merge("W-1", approved_by="owner")
    assert owner_only.error_kind == "policy_violation"
    assert "missing QA signoff" in owner_only.message


def test_merge_gate_does_not_trust_an_outdated_obligations_file(workspace, provider):
    workspace.ci_green("W-1", ["svc-api"], provider, risk="high", edits=_covered_edits())
    paths = workspace.paths("W-1")
    obligations = json.loads(paths.qa_obligations.read_text())
    obligations.update(risk_level="low", must_add_integration=False, must_add_e2e=False)
    write_json(paths.qa_obligations, obligations)
    orch = workspace.orchestrator

    requested = orch.request_merge_approval("W-1")

    assert requested.data["dual_signoff_required"] is True
    assert orch.approve_merge("W-1", approved_by="owner").error_kind == "policy_violation"


def test_ci_status_edited_to_failed_refuses_merge_signoff(workspace, provider):
    workspace.ci_green("W-1", ["svc-api"], provider)
    orch = workspace.orchestrator
    assert orch.request_merge_approval("W-1").stage == "MERGE_APPROVAL_PENDING"

    paths = workspace.paths("W-1")
    status = json.loads(paths.ci_status.read_text())
    status["overall"] = "failed"
    write_json(paths.ci_status, status)

    refused = orch.approve_merge("W-1", approved_by="owner")

    assert not refused.ok
    assert refused.error_kind == "precondition_failure"
    assert refused.stage == "CI_FAILED"
    approval = json.loads(paths.merge_approval.read_text())
    assert approval["status"] == "rejected"
    assert approval["reason_codes"] == ["ci_drift"]
    assert "merge_approval_invalidated" in _actions(workspace, "W-1")
    assert orch.approve_merge("W-1", approved_by="owner").error_kind == "precondition_failure"


def test_plan_approval_confirmed_from_decisions_queue(workspace):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator

    pending = orch.request_plan_approval("W-1")

    assert pending.stage == "BUNDLED"
    assert pending.data["status"] == "pending"
    assert pending.data["reason_codes"] == ["auto_approve_disabled"]
    assert StatusStore(workspace.paths("W-1")).require().blocking_reason == "plan_approval_pending: auto_approve_disabled"
    assert [d["kind"] for d in orch.decisions("W-1")] == ["plan_approval"]
    assert orch.request_apply_approval("W-1").error_kind == "precondition_failure"

    confirmed = orch.resolve_decision("W-1", "A", by="lead")

    assert confirmed.stage == "BUNDLED"
    assert confirmed.data["teams"] == ["core"]
    approval = json.loads(workspace.paths("W-1").plan_approval.read_text())
    assert approval["status"] == "approved"
    assert approval["approved_by"] == "lead"
    assert StatusStore(workspace.paths("W-1")).require().blocked is False
    assert orch.request_apply_approval("W-1").stage == "APPLY_APPROVAL_APPROVED"


def test_auto_approved_plan_is_logged(tmp_path):
    ws = Workspace(
        tmp_path,
        policies={
            "selectors": [{"match": {}, "apply": ["auto"]}],
            "named": {"auto": {"approval": {"auto_approve": {"enabled": True}}}},
        },
    )
    ws.bundled("W-1", ["svc-api"])

    result = ws.orchestrator.request_plan_approval("W-1")

    assert result.stage == "BUNDLED"
    assert result.data["mode"] == "auto"
    assert "plan_approval_auto_approved" in _actions(ws, "W-1")


def test_rejected_plan_blocks_apply_until_reset(workspace):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator

    rejected = orch.reject_plan("W-1", approved_by="lead", notes="split the change")

    assert rejected.stage == "REJECTED"
    assert StatusStore(workspace.paths("W-1")).require().blocking_reason == "plan_approval_rejected"
    refused = orch.request_apply_approval("W-1")
    assert refused.error_kind == "precondition_failure"
    assert "plan approval is rejected" in refused.message

    reset = orch.reset_plan_approval("W-1")

    assert reset.stage == "BUNDLED"
    assert reset.data["archived"].startswith("work/W-1/approvals/PLAN_APPROVAL.")
    assert not workspace.paths("W-1").plan_approval.exists()
    assert orch.request_apply_approval("W-1").stage == "APPLY_APPROVAL_APPROVED"


def test_required_plan_approval_gates_apply(tmp_path):
    ws = Workspace(tmp_path, require_plan_approval=True)
    ws.bundled("W-1", ["svc-api"])
    orch = ws.orchestrator

    refused = orch.request_apply_approval("W-1")
    assert refused.error_kind == "precondition_failure"
    assert "approved plan" in refused.message

    assert orch.approve_plan("W-1", approved_by="lead").ok
    assert orch.request_apply_approval("W-1").stage == "APPLY_APPROVAL_APPROVED"


def test_rebundle_marks_plan_approval_stale(workspace):
    workspace.bundled("W-1", ["svc-api"])
    orch = workspace.orchestrator
    assert orch.approve_plan("W-1", teams=["core"]).ok

    workspace.write_patch_plan("W-1", "svc-api", intent="Add health endpoint with details")
    workspace.write_qa_plan("W-1", "svc-api")
    rebuilt = orch.bundle("W-1")

    assert rebuilt.data["plan_approval_stale"] is True
    assert orch.approval_status("W-1").data["approvals"]["PLAN_APPROVAL"]["stale"] is True
    assert orch.request_apply_approval("W-1").error_kind == "stale_approval"


def test_waiver_ratification_holds_the_work_item_lock(tmp_path):
    ws = Workspace(tmp_path, lock_wait_seconds=0.05)
    assert ws.orchestrator.intake("Add a health endpoint", work_id="W-1").ok
    decision_id, _ = write_waiver_packet(
        ws.context,
        work_id="W-1",
        repo_id="svc-api",
        waived=["unit"],
        merge_commit_sha="abc123",
        merge_approved_by="owner",
        qa_approval={"status": "approved", "by": "qa-lead"},
        risk_level="normal",
    )

    with WorkItemLock(ws.paths("W-1").lock).hold("merge"):
        blocked = ws.orchestrator.ratify_waiver(decision_id, "confirm", by="architect")

    assert blocked.error_kind == "precondition_failure"
    assert "operation=merge" in blocked.message
    ratified = ws.orchestrator.ratify_waiver(decision_id, "confirm", by="architect")
    assert ratified.ok
    assert ratified.stage == "INTAKE_RECEIVED"
    assert "invariant_waiver_ratified" in _actions(ws, "W-1")
    assert ws.orchestrator.ratify_waiver("DEC_../../META", "confirm", by="architect").error_kind == "invalid_format"
