"""End-to-end work-item lifecycle against an in-memory VCS provider."""

import json

from conftest import GREEN, RED, RUNNING

from laneb.core.ledger import Ledger
from laneb.orchestrator import WorkItemOrchestrator


def _jsonl(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_multi_repo_item_runs_from_intake_to_done(workspace, provider):
    orch = workspace.orchestrator
    workspace.ci_green("W-1", ["svc-api", "web-app"], provider)

    assert orch.request_merge_approval("W-1").ok
    approved = orch.approve_merge("W-1", approved_by="owner")
    assert approved.data["emitted"] == ["knowledge:svc-api", "merge:svc-api", "knowledge:web-app", "merge:web-app"]

    merged = orch.merge("W-1", provider)
    assert merged.stage == "MERGED"
    assert sorted(repo for repo, _ in provider.merged) == ["svc-api", "web-app"]
    assert orch.close("W-1").stage == "DONE"

    paths = workspace.paths("W-1")
    pr_doc = json.loads(paths.pr.read_text())
    assert all(pr["merge_commit_sha"] for pr in pr_doc["pull_requests"])

    knowledge = _jsonl(workspace.context.knowledge_events_path)
    assert [event["scope"] for event in knowledge] == ["repo:svc-api", "repo:web-app"]
    assert all(event["artifacts"]["fingerprints"][0].startswith("bundle:") for event in knowledge)
    merge_events = _jsonl(workspace.context.merge_events_path)
    assert merge_events[0]["changed_paths"] == ["src/health.py", "tests/test_health.py"]
    assert merge_events[0]["qa_waiver"]["explicit"] is False

    actions = [entry["action"] for entry in Ledger(workspace.context.ledger_path).entries_for("W-1")]
    expected = [
        "intake_received",
        "routed",
        "sweep_ready",
        "patch_plans_recorded",
        "qa_obligations_recorded",
        "bundle_built",
        "apply_approval_auto_approved",
        "applied",
        "ci_green",
        "merge_approval_approved",
        "merged",
        "done",
    ]
    positions = [actions.index(action) for action in expected]
    assert positions == sorted(positions)

    history = [h["stage"] for h in orch.status("W-1").data["status"]["history"]]
    assert history[0] == "INTAKE_RECEIVED"
    assert history[-1] == "DONE"


def test_ci_recovers_after_fix_attempt(workspace, provider):
    orch = workspace.orchestrator
    workspace.bundled("W-1", ["svc-api"])
    orch.request_apply_approval("W-1")
    orch.apply("W-1", provider)

    provider.set_all(RUNNING)
    assert orch.poll_ci("W-1", provider).stage == "CI_PENDING"
    provider.set_all(RED)
    assert orch.poll_ci("W-1", provider).stage == "CI_FAILED"
    assert orch.record_ci_fix_attempt("W-1").data["fix_attempts"] == 1
    provider.set_all(GREEN)

    assert orch.poll_ci("W-1", provider).stage == "CI_GREEN"
    history = json.loads(workspace.paths("W-1").ci_status_history.read_text())
    assert len(history) == 2
    assert history[-1]["overall"] == "failed"


def test_state_survives_a_new_orchestrator(workspace, provider):
    workspace.bundled("W-1", ["svc-api"])
    workspace.orchestrator.request_apply_approval("W-1")
    workspace.orchestrator.apply("W-1", provider)

    restarted = WorkItemOrchestrator(
        workspace.context, registry=workspace.registry, policies=workspace.policies, clock=workspace.clock
    )
    provider.set_all(GREEN)

    assert restarted.status("W-1").stage == "CI_PENDING"
    assert restarted.poll_ci("W-1", provider).stage == "CI_GREEN"
    assert restarted.request_merge_approval("W-1").ok
    assert restarted.decisions("W-1")[0]["kind"] == "merge_approval"
