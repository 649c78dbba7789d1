"""Unit tests for the apply-approval gate."""

import pytest

from conftest import Workspace

from laneb.bundle.builder import BundleBuilder, write_bundle
from laneb.core.errors import HashMismatch, MissingArtifact, StaleApproval
from laneb.gates.apply_approval import ApplyApprovalGate


def _bundle(ws, work_id, repos, **kwargs):
    ws.write_routing(work_id, repos)
    ws.write_inputs(work_id, repos, **kwargs)
    result = BundleBuilder(ws.context, registry=ws.registry, policies=ws.policies).build(work_id)
    assert result.ok, result.errors
    write_bundle(ws.context, result)
    return result


def _gate(ws):
    return ApplyApprovalGate(ws.context, registry=ws.registry, policies=ws.policies)


def test_low_risk_bundle_is_auto_approved(workspace):
    result = _bundle(workspace, "W-1", ["svc-api"])

    outcome = _gate(workspace).request("W-1")

    approval = outcome.approval
    assert approval["status"] == "approved"
    assert approval["mode"] == "auto"
    assert approval["approved_by"] == "auto"
    assert approval["bundle_hash"] == result.bundle_hash
    assert approval["scope"] == {"teams": ["core"], "repos": ["svc-api"]}
    assert workspace.paths("W-1").apply_approval.with_suffix(".md").exists()
    assert workspace.paths("W-1").ssot_drift.exists()


def test_high_risk_bundle_waits_for_manual_decision(workspace):
    _bundle(workspace, "W-2", ["svc-api"], risk="high")

    outcome = _gate(workspace).request("W-2")

    assert outcome.status == "pending"
    assert outcome.approval["mode"] == "manual"
    assert outcome.reason_codes == ("risk_high",)
    assert outcome.approval["risk"]["highest"] == "high"


def test_request_reuses_decision_for_same_bundle(workspace):
    _bundle(workspace, "W-3", ["svc-api"], risk="high")
    gate = _gate(workspace)
    gate.request("W-3")
    gate.set_status("W-3", "approved", approved_by="lead", notes="looks fine")

    outcome = gate.request("W-3")

    assert outcome.reused
    assert outcome.approval["status"] == "approved"
    assert outcome.approval["approved_by"] == "lead"


def test_rebuilt_bundle_makes_existing_decision_stale(workspace):
    _bundle(workspace, "W-4", ["svc-api"])
    gate = _gate(workspace)
    gate.request("W-4")

    workspace.write_patch_plan("W-4", "svc-api", intent="Add health endpoint v2")
    workspace.write_qa_plan("W-4", "svc-api")
    rebuilt = BundleBuilder(workspace.context, registry=workspace.registry, policies=workspace.policies).build("W-4")
    write_bundle(workspace.context, rebuilt)

    with pytest.raises(StaleApproval):
        gate.request("W-4")
    with pytest.raises(StaleApproval):
        gate.require_fresh("W-4")

    archived = gate.reset("W-4")
    assert archived.startswith("work/W-4/approvals/APPLY_APPROVAL.")
    assert gate.request("W-4").approval["bundle_hash"] == rebuilt.bundle_hash


def test_edited_input_after_bundling_is_a_hash_mismatch(workspace):
    _bundle(workspace, "W-5", ["svc-api"])
    workspace.write_patch_plan("W-5", "svc-api", risk="normal")

    with pytest.raises(HashMismatch):
        _gate(workspace).request("W-5")


def test_require_fresh_without_decision(workspace):
    _bundle(workspace, "W-6", ["svc-api"])
    with pytest.raises(MissingArtifact):
        _gate(workspace).require_fresh("W-6")


def test_ssot_hard_violation_withholds_auto_approval(workspace):
    _bundle(workspace, "W-7", ["svc-api"])
    workspace.write_ssot("W-7", constraints={"forbidden_repo_ids": ["svc-api"]})
    # The work SSOT is pinned, so rebuild before requesting.
    rebuilt = BundleBuilder(workspace.context, registry=workspace.registry, policies=workspace.policies).build("W-7")
    write_bundle(workspace.context, rebuilt)

    outcome = _gate(workspace).request("W-7")

    assert outcome.status == "pending"
    assert "ssot_hard_violation" in outcome.reason_codes


def test_auto_approve_policy_refusals(tmp_path):
    ws = Workspace(
        tmp_path,
        policies={
            "selectors": [{"match": {"team_id": "core"}, "apply": ["auto"]}],
            "named": {
                "auto": {
                    "approval": {
                        "auto_approve": {
                            "enabled": True,
                            "allowed_teams": ["core"],
                            "allowed_kinds": ["fix"],
                            "disallowed_risk_levels": ["normal"],
                        }
                    }
                }
            },
        },
    )
    edits = [
        {"path": "migrations/0002_add_table.py", "op": "add", "rationale": "new table", "patch": "+x"},
        {"path": "tests/test_table.py", "op": "add", "rationale": "cover table", "patch": "+x"},
    ]
    _bundle(ws, "W-8", ["svc-api"], risk="normal", edits=edits)

    outcome = _gate(ws).request("W-8")

    assert outcome.status == "pending"
    assert set(outcome.reason_codes) >= {"kind_not_allowed", "risk_level_disallowed", "migration_paths", "sensitive_keywords"}
    assert "team_not_allowed" not in outcome.reason_codes


def test_disabled_auto_approve_block(tmp_path):
    ws = Workspace(
        tmp_path,
        policies={
            "selectors": [{"match": {}, "apply": ["manual"]}],
            "named": {"manual": {"approval": {"auto_approve": {"enabled": False}}}},
        },
    )
    _bundle(ws, "W-9", ["svc-api"])

    outcome = _gate(ws).request("W-9")

    assert outcome.status == "pending"
    assert outcome.reason_codes == ("auto_approve_disabled",)


def test_manual_rejection_keeps_mode_manual(workspace):
    _bundle(workspace, "W-10", ["svc-api"], risk="high")
    gate = _gate(workspace)
    gate.request("W-10")

    approval = gate.set_status("W-10", "rejected", notes="not now")

    assert approval["status"] == "rejected"
    assert approval["mode"] == "manual"
    assert approval["approved_by"] == "human"
    assert approval["approved_at"] is None
