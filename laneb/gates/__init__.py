"""Approval gates and the rule pipeline they share."""

from laneb.gates.apply_approval import ApplyApprovalGate, ApplyApprovalOutcome, read_current_bundle
from laneb.gates.merge_approval import CiNotGreen, MergeApprovalGate, MergeDecision, repo_id_from_head_branch
from laneb.gates.plan_approval import PlanApprovalGate
from laneb.gates.qa_approval import read_qa_approval, set_qa_approval
from laneb.gates.qa_audit import (
    QaAudit,
    audit_obligations,
    classify_test_edit_path,
    derive_obligations,
    parse_waivers,
    reconcile_obligations,
)
from laneb.gates.rules import Approved, Evaluation, Finding, GateDecision, Pending, Rejected, evaluate
from laneb.gates.ssot_drift import read_hard_violations, run_ssot_drift_check

__all__ = [
    "ApplyApprovalGate",
    "ApplyApprovalOutcome",
    "Approved",
    "CiNotGreen",
    "Evaluation",
    "Finding",
    "GateDecision",
    "MergeApprovalGate",
    "MergeDecision",
    "Pending",
    "PlanApprovalGate",
    "QaAudit",
    "Rejected",
    "audit_obligations",
    "classify_test_edit_path",
    "derive_obligations",
    "evaluate",
    "parse_waivers",
    "read_current_bundle",
    "read_hard_violations",
    "read_qa_approval",
    "reconcile_obligations",
    "repo_id_from_head_branch",
    "run_ssot_drift_check",
    "set_qa_approval",
]
