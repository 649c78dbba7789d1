"""Work-item stages and the transitions the orchestrator allows between them."""

from __future__ import annotations

from enum import Enum


class WorkStage(str, Enum):
    INTAKE_RECEIVED = "INTAKE_RECEIVED"
    ROUTED = "ROUTED"
    BLOCKED = "BLOCKED"
    SWEEP_READY = "SWEEP_READY"
    PATCH_PLANNED = "PATCH_PLANNED"
    QA_PLANNED = "QA_PLANNED"
    BUNDLED = "BUNDLED"
    APPLY_APPROVAL_PENDING = "APPLY_APPROVAL_PENDING"
    APPLY_APPROVAL_APPROVED = "APPLY_APPROVAL_APPROVED"
    APPLYING = "APPLYING"
    APPLIED = "APPLIED"
    CI_PENDING = "CI_PENDING"
    CI_FAILED = "CI_FAILED"
    CI_FIXING = "CI_FIXING"
    CI_GREEN = "CI_GREEN"
    MERGE_APPROVAL_PENDING = "MERGE_APPROVAL_PENDING"
    MERGE_APPROVAL_APPROVED = "MERGE_APPROVAL_APPROVED"
    MERGED = "MERGED"
    DONE = "DONE"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"


# Stages from which a bundle may be (re)built. Rebuilding after QA or after an
# apply-approval request is allowed; the gate then reports the stale decision.
BUNDLEABLE_STAGES = frozenset(
    {
        WorkStage.PATCH_PLANNED,
        WorkStage.QA_PLANNED,
        WorkStage.BUNDLED,
        WorkStage.APPLY_APPROVAL_PENDING,
        WorkStage.REJECTED,
    }
)

APPLY_APPROVAL_REQUESTABLE = frozenset(
    {
        WorkStage.BUNDLED,
        WorkStage.APPLY_APPROVAL_PENDING,
        WorkStage.REJECTED,
    }
)

CI_POLLABLE_STAGES = frozenset(
    {
        WorkStage.APPLIED,
        WorkStage.CI_PENDING,
        WorkStage.CI_FAILED,
        WorkStage.CI_FIXING,
        WorkStage.CI_GREEN,
        WorkStage.MERGE_APPROVAL_PENDING,
    }
)

TERMINAL_STAGES = frozenset({WorkStage.DONE})

SATISFIED_DEPENDENCY_STAGES = frozenset({WorkStage.MERGED, WorkStage.DONE})


def parse_stage(value: object) -> WorkStage | None:
    if not isinstance(value, str):
        return None
    try:
        return WorkStage(value.strip().upper())
    except ValueError:
        return None
