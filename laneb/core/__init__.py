"""Work-item persistence primitives: errors, stages, locking, ledger, status."""

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
from laneb.core.ledger import Ledger, LedgerError
from laneb.core.lock import WorkItemLock, WorkItemLockError
from laneb.core.models import Routing, StatusSnapshot, WorkMeta
from laneb.core.stages import WorkStage, parse_stage
from laneb.core.status_store import StatusStore

__all__ = [
    "GovernanceError",
    "HashMismatch",
    "InvalidFormat",
    "Ledger",
    "LedgerError",
    "MissingArtifact",
    "OperationResult",
    "PolicyViolation",
    "PreconditionFailure",
    "Routing",
    "StaleApproval",
    "StatusSnapshot",
    "StatusStore",
    "WorkItemLock",
    "WorkItemLockError",
    "WorkMeta",
    "WorkStage",
    "parse_stage",
]
