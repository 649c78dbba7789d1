"""Governance error taxonomy and the structured operation result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ErrorKind = Literal[
    "missing_artifact",
    "invalid_format",
    "hash_mismatch",
    "policy_violation",
    "stale_approval",
    "precondition_failure",
]


class GovernanceError(RuntimeError):
    """Base for every failure that aborts a work-item transition."""

    kind: ErrorKind = "precondition_failure"

    def __init__(self, message: str, *, path: str | None = None, errors: tuple[str, ...] | list[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.errors = tuple(errors)


class MissingArtifact(GovernanceError):
    """Expected file is absent."""

    kind: ErrorKind = "missing_artifact"


class InvalidFormat(GovernanceError):
    """File is unparsable or violates its schema."""

    kind: ErrorKind = "invalid_format"


class HashMismatch(GovernanceError):
    """Pinned digest differs from the computed one, or provenance hashes disagree."""

    kind: ErrorKind = "hash_mismatch"


class PolicyViolation(GovernanceError):
    """Patch plan fails validation against the effective policy."""

    kind: ErrorKind = "policy_violation"


class StaleApproval(GovernanceError):
    """Stored gate decision references an older bundle hash."""

    kind: ErrorKind = "stale_approval"


class PreconditionFailure(GovernanceError):
    """Operation requested from the wrong stage or without its inputs."""

    kind: ErrorKind = "precondition_failure"


@dataclass(frozen=True)
class OperationResult:
    """Outcome returned by every orchestrator operation.

    `ok=False` results carry the error kind and message; callers surface
    `message` plus `errors` and never see an exception.
    """

    ok: bool
    work_id: str | None = None
    stage: str | None = None
    message: str = ""
    errors: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, exc: GovernanceError, *, work_id: str | None = None, stage: str | None = None) -> OperationResult:
        errors = exc.errors
        if exc.path and not errors:
            errors = (exc.path,)
        return cls(ok=False, work_id=work_id, stage=stage, message=exc.message, errors=errors, error_kind=exc.kind)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "message": self.message}
        if self.work_id is not None:
            out["work_id"] = self.work_id
        if self.stage is not None:
            out["stage"] = self.stage
        if self.errors:
            out["errors"] = list(self.errors)
        if self.error_kind is not None:
            out["error_kind"] = self.error_kind
        out.update(self.data)
        return out
