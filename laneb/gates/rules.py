"""Gate rule pipeline.

Each rule inspects the gate facts and yields findings. A `reject` finding is a
hard error; a `refuse` finding only withholds automatic approval.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Literal, Sequence, TypeVar, Union

F = TypeVar("F")

FindingSeverity = Literal["reject", "refuse"]


@dataclass(frozen=True)
class Finding:
    severity: FindingSeverity
    code: str
    detail: str = ""


@dataclass(frozen=True)
class Approved:
    outcome: Literal["approved"] = "approved"
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class Pending:
    reasons: tuple[str, ...]
    outcome: Literal["pending"] = "pending"


@dataclass(frozen=True)
class Rejected:
    reasons: tuple[str, ...]
    outcome: Literal["rejected"] = "rejected"


GateDecision = Union[Approved, Pending, Rejected]

Rule = Callable[[F], Iterable[Finding]]


def _unique_codes(findings: Iterable[Finding]) -> tuple[str, ...]:
    seen: list[str] = []
    for finding in findings:
        if finding.code not in seen:
            seen.append(finding.code)
    return tuple(seen)


@dataclass(frozen=True)
class Evaluation(Generic[F]):
    decision: GateDecision
    findings: tuple[Finding, ...]

    @property
    def details(self) -> tuple[str, ...]:
        return tuple(f"{f.code}: {f.detail}" if f.detail else f.code for f in self.findings)


def evaluate(facts: F, rules: Sequence[Rule[F]]) -> Evaluation[F]:
    findings = tuple(finding for rule in rules for finding in rule(facts))
    if any(f.severity == "reject" for f in findings):
        return Evaluation(decision=Rejected(reasons=_unique_codes(findings)), findings=findings)
    if findings:
        return Evaluation(decision=Pending(reasons=_unique_codes(findings)), findings=findings)
    return Evaluation(decision=Approved(), findings=findings)
