"""Human decisions: the blocked-item queue and invariant waiver packets."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable, Literal

from structlog import get_logger

from laneb.context import WorkContext
from laneb.core.errors import InvalidFormat, MissingArtifact, PreconditionFailure
from laneb.core.jsonio import now_iso, read_json_if_exists, read_json_object, sha256_hex, write_json_atomic, write_text_atomic

logger = get_logger(__name__)

DecisionChoice = Literal["A", "B"]

CHOICES: dict[str, str] = {
    "A": "confirm and continue",
    "B": "escalate",
}

_DECISION_ID_RE = re.compile(r"^DEC_[A-Za-z0-9_]+$")


class DecisionsQueue:
    """DECISIONS_NEEDED.json: one open entry per (work item, kind)."""

    def __init__(self, context: WorkContext) -> None:
        self._path = context.decisions_path

    def entries(self) -> list[dict[str, Any]]:
        payload = read_json_if_exists(self._path)
        if payload is None:
            return []
        items = payload.get("decisions") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise InvalidFormat(f"expected a decisions array in {self._path}", path=str(self._path))
        return [item for item in items if isinstance(item, dict)]

    def open_for(self, work_id: str) -> list[dict[str, Any]]:
        return [e for e in self.entries() if e.get("work_id") == work_id and e.get("status") == "open"]

    def enqueue(
        self,
        work_id: str,
        kind: str,
        *,
        reason: str,
        details: Iterable[str] = (),
        now: datetime | None = None,
    ) -> dict[str, Any]:
        entries = self.entries()
        for entry in entries:
            if entry.get("work_id") == work_id and entry.get("kind") == kind and entry.get("status") == "open":
                entry["reason"] = reason
                entry["details"] = list(details)
                self._write(entries)
                return entry

        timestamp = now_iso(now)
        seed = "\n".join((work_id, kind, timestamp))
        entry = {
            "decision_id": f"DEC_{kind}_{sha256_hex(seed)[:12]}",
            "work_id": work_id,
            "kind": kind,
            "reason": reason,
            "details": list(details),
            "choices": dict(CHOICES),
            "status": "open",
            "created_at": timestamp,
            "resolved_at": None,
            "resolved_by": None,
            "choice": None,
        }
        entries.append(entry)
        self._write(entries)
        logger.info("decision_enqueued", work_id=work_id, kind=kind, decision_id=entry["decision_id"])
        return entry

    def resolve(
        self,
        work_id: str,
        choice: DecisionChoice,
        *,
        by: str,
        kind: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Resolve the oldest open decision for the work item (optionally of one kind).

        Raises:
            PreconditionFailure: invalid choice or nothing to resolve.
        """
        if choice not in CHOICES:
            raise PreconditionFailure(f"invalid decision choice {choice!r} (expected A|B)")
        entries = self.entries()
        for entry in entries:
            if entry.get("work_id") != work_id or entry.get("status") != "open":
                continue
            if kind is not None and entry.get("kind") != kind:
                continue
            entry["status"] = "resolved"
            entry["choice"] = choice
            entry["resolved_by"] = by
            entry["resolved_at"] = now_iso(now)
            self._write(entries)
            logger.info("decision_resolved", work_id=work_id, kind=entry.get("kind"), choice=choice)
            return entry
        raise PreconditionFailure(f"no open decision for work item {work_id}")

    def close_kind(self, work_id: str, kind: str, *, now: datetime | None = None) -> int:
        """Mark open decisions of `kind` as superseded; returns how many closed."""
        entries = self.entries()
        closed = 0
        for entry in entries:
            if entry.get("work_id") == work_id and entry.get("kind") == kind and entry.get("status") == "open":
                entry["status"] = "superseded"
                entry["resolved_at"] = now_iso(now)
                closed += 1
        if closed:
            self._write(entries)
        return closed

    def _write(self, entries: list[dict[str, Any]]) -> None:
        write_json_atomic(self._path, {"version": 1, "decisions": entries})


def waiver_decision_id(work_id: str, scope: str, waived: list[str], merge_commit_sha: str) -> str:
    seed = f"{work_id}\n{scope}\n{','.join(waived)}\n{merge_commit_sha.strip()}"
    return f"DEC_invariant_waiver_{sha256_hex(seed)[:16]}"


def _render_packet_markdown(packet: dict[str, Any]) -> str:
    context = packet["context"]
    lines = [
        f"# Decision {packet['decision_id']}",
        "",
        f"- type: `{packet['type']}`",
        f"- scope: `{packet['scope']}`",
        f"- status: `{packet['status']}`",
        f"- created_at: `{packet['created_at']}`",
        "",
        "## Context",
        "",
        context["summary"],
        "",
        context["why_automation_failed"],
        "",
        "## What is known",
        "",
    ]
    lines.extend(f"- {fact}" for fact in context["what_is_known"])
    lines.extend(["", "## Questions", ""])
    for question in packet["questions"]:
        lines.append(f"- `{question['id']}`: {question['question']} ({question['constraints']})")
    lines.extend(["", "## If unanswered", "", packet["assumptions_if_unanswered"], ""])
    if packet.get("resolution"):
        resolution = packet["resolution"]
        lines.extend(["## Resolution", "", f"- answer: `{resolution['answer']}`", f"- by: `{resolution['by']}`", f"- at: `{resolution['at']}`", ""])
    return "\n".join(lines)


def write_waiver_packet(
    context: WorkContext,
    *,
    work_id: str,
    repo_id: str | None,
    waived: list[str],
    merge_commit_sha: str,
    merge_approved_by: str,
    qa_approval: dict[str, Any],
    risk_level: str,
    now: datetime | None = None,
) -> tuple[str, bool]:
    """Write an INVARIANT_WAIVER decision packet; returns `(decision_id, wrote)`.

    An existing packet with the same id is left untouched.
    """
    scope = f"repo:{repo_id}" if repo_id else "system"
    decision_id = waiver_decision_id(work_id, scope, waived, merge_commit_sha)
    json_path = context.waiver_decisions_dir / f"DECISION-{decision_id}.json"
    if json_path.exists():
        return decision_id, False

    notes = str(qa_approval.get("notes") or "").strip()
    packet = {
        "version": 1,
        "type": "INVARIANT_WAIVER",
        "decision_id": decision_id,
        "work_id": work_id,
        "scope": scope,
        "trigger": "state_machine",
        "blocking_state": "MERGE_APPROVAL_APPROVED",
        "context": {
            "summary": f"QA obligations were explicitly waived for work {work_id}.",
            "why_automation_failed": "Merge approved with an explicit QA waiver; a human must confirm the waiver.",
            "what_is_known": [
                f"work_id:{work_id}",
                f"waived_obligations:{','.join(waived)}",
                f"qa_approved_by:{qa_approval.get('by') or 'unknown'}",
                f"merge_approved_by:{merge_approved_by or 'unknown'}",
                f"risk_level:{risk_level}",
                f"qa_notes:{notes}" if notes else "qa_notes:(none)",
            ],
        },
        "questions": [
            {
                "id": f"Q_invariant_waiver_{decision_id.rsplit('_', 1)[-1]}",
                "question": f"Should the INVARIANT_WAIVER decision for work {work_id} be accepted?",
                "expected_answer_type": "choice",
                "constraints": "Choose one: confirm|reject",
                "blocks": ["MERGE_APPROVAL_APPROVED"],
            }
        ],
        "assumptions_if_unanswered": "Waiver remains under review and is tracked as unresolved policy debt.",
        "created_at": now_iso(now),
        "status": "open",
        "resolution": None,
    }
    write_json_atomic(json_path, packet)
    write_text_atomic(json_path.with_suffix(".md"), _render_packet_markdown(packet))
    logger.info("waiver_packet_written", work_id=work_id, decision_id=decision_id, waived=waived)
    return decision_id, True


def read_waiver_packet(context: WorkContext, decision_id: str) -> dict[str, Any]:
    """Raises MissingArtifact or InvalidFormat."""
    if not _DECISION_ID_RE.match(str(decision_id or "")):
        raise InvalidFormat(f"invalid decision id: {decision_id!r}")
    json_path = context.waiver_decisions_dir / f"DECISION-{decision_id}.json"
    packet = read_json_object(json_path, required=False)
    if packet is None:
        raise MissingArtifact(f"missing artifact: {json_path}", path=str(json_path))
    if not str(packet.get("work_id") or "").strip():
        raise InvalidFormat(f"waiver packet has no work_id: {json_path}", path=str(json_path))
    return packet


def ratify_waiver(
    context: WorkContext,
    decision_id: str,
    answer: Literal["confirm", "reject"],
    *,
    by: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record the human answer on a waiver packet.

    Raises:
        MissingArtifact: no such packet.
        PreconditionFailure: invalid answer, missing approver, or already answered.
    """
    if answer not in ("confirm", "reject"):
        raise PreconditionFailure("waiver answer must be confirm|reject")
    who = str(by or "").strip()
    if not who:
        raise PreconditionFailure("waiver ratification requires a named approver")
    json_path = context.waiver_decisions_dir / f"DECISION-{decision_id}.json"
    packet = read_waiver_packet(context, decision_id)
    if packet.get("status") != "open":
        raise PreconditionFailure(f"decision {decision_id} is already {packet.get('status')}")
    packet["status"] = "confirmed" if answer == "confirm" else "rejected"
    packet["resolution"] = {"answer": answer, "by": who, "at": now_iso(now)}
    write_json_atomic(json_path, packet)
    write_text_atomic(json_path.with_suffix(".md"), _render_packet_markdown(packet))
    logger.info("waiver_ratified", decision_id=decision_id, answer=answer, by=who)
    return packet
