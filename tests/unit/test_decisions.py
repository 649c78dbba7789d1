"""Unit tests for the decisions queue and waiver packets."""

from datetime import UTC, datetime

import pytest

from laneb.core.errors import InvalidFormat, MissingArtifact, PreconditionFailure
from laneb.events.decisions import (
    DecisionsQueue,
    ratify_waiver,
    read_waiver_packet,
    waiver_decision_id,
    write_waiver_packet,
)

T0 = datetime(2026, 3, 2, 8, 0, 0, tzinfo=UTC)


def test_one_open_entry_per_work_item_and_kind(workspace):
    queue = DecisionsQueue(workspace.context)

    first = queue.enqueue("W-1", "routing", reason="routing_needs_confirmation", now=T0)
    second = queue.enqueue("W-1", "routing", reason="still unsure", details=["confidence=0.4"], now=T0)
    queue.enqueue("W-2", "routing", reason="other", now=T0)

    assert first["decision_id"] == second["decision_id"]
    open_entries = queue.open_for("W-1")
    assert len(open_entries) == 1
    assert open_entries[0]["reason"] == "still unsure"
    assert open_entries[0]["choices"] == {"A": "confirm and continue", "B": "escalate"}


def test_resolve_records_choice(workspace):
    queue = DecisionsQueue(workspace.context)
    queue.enqueue("W-1", "ci", reason="ci_fix_stalled", now=T0)

    entry = queue.resolve("W-1", "B", by="lead", now=T0)

    assert entry["status"] == "resolved"
    assert entry["choice"] == "B"
    assert entry["resolved_by"] == "lead"
    assert queue.open_for("W-1") == []


def test_resolve_rejects_bad_choice_and_empty_queue(workspace):
    queue = DecisionsQueue(workspace.context)
    with pytest.raises(PreconditionFailure):
        queue.resolve("W-1", "C", by="lead")  # type: ignore[arg-type]
    with pytest.raises(PreconditionFailure):
        queue.resolve("W-1", "A", by="lead")


def test_close_kind_supersedes_open_entries(workspace):
    queue = DecisionsQueue(workspace.context)
    queue.enqueue("W-1", "apply_approval", reason="pending", now=T0)
    assert queue.close_kind("W-1", "apply_approval", now=T0) == 1
    assert queue.close_kind("W-1", "apply_approval", now=T0) == 0
    assert queue.entries()[0]["status"] == "superseded"


def test_waiver_packet_is_written_once(workspace):
    kwargs = dict(
        work_id="W-1",
        repo_id="svc-api",
        waived=["unit"],
        merge_commit_sha="abc123",
        merge_approved_by="owner",
        qa_approval={"status": "approved", "by": "qa", "notes": "waive: unit"},
        risk_level="normal",
        now=T0,
    )
    decision_id, wrote = write_waiver_packet(workspace.context, **kwargs)
    again_id, wrote_again = write_waiver_packet(workspace.context, **kwargs)

    assert wrote and not wrote_again
    assert decision_id == again_id == waiver_decision_id("W-1", "repo:svc-api", ["unit"], "abc123")
    packet_md = workspace.context.waiver_decisions_dir / f"DECISION-{decision_id}.md"
    assert "waived_obligations:unit" in packet_md.read_text(encoding="utf-8")


def test_ratify_waiver(workspace):
    decision_id, _ = write_waiver_packet(
        workspace.context,
        work_id="W-1",
        repo_id=None,
        waived=["e2e"],
        merge_commit_sha="def456",
        merge_approved_by="owner",
        qa_approval={"status": "approved", "by": "qa"},
        risk_level="high",
        now=T0,
    )

    packet = ratify_waiver(workspace.context, decision_id, "confirm", by="architect", now=T0)

    assert packet["status"] == "confirmed"
    assert packet["scope"] == "system"
    assert packet["resolution"] == {"answer": "confirm", "by": "architect", "at": "2026-03-02T08:00:00Z"}
    with pytest.raises(PreconditionFailure):
        ratify_waiver(workspace.context, decision_id, "reject", by="architect")
    with pytest.raises(MissingArtifact):
        ratify_waiver(workspace.context, "DEC_invariant_waiver_missing", "confirm", by="architect")


def test_read_waiver_packet_validates_the_decision_id(workspace):
    with pytest.raises(InvalidFormat):
        read_waiver_packet(workspace.context, "../work/W-1/META")
    with pytest.raises(MissingArtifact):
        read_waiver_packet(workspace.context, "DEC_invariant_waiver_0123456789abcdef")
