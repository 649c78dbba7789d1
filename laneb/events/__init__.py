"""Outbound records: feedback logs, the decisions queue, and waiver packets."""

from laneb.events.decisions import (
    CHOICES,
    DecisionsQueue,
    ratify_waiver,
    read_waiver_packet,
    waiver_decision_id,
    write_waiver_packet,
)
from laneb.events.feedback import (
    AppendResult,
    FeedbackEventValidationError,
    FeedbackStore,
    FeedbackStoreError,
    KnowledgeEvent,
    append_knowledge_event,
    compute_idempotency_key,
    validate_knowledge_event,
)

__all__ = [
    "AppendResult",
    "CHOICES",
    "DecisionsQueue",
    "FeedbackEventValidationError",
    "FeedbackStore",
    "FeedbackStoreError",
    "KnowledgeEvent",
    "append_knowledge_event",
    "compute_idempotency_key",
    "ratify_waiver",
    "read_waiver_packet",
    "validate_knowledge_event",
    "waiver_decision_id",
    "write_waiver_packet",
]
