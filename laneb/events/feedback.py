"""Append-only feedback logs: knowledge change events and merge events."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping, TypedDict

from laneb.core.jsonio import parse_iso8601

KnowledgeEventType = Literal["merge", "ci_fix"]
_KNOWLEDGE_EVENT_TYPES: tuple[KnowledgeEventType, ...] = ("merge", "ci_fix")
_KNOWLEDGE_FIELDS = frozenset(
    {"type", "scope", "repo_id", "work_id", "pr_number", "commit", "artifacts", "summary", "timestamp"}
)


class EventArtifacts(TypedDict):
    paths: list[str]
    fingerprints: list[str]


class KnowledgeEvent(TypedDict):
    type: KnowledgeEventType
    scope: str
    repo_id: str
    work_id: str
    pr_number: int | None
    commit: str
    artifacts: EventArtifacts
    summary: str
    timestamp: str


class FeedbackEventValidationError(ValueError):
    """Raised when an event does not satisfy its contract."""

    def __init__(self, diagnostics: list[str]) -> None:
        self.diagnostics = diagnostics
        super().__init__("; ".join(diagnostics))


class FeedbackStoreError(RuntimeError):
    """Raised when a feedback log cannot preserve append-only guarantees."""


def _as_non_empty_str(record: Mapping[str, object], field_name: str, diagnostics: list[str]) -> str:
    value = record.get(field_name)
    if not isinstance(value, str) or not value.strip():
        diagnostics.append(f"{field_name} must be a non-empty string")
        return ""
    return value.strip()


def validate_knowledge_event(record: Mapping[str, object]) -> KnowledgeEvent:
    diagnostics: list[str] = []
    unknown = sorted(set(record) - _KNOWLEDGE_FIELDS)
    if unknown:
        diagnostics.append(f"unknown fields: {', '.join(unknown)}")

    event_type = record.get("type")
    if event_type not in _KNOWLEDGE_EVENT_TYPES:
        diagnostics.append("type must be merge|ci_fix")
    repo_id = _as_non_empty_str(record, "repo_id", diagnostics)
    scope = _as_non_empty_str(record, "scope", diagnostics)
    if repo_id and scope and scope != f"repo:{repo_id}":
        diagnostics.append("scope must be repo:<repo_id>")
    work_id = _as_non_empty_str(record, "work_id", diagnostics)
    commit = _as_non_empty_str(record, "commit", diagnostics)
    summary = _as_non_empty_str(record, "summary", diagnostics)
    timestamp = _as_non_empty_str(record, "timestamp", diagnostics)
    if timestamp:
        try:
            parse_iso8601(timestamp)
        except ValueError:
            diagnostics.append("timestamp must be an ISO8601 timestamp")

    pr_number = record.get("pr_number")
    if pr_number is not None and (isinstance(pr_number, bool) or not isinstance(pr_number, int) or pr_number <= 0):
        diagnostics.append("pr_number must be a positive integer or null")

    artifacts = record.get("artifacts")
    paths: list[str] = []
    fingerprints: list[str] = []
    if not isinstance(artifacts, Mapping):
        diagnostics.append("artifacts must be an object")
    else:
        for key, target in (("paths", paths), ("fingerprints", fingerprints)):
            values = artifacts.get(key)
            if not isinstance(values, list) or not all(isinstance(v, str) and v.strip() for v in values):
                diagnostics.append(f"artifacts.{key} must be string[]")
            else:
                target.extend(values)

    if diagnostics:
        raise FeedbackEventValidationError(diagnostics)
    return KnowledgeEvent(
        type=event_type,  # type: ignore[typeddict-item]
        scope=scope,
        repo_id=repo_id,
        work_id=work_id,
        pr_number=pr_number,  # type: ignore[typeddict-item]
        commit=commit,
        artifacts=EventArtifacts(paths=paths, fingerprints=fingerprints),
        summary=summary,
        timestamp=timestamp,
    )


def compute_idempotency_key(record: Mapping[str, Any]) -> str:
    """Deterministic key over the event contents, ignoring when it was emitted."""
    canonical = json.dumps(
        {k: v for k, v in record.items() if k not in ("timestamp", "idempotency_key")},
        ensure_ascii=True,
        separators=(",", ":"),
        sort_keys=True,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AppendResult:
    status: Literal["appended", "duplicate"]
    record: dict[str, Any]


class FeedbackStore:
    """File-backed append-only JSONL log with idempotent appends."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._records: list[dict[str, Any]] = []
        self._keys: set[str] = set()
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._log_path

    def replay(self) -> tuple[dict[str, Any], ...]:
        self._ensure_loaded()
        return tuple(self._records)

    def append(self, record: Mapping[str, Any]) -> AppendResult:
        self._ensure_loaded()
        stored = dict(record)
        stored["idempotency_key"] = compute_idempotency_key(stored)
        if stored["idempotency_key"] in self._keys:
            return AppendResult(status="duplicate", record=stored)

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(stored, ensure_ascii=True, separators=(",", ":"), sort_keys=True)
        with self._log_path.open("a", encoding="utf-8") as file_handle:
            file_handle.write(serialized)
            file_handle.write("\n")
            file_handle.flush()
            os.fsync(file_handle.fileno())

        self._records.append(stored)
        self._keys.add(stored["idempotency_key"])
        return AppendResult(status="appended", record=stored)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._records.clear()
        self._keys.clear()
        if self._log_path.exists():
            with self._log_path.open("r", encoding="utf-8") as file_handle:
                for line_number, raw_line in enumerate(file_handle, start=1):
                    stripped = raw_line.strip()
                    if not stripped:
                        continue
                    try:
                        record = json.loads(stripped)
                    except json.JSONDecodeError as exc:
                        raise FeedbackStoreError(f"corrupt feedback log {self._log_path} at line {line_number}: invalid JSON") from exc
                    if not isinstance(record, dict):
                        raise FeedbackStoreError(f"corrupt feedback log {self._log_path} at line {line_number}: expected object record")
                    key = record.get("idempotency_key") or compute_idempotency_key(record)
                    self._records.append(record)
                    self._keys.add(key)
        self._loaded = True


def append_knowledge_event(store: FeedbackStore, record: Mapping[str, object]) -> AppendResult:
    """Validate then append a knowledge change event.

    Raises:
        FeedbackEventValidationError: the event violates its contract.
    """
    event = validate_knowledge_event(record)
    return store.append(dict(event))
