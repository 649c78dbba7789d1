"""status.json snapshots with an archived history of prior snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import ValidationError

from laneb.core.errors import InvalidFormat, MissingArtifact
from laneb.core.jsonio import now_iso, read_json_if_exists, read_json_object, write_json_atomic
from laneb.core.models import StageHistoryEntry, StatusSnapshot
from laneb.core.stages import WorkStage, parse_stage

if TYPE_CHECKING:
    from laneb.context import WorkPaths


class StatusStore:
    """Reads and writes the status snapshot of one work item."""

    def __init__(self, paths: WorkPaths, *, history_limit: int = 50) -> None:
        self._paths = paths
        self._history_limit = history_limit

    def read(self) -> StatusSnapshot | None:
        payload = read_json_object(self._paths.status, required=False)
        if payload is None:
            return None
        try:
            return StatusSnapshot.model_validate(payload)
        except ValidationError as exc:
            raise InvalidFormat(f"invalid status snapshot: {self._paths.status}", path=str(self._paths.status)) from exc

    def require(self) -> StatusSnapshot:
        snapshot = self.read()
        if snapshot is None:
            raise MissingArtifact(f"missing artifact: {self._paths.status}", path=str(self._paths.status))
        return snapshot

    def current_stage(self) -> WorkStage | None:
        snapshot = self.read()
        if snapshot is None:
            return None
        stage = parse_stage(snapshot.current_stage)
        if stage is None:
            raise InvalidFormat(f"unknown stage {snapshot.current_stage!r} in {self._paths.status}")
        return stage

    def update(
        self,
        stage: WorkStage,
        *,
        blocked: bool | None = None,
        blocking_reason: str | None = None,
        artifacts: Mapping[str, Any] | None = None,
        repos: Mapping[str, Any] | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> StatusSnapshot:
        """Write a new snapshot, archiving the previous one first.

        `artifacts` and `repos` merge into the previous values. The stage history
        only grows when the stage actually changes; the archive keeps the last
        `history_limit` snapshots.
        """
        timestamp = now_iso(now)
        previous = self.read()
        if previous is not None:
            self._archive(previous)

        is_blocked = stage is WorkStage.BLOCKED if blocked is None else blocked
        history = list(previous.history) if previous is not None else []
        if not history or history[-1].stage != stage.value:
            history.append(StageHistoryEntry(stage=stage.value, at=timestamp, note=note))

        merged_artifacts = dict(previous.artifacts) if previous is not None else {}
        merged_artifacts.update(artifacts or {})
        merged_repos = dict(previous.repos) if previous is not None else {}
        merged_repos.update(repos or {})

        snapshot = StatusSnapshot(
            work_id=self._paths.work_id,
            current_stage=stage.value,
            last_updated=timestamp,
            blocked=is_blocked,
            blocking_reason=blocking_reason if is_blocked else None,
            artifacts=merged_artifacts,
            repos=merged_repos,
            history=history,
        )
        write_json_atomic(self._paths.status, snapshot.model_dump(mode="json"))
        return snapshot

    def history(self) -> list[dict[str, Any]]:
        payload = read_json_if_exists(self._paths.status_history)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise InvalidFormat(f"expected a JSON array in {self._paths.status_history}")
        return payload

    def _archive(self, previous: StatusSnapshot) -> None:
        archived = self.history()
        archived.append(previous.model_dump(mode="json"))
        write_json_atomic(self._paths.status_history, archived[-self._history_limit :])
