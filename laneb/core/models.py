"""Pydantic models for work-item state."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_strings(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("must be a list of strings")
    out: list[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if text and text not in out:
            out.append(text)
    return out


class WorkMeta(BaseModel):
    """Canonical META.json for a work item."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    work_id: str
    created_at: str
    raw_intake_id: Optional[str] = None
    batch_id: Optional[str] = None
    triaged_id: Optional[str] = None
    repo_id: Optional[str] = None
    team_id: Optional[str] = None
    target_branch: Optional[str] = None
    priority: int = 50
    depends_on: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    repo_scopes: list[str] = Field(default_factory=list)

    @field_validator("depends_on", "blocks", "labels", "repo_scopes", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> list[str]:
        return _clean_strings(value)


class Routing(BaseModel):
    """Team/repo/branch decision for one routing cycle."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    work_id: Optional[str] = None
    selected_teams: list[str] = Field(default_factory=list)
    selected_repos: list[str] = Field(min_length=1)
    target_branch: Optional[str] = None
    routing_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    needs_confirmation: bool = False
    confirmed: bool = False
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[str] = None
    reasoning: str = ""

    @field_validator("selected_teams", "selected_repos", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> list[str]:
        return _clean_strings(value)


class StageHistoryEntry(BaseModel):
    stage: str
    at: str
    note: Optional[str] = None


class StatusSnapshot(BaseModel):
    """status.json: the derived, rebuildable view of one work item."""

    model_config = ConfigDict(extra="allow")

    work_id: str
    current_stage: str
    last_updated: str
    blocked: bool = False
    blocking_reason: Optional[str] = None
    artifacts: dict[str, Any] = Field(default_factory=dict)
    repos: dict[str, Any] = Field(default_factory=dict)
    history: list[StageHistoryEntry] = Field(default_factory=list)
