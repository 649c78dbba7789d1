"""Configuration and static registry models."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class EngineSettings(BaseModel):
    """Engine tunables read from `<policy_root>/laneb.yml`."""

    model_config = ConfigDict(extra="allow")

    max_ci_fix_attempts: int = Field(default=5, ge=1)
    max_unchanged_polls_in_fixing: int = Field(default=3, ge=1)
    routing_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    require_qa: bool = True
    ci_status_history_limit: int = Field(default=20, ge=1)
    status_history_limit: int = Field(default=50, ge=1)
    lock_wait_seconds: float = Field(default=5.0, gt=0)
    lock_retry_seconds: float = Field(default=0.01, gt=0)
    lock_stale_seconds: int = Field(default=300, ge=1)
    require_plan_approval: bool = False
    default_approver: str = "human"


class PolicySelector(BaseModel):
    model_config = ConfigDict(extra="allow")

    match: dict[str, Any] = Field(default_factory=dict)
    apply: list[str] = Field(default_factory=list)

    @field_validator("apply", mode="before")
    @classmethod
    def _coerce_apply(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list):
            raise ValueError("apply must be a list of block names")
        return [str(item).strip() for item in value if str(item).strip()]


class PolicyDocument(BaseModel):
    """Named policy blocks plus the selectors that apply them."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    merge_strategy: Literal["deep_merge"] = "deep_merge"
    selectors: list[PolicySelector] = Field(default_factory=list)
    named: dict[str, Any] = Field(default_factory=dict)


class RepoDescriptor(BaseModel):
    """One repository entry from the repo registry.

    Extra attributes are kept: policy selectors may match on any of them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    repo_id: str
    team_id: str = ""
    path: str = ""
    kind: str = ""
    active: bool = True
    policy_overrides: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("policy_overrides", "PolicyOverrides"),
    )

    @field_validator("repo_id")
    @classmethod
    def _repo_id_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("repo_id must be a non-empty string")
        return stripped

    def attributes(self) -> dict[str, Any]:
        """Descriptor attributes visible to selector matching (defaults count as absent)."""
        return self.model_dump(exclude={"policy_overrides"}, exclude_unset=True)


class RepoRegistry(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: int = 1
    repos: list[RepoDescriptor] = Field(default_factory=list)

    def get(self, repo_id: str) -> RepoDescriptor | None:
        for repo in self.repos:
            if repo.repo_id == repo_id:
                return repo
        return None
