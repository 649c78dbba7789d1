"""Explicit engine context and the on-disk layout of a work item."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from laneb.config.loader import load_settings
from laneb.config.schema import EngineSettings
from laneb.core.errors import PreconditionFailure

_WORK_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_work_id(work_id: str) -> str:
    candidate = work_id.strip() if isinstance(work_id, str) else ""
    if not candidate or not _WORK_ID_RE.match(candidate) or ".." in candidate:
        raise PreconditionFailure(f"invalid work id: {work_id!r}")
    return candidate


@dataclass(frozen=True)
class WorkPaths:
    """Artifact paths for one work item."""

    work_id: str
    root: Path
    work_root: Path

    def rel(self, path: Path) -> str:
        """Path relative to the work root, with forward slashes (the form used in pins)."""
        return path.relative_to(self.work_root).as_posix()

    @property
    def meta(self) -> Path:
        return self.root / "META.json"

    @property
    def intake(self) -> Path:
        return self.root / "INTAKE.md"

    @property
    def routing(self) -> Path:
        return self.root / "ROUTING.json"

    @property
    def bundle(self) -> Path:
        return self.root / "BUNDLE.json"

    @property
    def plan_approval(self) -> Path:
        return self.root / "PLAN_APPROVAL.json"

    @property
    def apply_approval(self) -> Path:
        return self.root / "APPLY_APPROVAL.json"

    @property
    def merge_approval(self) -> Path:
        return self.root / "MERGE_APPROVAL.json"

    @property
    def pr(self) -> Path:
        return self.root / "PR.json"

    @property
    def ci_dir(self) -> Path:
        return self.root / "CI"

    @property
    def ci_status(self) -> Path:
        return self.ci_dir / "CI_Status.json"

    @property
    def ci_status_history(self) -> Path:
        return self.ci_dir / "CI_Status_History.json"

    @property
    def ci_attempts(self) -> Path:
        return self.ci_dir / "attempts.json"

    @property
    def qa_obligations(self) -> Path:
        return self.root / "QA" / "obligations.json"

    @property
    def qa_approval(self) -> Path:
        return self.root / "QA_APPROVAL.json"

    @property
    def ssot_bundle(self) -> Path:
        return self.root / "SSOT_BUNDLE.json"

    @property
    def ssot_drift(self) -> Path:
        return self.root / "SSOT_DRIFT.json"

    @property
    def escalation(self) -> Path:
        return self.root / "ESCALATION.md"

    @property
    def status(self) -> Path:
        return self.root / "status.json"

    @property
    def status_history(self) -> Path:
        return self.root / "status-history.json"

    @property
    def lock(self) -> Path:
        return self.root / ".lock"

    @property
    def proposals_dir(self) -> Path:
        return self.root / "proposals"

    @property
    def patch_plans_dir(self) -> Path:
        return self.root / "patch-plans"

    @property
    def qa_dir(self) -> Path:
        return self.root / "qa"

    def patch_plan(self, repo_id: str) -> Path:
        return self.patch_plans_dir / f"{repo_id}.json"

    def qa_plan(self, repo_id: str) -> Path:
        return self.qa_dir / f"qa-plan.{repo_id}.json"

    def team_ssot_bundle(self, team_id: str) -> Path:
        return self.root / "ssot" / f"SSOT_BUNDLE.team-{team_id}.json"


@dataclass(frozen=True)
class WorkContext:
    """Roots every operation runs against; there is no ambient root selection."""

    work_root: Path
    policy_root: Path
    settings: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def from_roots(cls, work_root: Path, policy_root: Path) -> WorkContext:
        """Build a context, reading tunables from `<policy_root>/laneb.yml`."""
        return cls(work_root=Path(work_root), policy_root=Path(policy_root), settings=load_settings(Path(policy_root)))

    @property
    def ledger_path(self) -> Path:
        return self.work_root / "ledger.jsonl"

    @property
    def decisions_path(self) -> Path:
        return self.work_root / "DECISIONS_NEEDED.json"

    @property
    def waiver_decisions_dir(self) -> Path:
        return self.work_root / "decisions"

    @property
    def knowledge_events_path(self) -> Path:
        return self.work_root / "_feedback" / "knowledge-events.jsonl"

    @property
    def merge_events_path(self) -> Path:
        return self.work_root / "_feedback" / "merge-events.jsonl"

    def work(self, work_id: str) -> WorkPaths:
        resolved = validate_work_id(work_id)
        return WorkPaths(work_id=resolved, root=self.work_root / "work" / resolved, work_root=self.work_root)
