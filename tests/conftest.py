"""Pytest configuration for laneb tests."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import structlog

from laneb.config.schema import EngineSettings, PolicyDocument, RepoDescriptor, RepoRegistry
from laneb.context import WorkContext, WorkPaths
from laneb.core.jsonio import sha256_hex
from laneb.orchestrator import WorkItemOrchestrator

GREEN = [{"name": "build", "status": "completed", "conclusion": "success"}]
RED = [{"name": "build", "status": "completed", "conclusion": "failure", "url": "https://ci.example/1"}]
RUNNING = [{"name": "build", "status": "in_progress", "conclusion": None}]

REPOS = {
    "svc-api": {"team_id": "core", "path": "services/api", "kind": "service"},
    "svc-worker": {"team_id": "core", "path": "services/worker", "kind": "service"},
    "web-app": {"team_id": "frontend", "path": "apps/web", "kind": "app"},
}


@pytest.fixture(autouse=True)
def _quiet_logging():
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
    )
    yield
    structlog.reset_defaults()


def pytest_collection_modifyitems(config, items):
    """Mark by directory and set per-marker timeouts: unit=2s, integration=10s."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "integration" in parts:
            item.add_marker(pytest.mark.integration)
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(2))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(10))


class StepClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@dataclass
class FakeProvider:
    """In-memory VCS provider; checks are set per repo by the test."""

    checks: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    fail_create: set[str] = field(default_factory=set)
    fail_checks: bool = False
    created: list[dict[str, Any]] = field(default_factory=list)
    merged: list[tuple[str, int]] = field(default_factory=list)
    next_number: int = 100

    def create_pull_request(self, *, work_id, repo_id, base_branch, head_branch, patch_plan):
        if repo_id in self.fail_create:
            return {"ok": False, "message": "remote rejected push"}
        self.next_number += 1
        self.created.append({"repo_id": repo_id, "base_branch": base_branch, "head_branch": head_branch})
        return {
            "ok": True,
            "pr_number": self.next_number,
            "url": f"https://vcs.example/{repo_id}/pull/{self.next_number}",
            "head_sha": sha256_hex(f"{work_id}:{repo_id}")[:40],
            "head_branch": head_branch,
        }

    def list_checks(self, *, repo_id, pr_number):
        if self.fail_checks:
            return {"ok": False, "message": "rate limited"}
        return {"ok": True, "checks": list(self.checks.get(repo_id, []))}

    def merge_pull_request(self, *, repo_id, pr_number):
        self.merged.append((repo_id, pr_number))
        return {"ok": True, "merge_commit_sha": sha256_hex(f"merge:{repo_id}")[:40]}

    def set_all(self, checks: list[dict[str, Any]]) -> None:
        for repo_id in REPOS:
            self.checks[repo_id] = checks


def write_json(path: Path, payload: Any) -> str:
    """Write `payload` as JSON and return the sha256 of the exact text written."""
    text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return sha256_hex(text)


def default_edits() -> list[dict[str, Any]]:
    return [
        {"path": "src/health.py", "op": "add", "rationale": "expose health endpoint", "patch": "+def health():\n+    return 'ok'\n"},
        {"path": "tests/test_health.py", "op": "add", "rationale": "cover health endpoint", "patch": "+def test_health(): ...\n"},
    ]


class Workspace:
    """A temporary work root with a repo registry and helpers to write work-item inputs."""

    def __init__(self, root: Path, *, policies: dict[str, Any] | None = None, **settings: Any) -> None:
        self.work_root = root / "work-root"
        self.policy_root = root / "policy"
        self.work_root.mkdir(parents=True)
        self.policy_root.mkdir(parents=True)
        self.registry = RepoRegistry(
            repos=[RepoDescriptor(repo_id=repo_id, **attrs) for repo_id, attrs in REPOS.items()]
        )
        self.policies = PolicyDocument.model_validate(policies or {})
        self.context = WorkContext(self.work_root, self.policy_root, EngineSettings(**settings))
        self.clock = StepClock()
        self.orchestrator = WorkItemOrchestrator(
            self.context, registry=self.registry, policies=self.policies, clock=self.clock
        )
        self.proposal_sha: dict[tuple[str, str], str] = {}
        self.plan_sha: dict[tuple[str, str], str] = {}

    def paths(self, work_id: str) -> WorkPaths:
        return self.context.work(work_id)

    def write_ssot(self, work_id: str, constraints: dict[str, Any] | None = None) -> None:
        paths = self.paths(work_id)
        write_json(paths.ssot_bundle, {"version": 1, "constraints": constraints or {}})
        for team_id in {attrs["team_id"] for attrs in REPOS.values()}:
            write_json(paths.team_ssot_bundle(team_id), {"version": 1, "team_id": team_id, "docs": ["ssot/api"]})

    def write_proposal(self, work_id: str, team_id: str, **overrides: Any) -> str:
        paths = self.paths(work_id)
        payload = {
            "status": "SUCCESS",
            "agent_id": f"agent-{team_id}",
            "team_id": team_id,
            "ssot_references": ["ssot/api#health"],
            "summary": "Add a health endpoint",
        }
        payload.update(overrides)
        sha = write_json(paths.proposals_dir / f"{team_id}__agent.json", payload)
        self.proposal_sha[(work_id, team_id)] = sha
        return sha

    def write_patch_plan(
        self,
        work_id: str,
        repo_id: str,
        *,
        risk: str = "low",
        edits: list[dict[str, Any]] | None = None,
        intent: str = "Add health endpoint",
        **overrides: Any,
    ) -> str:
        attrs = REPOS[repo_id]
        team_id = attrs["team_id"]
        proposal_sha = self.proposal_sha.get((work_id, team_id)) or self.write_proposal(work_id, team_id)
        payload = {
            "version": 1,
            "work_id": work_id,
            "repo_id": repo_id,
            "repo_path": attrs["path"],
            "team_id": team_id,
            "kind": "feature",
            "intent_summary": intent,
            "target_branch": {"name": "main", "source": "routing", "confidence": 1},
            "derived_from": {
                "proposal_id": f"P-{team_id}",
                "proposal_hash": proposal_sha,
                "proposal_agent_id": f"agent-{team_id}",
                "timestamp": "2026-03-01T08:00:00Z",
            },
            "scope": {"allowed_paths": ["src", "tests", "migrations", "ui"]},
            "edits": edits if edits is not None else default_edits(),
            "commands": {
                "cwd": ".",
                "package_manager": "pip",
                "install": None,
                "lint": None,
                "test": "pytest -q",
                "build": None,
            },
            "risk": {"level": risk, "notes": ""},
        }
        payload.update(overrides)
        sha = write_json(self.paths(work_id).patch_plan(repo_id), payload)
        self.plan_sha[(work_id, repo_id)] = sha
        return sha

    def write_qa_plan(self, work_id: str, repo_id: str, *, plan_sha: str | None = None) -> str:
        team_id = REPOS[repo_id]["team_id"]
        payload = {
            "version": 1,
            "work_id": work_id,
            "repo_id": repo_id,
            "team_id": team_id,
            "derived_from": {
                "patch_plan_path": f"patch-plans/{repo_id}.json",
                "patch_plan_sha256": plan_sha or self.plan_sha[(work_id, repo_id)],
                "proposal_sha256": self.proposal_sha[(work_id, team_id)],
            },
            "tests": [
                {"test_id": "T1", "title": "health returns ok", "type": "unit", "priority": "P1", "ssot_refs": ["ssot/api#health"]}
            ],
            "gaps": [],
        }
        return write_json(self.paths(work_id).qa_plan(repo_id), payload)

    def write_routing(self, work_id: str, repos: list[str]) -> None:
        write_json(
            self.paths(work_id).routing,
            {"version": 1, "work_id": work_id, "selected_repos": repos, "target_branch": "main", "routing_confidence": 1.0},
        )

    def write_inputs(self, work_id: str, repos: list[str], *, risk: str = "low", edits: list[dict[str, Any]] | None = None, qa: bool = True) -> None:
        """Every planning input a routed work item needs before bundling."""
        self.write_ssot(work_id)
        for repo_id in repos:
            self.write_patch_plan(work_id, repo_id, risk=risk, edits=edits)
            if qa:
                self.write_qa_plan(work_id, repo_id)

    def start(self, work_id: str, repos: list[str], **kwargs: Any) -> None:
        """Intake, route and sweep a work item so it is ready for planning."""
        orch = self.orchestrator
        assert orch.intake("Add a health endpoint to the API", work_id=work_id).ok
        assert orch.route(work_id, {"selected_repos": repos, "target_branch": "main", "routing_confidence": 0.95}).ok
        assert orch.sweep(work_id).ok
        self.write_inputs(work_id, repos, **kwargs)

    def bundled(self, work_id: str, repos: list[str], **kwargs: Any) -> None:
        self.start(work_id, repos, **kwargs)
        orch = self.orchestrator
        assert orch.record_patch_plans(work_id).ok
        assert orch.record_qa_plans(work_id).ok
        result = orch.bundle(work_id)
        assert result.ok, result.errors

    def ci_green(self, work_id: str, repos: list[str], provider: FakeProvider, **kwargs: Any) -> None:
        self.bundled(work_id, repos, **kwargs)
        orch = self.orchestrator
        approval = orch.request_apply_approval(work_id)
        if approval.stage == "APPLY_APPROVAL_PENDING":
            assert orch.approve_apply(work_id, approved_by="owner").ok
        assert orch.apply(work_id, provider).ok
        provider.set_all(GREEN)
        result = orch.poll_ci(work_id, provider)
        assert result.stage == "CI_GREEN", result


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
