import json

import pytest

from laneb.config.loader import load_policies, load_repo_registry, load_settings
from laneb.context import WorkContext
from laneb.core.errors import InvalidFormat, PreconditionFailure


def test_settings_default_when_missing(tmp_path):
    settings = load_settings(tmp_path)
    assert settings.max_ci_fix_attempts == 5
    assert settings.require_qa is True
    assert settings.default_approver == "human"


def test_settings_from_yaml_with_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("LANEB_APPROVER", "release-manager")
    (tmp_path / "laneb.yml").write_text(
        """
max_ci_fix_attempts: 2
routing_confidence_threshold: 0.8
default_approver: "${LANEB_APPROVER}"
""",
        encoding="utf-8",
    )
    settings = load_settings(tmp_path)
    assert settings.max_ci_fix_attempts == 2
    assert settings.routing_confidence_threshold == 0.8
    assert settings.default_approver == "release-manager"


def test_context_reads_settings(tmp_path):
    (tmp_path / "laneb.yml").write_text("require_qa: false\n", encoding="utf-8")
    context = WorkContext.from_roots(tmp_path / "root", tmp_path)
    assert context.settings.require_qa is False
    assert context.ledger_path == tmp_path / "root" / "ledger.jsonl"
    assert context.work("W-1").root == tmp_path / "root" / "work" / "W-1"


@pytest.mark.parametrize("work_id", ["", "../escape", "a/b", ".hidden"])
def test_work_ids_are_validated(tmp_path, work_id):
    context = WorkContext(tmp_path, tmp_path)
    with pytest.raises(PreconditionFailure):
        context.work(work_id)


def test_registry_and_policies_documents(tmp_path):
    (tmp_path / "REPOS.json").write_text(
        json.dumps({"version": 1, "repos": [{"repo_id": "svc-api", "team_id": "core", "PolicyOverrides": {"x": 1}}]}),
        encoding="utf-8",
    )
    (tmp_path / "POLICIES.json").write_text(
        json.dumps({"selectors": [{"match": {"team_id": "core"}, "apply": "base"}], "named": {"base": {}}}),
        encoding="utf-8",
    )

    registry = load_repo_registry(tmp_path)
    policies = load_policies(tmp_path)

    assert registry.get("svc-api").policy_overrides == {"x": 1}
    assert registry.get("missing") is None
    assert policies.selectors[0].apply == ["base"]


def test_broken_document_is_invalid_format(tmp_path):
    (tmp_path / "REPOS.json").write_text(json.dumps({"repos": [{"repo_id": "  "}]}), encoding="utf-8")
    with pytest.raises(InvalidFormat) as exc:
        load_repo_registry(tmp_path)
    assert exc.value.errors
