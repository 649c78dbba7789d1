"""Unit tests for selector-based policy resolution."""

from laneb.config.schema import PolicyDocument, RepoDescriptor
from laneb.policy.resolve import deep_merge, resolve_policy, selector_matches

POLICIES = {
    "version": 1,
    "merge_strategy": "deep_merge",
    "selectors": [
        {"match": {"team_id": "core"}, "apply": ["baseline"]},
        {"match": {"team_id": "core", "kind": "service"}, "apply": ["strict"]},
        {"match": {"team_id": "frontend"}, "apply": "ui"},
    ],
    "named": {
        "baseline": {"scope": {"forbidden_paths": ["secrets"]}, "approval": {"auto_approve": {"enabled": True}}},
        "strict": {"approval": {"auto_approve": {"enabled": False}}, "allowed_kinds": ["feature", "fix"]},
        "ui": {"allowed_kinds": ["feature"]},
    },
}


def test_selectors_apply_in_declared_order():
    repo = RepoDescriptor(repo_id="svc-api", team_id="core", kind="service")
    resolved = resolve_policy(repo, PolicyDocument.model_validate(POLICIES))

    assert resolved.applied == ("baseline", "strict")
    assert resolved.get("approval.auto_approve.enabled") is False
    assert resolved.get("scope.forbidden_paths") == ["secrets"]
    assert resolved.get("allowed_kinds") == ["feature", "fix"]


def test_repo_override_is_merged_last():
    repo = RepoDescriptor.model_validate(
        {
            "repo_id": "svc-api",
            "team_id": "core",
            "kind": "service",
            "PolicyOverrides": {"approval": {"auto_approve": {"enabled": True, "allowed_teams": ["core"]}}},
        }
    )
    resolved = resolve_policy(repo, POLICIES)

    assert resolved.get("approval.auto_approve.enabled") is True
    assert resolved.get("approval.auto_approve.allowed_teams") == ["core"]
    assert resolved.applied == ("baseline", "strict")


def test_unmatched_repo_gets_empty_policy():
    resolved = resolve_policy({"repo_id": "docs", "team_id": "writers"}, POLICIES)
    assert resolved.effective == {}
    assert resolved.applied == ()


def test_selector_requires_every_key_present():
    assert selector_matches({"team_id": "core"}, {"team_id": "core", "kind": "service"})
    assert not selector_matches({"team_id": "core", "kind": "service"}, {"team_id": "core"})


def test_unknown_block_name_is_skipped():
    policies = {"selectors": [{"match": {}, "apply": ["missing", "ui"]}], "named": {"ui": {"x": 1}}}
    resolved = resolve_policy({"repo_id": "r"}, policies)
    assert resolved.applied == ("ui",)
    assert resolved.effective == {"x": 1}


def test_deep_merge_replaces_lists_and_merges_objects():
    base = {"a": {"b": 1, "c": [1, 2]}, "d": "keep"}
    merged = deep_merge(base, {"a": {"c": [3]}, "e": 5})
    assert merged == {"a": {"b": 1, "c": [3]}, "d": "keep", "e": 5}
    assert base["a"]["c"] == [1, 2]
