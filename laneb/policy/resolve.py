"""Selector-based policy resolution.

Selectors apply named blocks in declared order; the repo's own override object
is merged last and always wins.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Mapping

from structlog import get_logger

from laneb.config.schema import PolicyDocument, RepoDescriptor

logger = get_logger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class ResolvedPolicy:
    effective: dict[str, Any]
    applied: tuple[str, ...]

    def get(self, dotted: str, default: Any = None) -> Any:
        node: Any = self.effective
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node


def deep_merge(base: Any, override: Any) -> Any:
    """Merge `override` into `base`: objects merge recursively, everything else replaces."""
    if isinstance(override, list):
        return copy.deepcopy(override)
    if not isinstance(override, dict):
        return copy.deepcopy(override)
    out = dict(base) if isinstance(base, dict) else {}
    for key, value in override.items():
        out[key] = deep_merge(out.get(key), value) if isinstance(value, dict) else copy.deepcopy(value)
    return out


def _repo_attributes(repo: RepoDescriptor | Mapping[str, Any]) -> tuple[dict[str, Any], Any]:
    if isinstance(repo, RepoDescriptor):
        return repo.attributes(), repo.policy_overrides
    attributes = dict(repo)
    overrides = attributes.pop("policy_overrides", _MISSING)
    legacy = attributes.pop("PolicyOverrides", _MISSING)
    if overrides is _MISSING:
        overrides = legacy
    return attributes, None if overrides is _MISSING else overrides


def selector_matches(match: Mapping[str, Any], attributes: Mapping[str, Any]) -> bool:
    """Every match key must exist on the repo and compare equal."""
    for key, expected in match.items():
        if key not in attributes or attributes[key] != expected:
            return False
    return True


def resolve_policy(
    repo: RepoDescriptor | Mapping[str, Any],
    policies: PolicyDocument | Mapping[str, Any],
) -> ResolvedPolicy:
    document = policies if isinstance(policies, PolicyDocument) else PolicyDocument.model_validate(policies)
    attributes, overrides = _repo_attributes(repo)

    effective: dict[str, Any] = {}
    applied: list[str] = []
    for selector in document.selectors:
        if not selector_matches(selector.match, attributes):
            continue
        for block_name in selector.apply:
            block = document.named.get(block_name)
            if not isinstance(block, dict):
                logger.debug("policy_block_skipped", block=block_name, repo_id=attributes.get("repo_id"))
                continue
            effective = deep_merge(effective, block)
            applied.append(block_name)

    if isinstance(overrides, dict):
        effective = deep_merge(effective, overrides)

    return ResolvedPolicy(effective=effective, applied=tuple(applied))
