"""Policy resolution package."""

from laneb.policy.resolve import ResolvedPolicy, deep_merge, resolve_policy, selector_matches

__all__ = ["ResolvedPolicy", "deep_merge", "resolve_policy", "selector_matches"]
