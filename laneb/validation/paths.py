"""Repo-relative path rules, scope matchers, and git ref name checks."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Iterable


class PathRuleError(ValueError):
    """Raised when a path or ref name breaks a safety rule."""


def normalize_repo_rel_path(raw: object) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise PathRuleError("path must be a non-empty string")
    value = raw.strip()
    if "\0" in value:
        raise PathRuleError("path contains NUL byte")
    if "\\" in value:
        raise PathRuleError("path must use forward slashes")
    if value.startswith("/") or re.match(r"^[A-Za-z]:", value):
        raise PathRuleError("path must be repo-relative (not absolute)")
    normalized = posixpath.normpath(value)
    if normalized == ".":
        return "."
    if normalized == ".." or normalized.startswith("../"):
        raise PathRuleError("path traversal is not allowed")
    return normalized


def validate_git_ref_name(raw: object) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise PathRuleError("name must be a non-empty string")
    name = raw.strip()
    if re.search(r"\s", name):
        raise PathRuleError("name must not contain whitespace")
    if name.startswith("-"):
        raise PathRuleError("name must not start with '-'")
    if name.startswith("/") or name.endswith("/"):
        raise PathRuleError("name must not start or end with '/'")
    for forbidden in ("..", "//", "@{", "\\"):
        if forbidden in name:
            raise PathRuleError(f"name must not contain {forbidden!r}")
    if not re.fullmatch(r"[A-Za-z0-9._/-]+", name):
        raise PathRuleError("name contains invalid characters")
    return name


def glob_to_regex(glob: str) -> re.Pattern[str]:
    """`*` matches within one segment, `**` across segments."""
    normalized = normalize_repo_rel_path(glob)
    if normalized == ".":
        return re.compile(r"^.*$")
    out = ["^"]
    index = 0
    while index < len(normalized):
        char = normalized[index]
        if char == "*":
            if normalized[index + 1 : index + 2] == "*":
                out.append(".*")
                index += 2
                continue
            out.append("[^/]*")
        else:
            out.append(re.escape(char))
        index += 1
    out.append("$")
    return re.compile("".join(out))


@dataclass(frozen=True)
class PathMatcher:
    raw: str
    prefix: str | None
    pattern: re.Pattern[str] | None

    def matches(self, path: str) -> bool:
        if self.pattern is not None:
            return bool(self.pattern.match(path))
        if self.prefix == ".":
            return True
        return path == self.prefix or path.startswith(f"{self.prefix}/")


def compile_matchers(patterns: Iterable[object]) -> list[PathMatcher]:
    matchers: list[PathMatcher] = []
    for raw in patterns:
        text = str(raw or "").strip()
        if not text:
            continue
        if "*" in text:
            matchers.append(PathMatcher(raw=text, prefix=None, pattern=glob_to_regex(text)))
        else:
            matchers.append(PathMatcher(raw=text, prefix=normalize_repo_rel_path(text), pattern=None))
    return matchers


def matches_any(path: str, matchers: Iterable[PathMatcher]) -> bool:
    normalized = normalize_repo_rel_path(path)
    return any(matcher.matches(normalized) for matcher in matchers)
