"""Risk buckets and auto-approval disqualifiers derived from patch plans."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

RISK_BUCKETS = {"low": "low", "normal": "medium", "high": "high"}
_BUCKET_ORDER = {"unknown": 0, "low": 1, "medium": 2, "high": 3}
_LEVEL_ORDER = {"unknown": 0, "low": 1, "normal": 2, "high": 3}

SENSITIVE_TEAMS = frozenset({"IdentitySecurity", "Tooling"})

SENSITIVE_KEYWORDS = (
    "auth",
    "oauth",
    "oidc",
    "jwt",
    "token",
    "password",
    "idp",
    "migration",
    "migrate",
    "schema",
    "database",
    "db",
    "sql",
    "prisma",
    "typeorm",
    "sequelize",
    "knex",
    "flyway",
    "liquibase",
    "alembic",
)
_WORD_BOUNDARY_KEYWORDS = frozenset({"db", "sql", "idp", "jwt"})
_MIGRATION_PATH_RE = re.compile(r"(^|/)(migrations?|db)(/|$)", re.IGNORECASE)


def risk_bucket(level: object) -> str:
    """Map a patch plan `risk.level` onto the gate's bucket scale."""
    if not isinstance(level, str):
        return "unknown"
    return RISK_BUCKETS.get(level.strip().lower(), "unknown")


def max_bucket(buckets: Iterable[str]) -> str:
    highest = "unknown"
    for bucket in buckets:
        if _BUCKET_ORDER.get(bucket, 0) > _BUCKET_ORDER[highest]:
            highest = bucket
    return highest


def classify_risk_level(level: object) -> str:
    if isinstance(level, str) and level.strip().lower() in _LEVEL_ORDER:
        return level.strip().lower()
    return "unknown"


def max_risk_level(levels: Iterable[str]) -> str:
    highest = "unknown"
    for level in levels:
        if _LEVEL_ORDER.get(level, 0) > _LEVEL_ORDER[highest]:
            highest = level
    return highest


def sensitive_keywords(plan: Mapping[str, Any]) -> list[str]:
    """Keywords in the plan's intent, risk notes, and edits that rule out auto-approval."""
    parts = [str(plan.get("intent_summary") or "")]
    risk = plan.get("risk")
    if isinstance(risk, dict):
        parts.append(str(risk.get("notes") or ""))
    for edit in plan.get("edits") or []:
        if isinstance(edit, dict):
            parts.append(f"{edit.get('path') or ''}\n{edit.get('rationale') or ''}")
    text = "\n".join(parts).lower()

    hits: list[str] = []
    for keyword in SENSITIVE_KEYWORDS:
        if keyword in _WORD_BOUNDARY_KEYWORDS:
            found = re.search(rf"\b{re.escape(keyword)}\b", text) is not None
        else:
            found = keyword in text
        if found:
            hits.append(keyword)
    return hits


def migration_paths(plan: Mapping[str, Any]) -> list[str]:
    paths: list[str] = []
    for edit in plan.get("edits") or []:
        if not isinstance(edit, dict):
            continue
        path = str(edit.get("path") or "")
        if _MIGRATION_PATH_RE.search(path) or "prisma/migrations" in path.lower():
            paths.append(path)
    return paths
