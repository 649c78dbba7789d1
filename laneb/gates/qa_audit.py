"""QA obligations: derive them from patch plans, audit them against test edits."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal, Mapping

from laneb.core.jsonio import now_iso
from laneb.gates.risk import classify_risk_level, max_risk_level

TestCategory = Literal["unit", "integration", "e2e"]
CATEGORIES: tuple[TestCategory, ...] = ("unit", "integration", "e2e")

_UNIT_SUFFIXES = tuple(
    f".{kind}.{ext}" for kind in ("test", "spec") for ext in ("js", "jsx", "ts", "tsx")
) + ("_test.go", "_test.py")
_CODE_SUFFIXES = (
    ".json", ".yml", ".yaml",
    ".js", ".jsx", ".ts", ".tsx",
    ".py", ".go", ".java", ".kt", ".cs",
    ".rb", ".php", ".rs",
)
_WAIVE = r"waive\s*[:=_-]?\s*"
_WAIVE_ALL_RE = re.compile(rf"{_WAIVE}all|{_WAIVE}tests\s*[:=_-]?\s*all")
_WAIVE_RES = {category: re.compile(rf"{_WAIVE}{category}") for category in CATEGORIES}


def _normalize(path: object) -> str:
    text = str(path or "").strip().replace("\\", "/")
    if not text:
        return ""
    normalized = posixpath.normpath(text)
    if normalized in (".", "./"):
        return "."
    return normalized[2:] if normalized.startswith("./") else normalized


def classify_test_edit_path(path: object) -> TestCategory | None:
    """The test category an edited path counts toward, or None for non-test paths."""
    lower = _normalize(path).lower()
    if not lower or lower == ".":
        return None
    if any(marker in lower for marker in ("/cypress/", "/playwright/", "/e2e/")) or lower.startswith("e2e/"):
        return "e2e"
    if any(marker in lower for marker in ("/integration/", "/itest/", ".int.test.")):
        return "integration"
    if "__tests__/" in lower:
        return "unit"
    if lower.startswith(("test/", "tests/")) or "/test/" in lower or "/tests/" in lower:
        return "unit"
    if lower.endswith(_UNIT_SUFFIXES):
        return "unit"
    return None


def looks_like_test_path(path: object) -> bool:
    lower = _normalize(path).lower()
    if classify_test_edit_path(lower) is not None:
        return True
    return lower.startswith("spec/") or "/spec/" in lower


def looks_like_code_path(path: object) -> bool:
    lower = _normalize(path).lower()
    if not lower or lower == "." or looks_like_test_path(lower):
        return False
    return lower.endswith(_CODE_SUFFIXES)


def _touches_ui(path: str) -> bool:
    lower = path.lower()
    return (
        lower.startswith(("ui/", "frontend/", "apps/"))
        or "/ui/" in lower
        or "/frontend/" in lower
        or "/pages/" in lower
    )


def parse_waivers(notes: object) -> dict[TestCategory, bool]:
    """Waiver markers such as `waive: unit` or `waive all` in QA approval notes."""
    text = str(notes or "").lower()
    if _WAIVE_ALL_RE.search(text):
        return {category: True for category in CATEGORIES}
    return {category: _WAIVE_RES[category].search(text) is not None for category in CATEGORIES}


def derive_obligations(
    work_id: str,
    plans: Mapping[str, Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the QA/obligations.json document from the validated patch plans, keyed by repo id."""
    changed_by_repo: list[dict[str, Any]] = []
    directives: list[str] = []
    risk_level = "unknown"
    must = {category: False for category in CATEGORIES}

    for repo_id in sorted(plans):
        plan = plans[repo_id]
        risk = plan.get("risk")
        risk_level = max_risk_level([risk_level, classify_risk_level(risk.get("level") if isinstance(risk, dict) else None)])
        changed = sorted({p for p in (_normalize(e.get("path")) for e in plan.get("edits") or [] if isinstance(e, dict)) if p and p != "."})
        changed_by_repo.append({"repo_id": repo_id, "paths": changed})

        if any(looks_like_code_path(p) for p in changed):
            must["unit"] = True
            directives.append(f"Add/extend unit tests for {repo_id} changed modules.")
        if any("migration" in p.lower() for p in changed):
            must["integration"] = True
            directives.append(f"Add/extend integration tests for {repo_id} API/data contracts.")
        if any(_touches_ui(p) for p in changed):
            must["e2e"] = True
            directives.append(f"Add/extend e2e tests for {repo_id} user flows.")

    if risk_level == "high":
        must["integration"] = True
        must["e2e"] = True
        directives.insert(0, "Risk is high: require integration + e2e coverage for the changed behavior.")

    return {
        "version": 1,
        "work_id": work_id,
        "created_at": now_iso(now),
        "risk_level": risk_level,
        "changed_paths_by_repo": changed_by_repo,
        "must_add_unit": must["unit"],
        "must_add_integration": must["integration"],
        "must_add_e2e": must["e2e"],
        "suggested_test_directives": list(dict.fromkeys(directives)),
    }


def reconcile_obligations(
    recorded: Mapping[str, Any],
    derived: Mapping[str, Any],
    *,
    pinned_risk_levels: Iterable[object] = (),
) -> dict[str, Any]:
    """The stricter of the recorded obligations and those derived from the pinned plans.

    Risk is the highest of both documents and the bundle's per-repo levels; a
    category is required when either document requires it, and a high risk
    always requires integration and e2e coverage.
    """
    reconciled = dict(recorded)
    risk_level = max_risk_level(
        [
            classify_risk_level(recorded.get("risk_level")),
            classify_risk_level(derived.get("risk_level")),
            *(classify_risk_level(level) for level in pinned_risk_levels),
        ]
    )
    reconciled["risk_level"] = risk_level
    for category in CATEGORIES:
        key = f"must_add_{category}"
        reconciled[key] = recorded.get(key) is True or derived.get(key) is True
    if risk_level == "high":
        reconciled["must_add_integration"] = True
        reconciled["must_add_e2e"] = True
    reconciled["changed_paths_by_repo"] = derived.get("changed_paths_by_repo") or recorded.get("changed_paths_by_repo") or []
    return reconciled


@dataclass(frozen=True)
class QaAudit:
    ok: bool
    missing: tuple[str, ...]
    required: dict[str, bool]
    present: dict[str, bool]
    waived: dict[str, bool]
    qa_status: str
    obligations: dict[str, Any] = field(default_factory=dict)
    qa_approval: dict[str, Any] = field(default_factory=dict)

    @property
    def qa_rejected(self) -> bool:
        return "qa_rejected" in self.missing

    @property
    def risk_level(self) -> str:
        return classify_risk_level(self.obligations.get("risk_level"))

    @property
    def dual_signoff_required(self) -> bool:
        return self.risk_level == "high"

    @property
    def waived_obligations(self) -> list[str]:
        """Required categories that were satisfied only by an explicit waiver."""
        return [c for c in CATEGORIES if self.required.get(c) and self.waived.get(c)]


def audit_obligations(
    obligations: Mapping[str, Any],
    edit_paths: Iterable[object],
    qa_approval: Mapping[str, Any] | None = None,
) -> QaAudit:
    qa_approval = dict(qa_approval or {})
    status = str(qa_approval.get("status") or "pending").strip().lower() or "pending"
    required = {c: obligations.get(f"must_add_{c}") is True for c in CATEGORIES}
    none = {c: False for c in CATEGORIES}
    if status == "rejected":
        return QaAudit(
            ok=False,
            missing=("qa_rejected",),
            required=required,
            present=dict(none),
            waived=dict(none),
            qa_status=status,
            obligations=dict(obligations),
            qa_approval=qa_approval,
        )

    waived: dict[str, bool] = dict(parse_waivers(qa_approval.get("notes"))) if status == "approved" else dict(none)
    present = dict(none)
    for path in edit_paths:
        category = classify_test_edit_path(path)
        if category is not None:
            present[category] = True
    missing = tuple(c for c in CATEGORIES if required[c] and not present[c] and not waived[c])
    return QaAudit(
        ok=not missing,
        missing=missing,
        required=required,
        present=present,
        waived=waived,
        qa_status=status,
        obligations=dict(obligations),
        qa_approval=qa_approval,
    )
