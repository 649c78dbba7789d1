"""CI polling state."""

from laneb.ci.attempts import CiAttempts, load_attempts, save_attempts
from laneb.ci.status import (
    CiStatusStore,
    SnapshotWrite,
    build_snapshot,
    check_is_failing,
    ci_is_green,
    compute_overall,
    normalize_checks,
    snapshot_hash,
)

__all__ = [
    "CiAttempts",
    "CiStatusStore",
    "SnapshotWrite",
    "build_snapshot",
    "check_is_failing",
    "ci_is_green",
    "compute_overall",
    "load_attempts",
    "normalize_checks",
    "save_attempts",
    "snapshot_hash",
]
