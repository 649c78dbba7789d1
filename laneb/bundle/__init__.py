"""Bundle building and pin verification."""

from laneb.bundle.builder import (
    BundleBuilder,
    BundleBuildResult,
    read_bundle,
    selected_repos,
    team_proposal_paths,
    verify_bundle_pins,
    write_bundle,
)

__all__ = [
    "BundleBuildResult",
    "BundleBuilder",
    "read_bundle",
    "selected_repos",
    "team_proposal_paths",
    "verify_bundle_pins",
    "write_bundle",
]
