"""Engine settings, policy documents, and the repo registry."""

from laneb.config.loader import load_config, load_document, load_policies, load_repo_registry, load_settings
from laneb.config.schema import EngineSettings, PolicyDocument, PolicySelector, RepoDescriptor, RepoRegistry

__all__ = [
    "EngineSettings",
    "PolicyDocument",
    "PolicySelector",
    "RepoDescriptor",
    "RepoRegistry",
    "load_config",
    "load_document",
    "load_policies",
    "load_repo_registry",
    "load_settings",
]
