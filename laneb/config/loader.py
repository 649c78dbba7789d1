import os
import re
from pathlib import Path
from typing import Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError
from structlog import get_logger

from laneb.config.schema import EngineSettings, PolicyDocument, RepoRegistry
from laneb.core.errors import InvalidFormat

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

SETTINGS_FILENAME = "laneb.yml"
POLICIES_FILENAME = "POLICIES.json"
REPOS_FILENAME = "REPOS.json"


def expand_env_vars(config: object) -> object:
    """Recursively replace ${VAR} patterns with environment variable values."""
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("config_unknown_keys", at=path, config_path=str(config_path), keys=list(model.model_extra))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def _read_yaml(path: Path) -> object:
    # JSON documents are valid YAML, so one reader covers both formats.
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Path, model_class: Type[T]) -> T:
    """Load and validate optional tunables from a YAML file.

    Missing or unreadable files fall back to model defaults.
    """
    if not path.exists():
        return model_class()

    try:
        raw = _read_yaml(path)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("config_read_failed", config_path=str(path), error=str(e))
        return model_class()

    model = model_class.model_validate(expand_env_vars(raw))
    _warn_unknown_keys(model, "root", path)
    return model


def load_document(path: Path, model_class: Type[T]) -> T:
    """Load a governance document; unlike tunables, a broken document is an error.

    Raises:
        InvalidFormat: when the file cannot be parsed or fails validation.
    """
    if not path.exists():
        return model_class()

    try:
        raw = _read_yaml(path)
    except yaml.YAMLError as e:
        raise InvalidFormat(f"invalid document {path}: {e}", path=str(path)) from e

    try:
        return model_class.model_validate(expand_env_vars(raw))
    except ValidationError as e:
        errors = tuple(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InvalidFormat(f"invalid document {path}", path=str(path), errors=errors) from e


def load_settings(policy_root: Path) -> EngineSettings:
    return load_config(policy_root / SETTINGS_FILENAME, EngineSettings)


def load_policies(policy_root: Path) -> PolicyDocument:
    return load_document(policy_root / POLICIES_FILENAME, PolicyDocument)


def load_repo_registry(policy_root: Path) -> RepoRegistry:
    return load_document(policy_root / REPOS_FILENAME, RepoRegistry)
