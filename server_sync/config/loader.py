"""
Config Loader: build a SyncConfig from the environment.

Values are resolved in this order (first wins):
1. Explicit overrides (CLI options)
2. The env file named by SERVER_SYNC_ENV (or --env-file)
3. The process environment

## Usage

    from server_sync.config.loader import load_config

    config = load_config()
    print(config.destination, sorted(config.active_contexts))
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..engine.contexts import is_valid_context_name, parse_context_list
from ..errors import ConfigError
from ..mirror.git import redact_url
from .owner import resolve_gid, resolve_uid

logger = logging.getLogger(__name__)

ENV_FILE_VAR = "SERVER_SYNC_ENV"
REPO_VAR = "SERVER_SYNC_REPO"
BRANCH_VAR = "SERVER_SYNC_BRANCH"
DESTINATION_VAR = "SERVER_SYNC_DESTINATION"
CONTEXTS_VAR = "SERVER_SYNC_CONTEXTS"
REPO_STORAGE_VAR = "SERVER_SYNC_REPO_STORAGE"
BACKUP_VAR = "SERVER_SYNC_BACKUP"
GIT_TIMEOUT_VAR = "SERVER_SYNC_GIT_TIMEOUT"
AUDIT_LOG_VAR = "SERVER_SYNC_AUDIT_LOG"

DEFAULT_GIT_TIMEOUT = 300

REQUIRED_VARS = [REPO_VAR, BRANCH_VAR, DESTINATION_VAR, CONTEXTS_VAR, REPO_STORAGE_VAR]

# Model field -> variable an operator would need to fix
FIELD_SOURCES = {
    "repo_url": REPO_VAR,
    "branch": BRANCH_VAR,
    "destination": DESTINATION_VAR,
    "active_contexts": CONTEXTS_VAR,
    "repo_storage": REPO_STORAGE_VAR,
    "owner_uid": "UID/USER",
    "owner_gid": "GID/GROUP",
    "backup": BACKUP_VAR,
    "git_timeout": GIT_TIMEOUT_VAR,
    "audit_log": AUDIT_LOG_VAR,
}


class SyncConfig(BaseModel):
    """Process-wide sync settings. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    repo_url: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    destination: Path
    active_contexts: FrozenSet[str]
    repo_storage: Path
    owner_uid: int = Field(..., ge=0)
    owner_gid: int = Field(..., ge=0)

    backup: bool = False
    git_timeout: int = Field(default=DEFAULT_GIT_TIMEOUT, gt=0)
    audit_log: Optional[Path] = None

    @field_validator("destination", "repo_storage")
    @classmethod
    def _absolute_path(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"must be an absolute path, got '{value}'")
        return value

    @field_validator("active_contexts")
    @classmethod
    def _known_contexts(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        if not value:
            raise ValueError("at least one context is required")
        bad = sorted(name for name in value if not is_valid_context_name(name))
        if bad:
            raise ValueError(f"invalid context name(s): {', '.join(bad)}")
        return value

    @property
    def display_repo(self) -> str:
        """Remote URL with any embedded credentials masked."""
        return redact_url(self.repo_url)


def load_environment(
    env_file: Optional[str] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Merge the env file (if any) over the process environment.

    Args:
        env_file: Explicit env file path. Defaults to SERVER_SYNC_ENV.
        base: Environment to start from. Defaults to os.environ.

    Raises:
        ConfigError: If an env file is named but does not exist
    """
    environ = dict(os.environ if base is None else base)
    path = env_file or environ.get(ENV_FILE_VAR)

    if not path:
        logger.debug(f"{ENV_FILE_VAR} not set, using process environment only")
        return environ

    env_path = Path(path).expanduser()
    if not env_path.is_file():
        raise ConfigError(f"env file not found: {env_path}", field=ENV_FILE_VAR)

    values = dotenv_values(env_path)
    loaded = {k: v for k, v in values.items() if v is not None}
    environ.update(loaded)
    logger.debug(f"Loaded {len(loaded)} variable(s) from {env_path}")
    return environ


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes")


def load_config(
    overrides: Optional[Mapping[str, Optional[str]]] = None,
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncConfig:
    """
    Load and validate the sync configuration.

    Args:
        overrides: Variable name -> value, taking precedence over everything
        env_file: Env file path, taking precedence over SERVER_SYNC_ENV
        environ: Base environment (defaults to os.environ)

    Returns:
        A frozen SyncConfig

    Raises:
        ConfigError: On any missing or invalid value
    """
    env = load_environment(env_file, environ)
    for key, value in (overrides or {}).items():
        if value is not None:
            env[key] = value

    missing = [name for name in REQUIRED_VARS if not env.get(name, "").strip()]
    if missing:
        raise ConfigError(
            f"missing required variable(s): {', '.join(missing)}",
            details={"missing": missing},
        )

    raw_timeout = env.get(GIT_TIMEOUT_VAR, "").strip()
    try:
        git_timeout = int(raw_timeout) if raw_timeout else DEFAULT_GIT_TIMEOUT
    except ValueError:
        raise ConfigError(f"not an integer: '{raw_timeout}'", field=GIT_TIMEOUT_VAR)

    audit_log = env.get(AUDIT_LOG_VAR, "").strip()

    try:
        config = SyncConfig(
            repo_url=env[REPO_VAR].strip(),
            branch=env[BRANCH_VAR].strip(),
            destination=Path(env[DESTINATION_VAR].strip()),
            active_contexts=frozenset(parse_context_list(env[CONTEXTS_VAR])),
            repo_storage=Path(env[REPO_STORAGE_VAR].strip()),
            owner_uid=resolve_uid(env),
            owner_gid=resolve_gid(env),
            backup=_flag(env.get(BACKUP_VAR)),
            git_timeout=git_timeout,
            audit_log=Path(audit_log) if audit_log else None,
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else None
        raise ConfigError(
            first["msg"],
            field=FIELD_SOURCES.get(field, field),
            details={"errors": e.errors(include_url=False)},
        )

    logger.debug(
        f"Config: repo={config.display_repo} branch={config.branch} "
        f"destination={config.destination} contexts={sorted(config.active_contexts)} "
        f"storage={config.repo_storage} owner={config.owner_uid}:{config.owner_gid}"
    )
    return config
