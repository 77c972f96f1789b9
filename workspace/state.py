"""Persisted workspace config and lock documents."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from workspace.logging_utils import log_event
from workspace.paths import workspace_config_dir, workspace_config_path, workspace_lock_path

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class InstalledRecipe(BaseModel):
    """A recipe that was materialized into the workspace."""

    model_config = ConfigDict(extra="ignore")

    name: str
    version: str
    applied_at: str
    checksum: str | None = None


class WorkspaceConfig(BaseModel):
    """Mutable desired/installed state of a workspace."""

    model_config = ConfigDict(extra="ignore")

    name: str
    created_at: str
    recipes: list[InstalledRecipe] = Field(default_factory=list)
    pending: list[str] = Field(default_factory=list)
    variables: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def installed_names(self) -> list[str]:
        return [recipe.name for recipe in self.recipes]

    def is_installed(self, name: str) -> bool:
        return any(recipe.name == name for recipe in self.recipes)


class WorkspaceLock(BaseModel):
    """Snapshot of exactly what the last successful apply recorded."""

    model_config = ConfigDict(extra="ignore")

    applied_at: str
    recipes: list[InstalledRecipe] = Field(default_factory=list)
    variables: dict[str, dict[str, Any]] = Field(default_factory=dict)


def create_workspace_config(name: str) -> WorkspaceConfig:
    """Return a fresh config with no recipes, pending entries, or overrides."""
    return WorkspaceConfig(name=name, created_at=utc_timestamp())


def build_lock(config: WorkspaceConfig) -> WorkspaceLock:
    """Snapshot the installed set and overrides of ``config``."""
    return WorkspaceLock(
        applied_at=utc_timestamp(),
        recipes=[recipe.model_copy() for recipe in config.recipes],
        variables={name: dict(values) for name, values in config.variables.items()},
    )


def _load_document(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        logger.warning("Ignoring unreadable workspace document at %s", path)
        return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring malformed workspace document at %s", path)
        return None
    return {str(key): value for key, value in raw.items()}


def _save_document(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = model.model_dump(mode="json", exclude_none=True)
    path.write_text(
        yaml.safe_dump(payload, sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )


def load_workspace_config(root: Path) -> WorkspaceConfig | None:
    """Load ``.workspace/config.yaml``; ``None`` if absent or malformed."""
    raw = _load_document(workspace_config_path(root))
    if raw is None:
        return None
    try:
        return WorkspaceConfig.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring invalid workspace config at %s: %s", root, exc)
        return None


def save_workspace_config(root: Path, config: WorkspaceConfig) -> None:
    """Write ``.workspace/config.yaml``, creating ``.workspace`` if needed."""
    workspace_config_dir(root).mkdir(parents=True, exist_ok=True)
    _save_document(workspace_config_path(root), config)
    log_event(
        logger,
        logging.DEBUG,
        "state.config_saved",
        root=str(root),
        installed=len(config.recipes),
        pending=len(config.pending),
    )


def load_workspace_lock(root: Path) -> WorkspaceLock | None:
    """Load ``.workspace/lock.yaml``; ``None`` if absent or malformed."""
    raw = _load_document(workspace_lock_path(root))
    if raw is None:
        return None
    try:
        return WorkspaceLock.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring invalid workspace lock at %s: %s", root, exc)
        return None


def save_workspace_lock(root: Path, lock: WorkspaceLock) -> None:
    """Overwrite ``.workspace/lock.yaml`` wholesale."""
    _save_document(workspace_lock_path(root), lock)
    log_event(
        logger,
        logging.DEBUG,
        "state.lock_saved",
        root=str(root),
        installed=len(lock.recipes),
    )
