"""Filesystem layout of a workspace and of recipe locations."""

from __future__ import annotations

import os
from pathlib import Path

WORKSPACE_DIR_NAME = ".workspace"
BARE_DIR_NAME = ".bare"
CONFIG_FILENAME = "config.yaml"
LOCK_FILENAME = "lock.yaml"
RECIPE_MANIFEST_FILENAME = "recipe.yaml"
STACK_MANIFEST_FILENAME = "stack.yaml"
DEFAULT_WORKTREE_NAME = "main"
BUILTIN_RECIPES_ENV = "WORKSPACE_RECIPES_DIR"
CACHE_DIR_ENV = "WORKSPACE_CACHE_DIR"

_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_RECIPES_DIR = _PACKAGE_DIR.parent / "recipes"
_USER_RECIPES_DIR = Path.home() / WORKSPACE_DIR_NAME / "recipes"
_DEFAULT_CACHE_DIR = Path.home() / WORKSPACE_DIR_NAME / "cache" / "recipes"


def workspace_config_dir(root: Path) -> Path:
    """Return the ``.workspace`` directory of a workspace root."""
    return root / WORKSPACE_DIR_NAME


def workspace_config_path(root: Path) -> Path:
    """Return the path of the persisted workspace config."""
    return workspace_config_dir(root) / CONFIG_FILENAME


def workspace_lock_path(root: Path) -> Path:
    """Return the path of the persisted workspace lock."""
    return workspace_config_dir(root) / LOCK_FILENAME


def local_recipes_dir(root: Path) -> Path:
    """Return the workspace-local recipes directory."""
    return workspace_config_dir(root) / "recipes"


def default_builtin_recipes_dir() -> Path:
    """Resolve the built-in recipes directory from environment or known locations."""
    env_value = os.environ.get(BUILTIN_RECIPES_ENV)
    if env_value:
        return Path(env_value).expanduser()
    for candidate in (_PROJECT_RECIPES_DIR, _USER_RECIPES_DIR):
        if candidate.is_dir():
            return candidate
    return _PROJECT_RECIPES_DIR


def default_cache_dir() -> Path:
    """Resolve the shared on-disk cache for fetched remote recipes."""
    env_value = os.environ.get(CACHE_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser()
    return _DEFAULT_CACHE_DIR


def find_workspace_root(start: Path) -> Path | None:
    """Walk upward from ``start`` looking for a workspace config or bare repo dir."""
    current = start.resolve()
    for directory in (current, *current.parents):
        if workspace_config_path(directory).is_file():
            return directory
        if (directory / BARE_DIR_NAME).is_dir():
            return directory
    return None


def resolve_target_dir(root: Path, cwd: Path) -> Path:
    """Return the worktree that worktree-scoped recipes apply to.

    Inside a worktree the current directory is used; at the workspace root (or
    outside it) the default ``main`` worktree is targeted.
    """
    resolved_root = root.resolve()
    resolved_cwd = cwd.resolve()
    if resolved_cwd != resolved_root and resolved_cwd.is_relative_to(resolved_root):
        return resolved_cwd
    return resolved_root / DEFAULT_WORKTREE_NAME
