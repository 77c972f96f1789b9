"""Recipe and stack manifest lookup across local, built-in, and remote locations."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from workspace.config import RecipeConfig, StackConfig, parse_recipe_config, parse_stack_config
from workspace.errors import FetchFailed, ManifestInvalid, RecipeNotFound
from workspace.fetcher import GitRecipeFetcher, RecipeFetcher
from workspace.logging_utils import log_event
from workspace.paths import (
    RECIPE_MANIFEST_FILENAME,
    STACK_MANIFEST_FILENAME,
    default_builtin_recipes_dir,
    local_recipes_dir,
)
from workspace.sources import RecipeSource, parse_recipe_ref

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoadedRecipe:
    """A validated recipe manifest plus where it was found."""

    config: RecipeConfig
    path: Path
    manifest_path: Path
    source: RecipeSource
    checksum: str

    @property
    def name(self) -> str:
        return self.config.name


def _read_manifest_mapping(manifest_path: Path) -> dict[str, Any]:
    try:
        raw_data = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ManifestInvalid(manifest_path, f"invalid YAML: {exc}") from exc
    if raw_data is None:
        raise ManifestInvalid(manifest_path, "manifest is empty")
    if not isinstance(raw_data, dict):
        raise ManifestInvalid(manifest_path, "manifest must contain a YAML mapping")
    return {str(key): value for key, value in raw_data.items()}


def _manifest_file(path: Path, filename: str) -> Path | None:
    if path.is_dir():
        candidate = path / filename
        return candidate if candidate.is_file() else None
    if path.is_file():
        return path
    return None


def load_recipe_from_path(path: Path) -> tuple[RecipeConfig, Path] | None:
    """Load a recipe from a directory or ``recipe.yaml`` path.

    Returns ``None`` when nothing exists at ``path``; raises ``ManifestInvalid``
    when a manifest exists but does not validate.
    """
    manifest_path = _manifest_file(path, RECIPE_MANIFEST_FILENAME)
    if manifest_path is None:
        return None
    config = parse_recipe_config(_read_manifest_mapping(manifest_path), manifest_path)
    return config, manifest_path


def load_stack_from_path(path: Path) -> StackConfig | None:
    """Load a stack from a directory or ``stack.yaml`` path."""
    manifest_path = _manifest_file(path, STACK_MANIFEST_FILENAME)
    if manifest_path is None:
        return None
    return parse_stack_config(_read_manifest_mapping(manifest_path), manifest_path)


def manifest_checksum(manifest_path: Path) -> str:
    """Return the SHA-256 hex digest of a manifest file."""
    return hashlib.sha256(manifest_path.read_bytes()).hexdigest()


class RecipeLoader:
    """Resolve recipe references to manifests.

    Lookup order: an explicit local path; the workspace-local recipes directory;
    the built-in recipes directory; finally the remote git source. Missing
    locations are skipped silently, while an invalid manifest fails immediately.
    """

    def __init__(
        self,
        *,
        builtin_dir: Path | None = None,
        fetcher: RecipeFetcher | None = None,
    ) -> None:
        self.builtin_dir = builtin_dir or default_builtin_recipes_dir()
        self.fetcher = fetcher or GitRecipeFetcher()

    def candidate_dirs(self, source: RecipeSource, workspace_root: Path | None) -> list[Path]:
        """Return on-disk directories searched before any remote fetch."""
        if source.type == "local" and source.path:
            return [Path(source.path).expanduser()]
        candidates: list[Path] = []
        if workspace_root is not None:
            candidates.append(local_recipes_dir(workspace_root) / source.name)
        candidates.append(self.builtin_dir / source.name)
        return candidates

    def load(self, name_or_ref: str, workspace_root: Path | None = None) -> LoadedRecipe | None:
        """Load a recipe, returning ``None`` when every location is exhausted."""
        source = parse_recipe_ref(name_or_ref)

        for recipe_dir in self.candidate_dirs(source, workspace_root):
            loaded = load_recipe_from_path(recipe_dir)
            if loaded is None:
                continue
            return self._found(loaded, recipe_dir, source)

        if source.type == "git":
            try:
                fetched_dir = self.fetcher.fetch(source)
            except FetchFailed as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "loader.fetch_failed",
                    reference=name_or_ref,
                    repo=source.repo,
                    error=str(exc),
                )
                return None
            loaded = load_recipe_from_path(fetched_dir)
            if loaded is not None:
                return self._found(loaded, fetched_dir, source)

        log_event(logger, logging.DEBUG, "loader.recipe_missing", reference=name_or_ref)
        return None

    def require(self, name_or_ref: str, workspace_root: Path | None = None) -> LoadedRecipe:
        """Load a recipe or raise ``RecipeNotFound``."""
        recipe = self.load(name_or_ref, workspace_root)
        if recipe is None:
            raise RecipeNotFound(name_or_ref)
        return recipe

    def load_stack(self, name: str, workspace_root: Path | None = None) -> StackConfig | None:
        """Load a stack manifest from workspace-local or built-in recipes."""
        search: list[Path] = []
        if workspace_root is not None:
            search.append(local_recipes_dir(workspace_root) / name)
        search.append(self.builtin_dir / name)
        for stack_dir in search:
            stack = load_stack_from_path(stack_dir)
            if stack is not None:
                log_event(
                    logger,
                    logging.DEBUG,
                    "loader.stack_loaded",
                    stack=name,
                    path=str(stack_dir),
                )
                return stack
        return None

    def list_available(self, workspace_root: Path | None = None) -> list[str]:
        """List recipe and stack names available without a network fetch."""
        directories = [self.builtin_dir]
        if workspace_root is not None:
            directories.append(local_recipes_dir(workspace_root))

        names: set[str] = set()
        for directory in directories:
            if not directory.is_dir():
                continue
            for child in directory.iterdir():
                if not child.is_dir():
                    continue
                if (child / RECIPE_MANIFEST_FILENAME).is_file() or (
                    child / STACK_MANIFEST_FILENAME
                ).is_file():
                    names.add(child.name)
        return sorted(names)

    @staticmethod
    def _found(
        loaded: tuple[RecipeConfig, Path],
        location: Path,
        source: RecipeSource,
    ) -> LoadedRecipe:
        config, manifest_path = loaded
        log_event(
            logger,
            logging.DEBUG,
            "loader.recipe_loaded",
            recipe=config.name,
            path=str(manifest_path),
        )
        return LoadedRecipe(
            config=config,
            path=manifest_path.parent if location.is_file() else location,
            manifest_path=manifest_path,
            source=source,
            checksum=manifest_checksum(manifest_path),
        )
