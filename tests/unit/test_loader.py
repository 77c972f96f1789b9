"""Unit tests for recipe manifest lookup."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any

import pytest
import yaml

from workspace.errors import FetchFailed, ManifestInvalid, RecipeNotFound
from workspace.loader import RecipeLoader, load_recipe_from_path
from workspace.sources import RecipeSource


class _FakeFetcher:
    def __init__(self, result: Path | None = None) -> None:
        self.result = result
        self.calls: list[RecipeSource] = []

    def fetch(self, source: RecipeSource) -> Path:
        self.calls.append(source)
        if self.result is None:
            raise FetchFailed(source.repo or source.name, "offline")
        return self.result


def _write_recipe(recipe_dir: Path, **overrides: Any) -> Path:
    recipe_dir.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {"name": recipe_dir.name, "version": "1.0.0"}
    data.update(overrides)
    manifest = recipe_dir / "recipe.yaml"
    manifest.write_text(yaml.safe_dump(data), encoding="utf-8")
    return manifest


def test_load_recipe_from_directory(tmp_path: Path) -> None:
    manifest = _write_recipe(tmp_path / "alpha", description="first")

    loaded = load_recipe_from_path(tmp_path / "alpha")

    assert loaded is not None
    config, manifest_path = loaded
    assert config.name == "alpha"
    assert config.description == "first"
    assert manifest_path == manifest


def test_load_recipe_from_missing_path_returns_none(tmp_path: Path) -> None:
    assert load_recipe_from_path(tmp_path / "nope") is None


def test_invalid_yaml_raises_manifest_invalid(tmp_path: Path) -> None:
    recipe_dir = tmp_path / "broken"
    recipe_dir.mkdir()
    (recipe_dir / "recipe.yaml").write_text("name: [unterminated\n", encoding="utf-8")

    with pytest.raises(ManifestInvalid):
        load_recipe_from_path(recipe_dir)


def test_empty_manifest_raises_manifest_invalid(tmp_path: Path) -> None:
    recipe_dir = tmp_path / "empty"
    recipe_dir.mkdir()
    (recipe_dir / "recipe.yaml").write_text("", encoding="utf-8")

    with pytest.raises(ManifestInvalid, match="empty"):
        load_recipe_from_path(recipe_dir)


def test_workspace_local_recipe_shadows_builtin(tmp_path: Path) -> None:
    builtin = tmp_path / "builtin"
    root = tmp_path / "ws"
    _write_recipe(builtin / "lint", description="builtin")
    _write_recipe(root / ".workspace" / "recipes" / "lint", description="local")
    fetcher = _FakeFetcher()

    recipe = RecipeLoader(builtin_dir=builtin, fetcher=fetcher).require("lint", root)

    assert recipe.config.description == "local"
    assert recipe.path == root / ".workspace" / "recipes" / "lint"
    assert fetcher.calls == []


def test_builtin_recipe_used_without_workspace(tmp_path: Path) -> None:
    builtin = tmp_path / "builtin"
    manifest = _write_recipe(builtin / "lint")

    recipe = RecipeLoader(builtin_dir=builtin, fetcher=_FakeFetcher()).require("lint")

    assert recipe.source.type == "git"
    assert recipe.checksum == hashlib.sha256(manifest.read_bytes()).hexdigest()


def test_invalid_local_manifest_is_not_skipped(tmp_path: Path) -> None:
    builtin = tmp_path / "builtin"
    root = tmp_path / "ws"
    _write_recipe(builtin / "lint")
    local_dir = root / ".workspace" / "recipes" / "lint"
    local_dir.mkdir(parents=True)
    (local_dir / "recipe.yaml").write_text("version: 1.0.0\n", encoding="utf-8")

    with pytest.raises(ManifestInvalid):
        RecipeLoader(builtin_dir=builtin, fetcher=_FakeFetcher()).load("lint", root)


def test_remote_fetch_used_when_local_locations_miss(tmp_path: Path) -> None:
    fetched = tmp_path / "cache" / "abc" / "remote-recipe"
    _write_recipe(fetched)
    fetcher = _FakeFetcher(result=fetched)

    recipe = RecipeLoader(builtin_dir=tmp_path / "builtin", fetcher=fetcher).require(
        "github:acme/recipes/remote-recipe"
    )

    assert recipe.name == "remote-recipe"
    assert recipe.path == fetched
    assert fetcher.calls[0].subpath == "remote-recipe"


def test_fetch_failure_is_absence(tmp_path: Path) -> None:
    loader = RecipeLoader(builtin_dir=tmp_path / "builtin", fetcher=_FakeFetcher())

    assert loader.load("missing") is None
    with pytest.raises(RecipeNotFound):
        loader.require("missing")


def test_explicit_local_path_does_not_fetch(tmp_path: Path) -> None:
    _write_recipe(tmp_path / "mine")
    fetcher = _FakeFetcher()
    loader = RecipeLoader(builtin_dir=tmp_path / "builtin", fetcher=fetcher)

    recipe = loader.load(str(tmp_path / "mine"))

    assert recipe is not None
    assert recipe.name == "mine"
    assert loader.load(str(tmp_path / "absent")) is None
    assert fetcher.calls == []


def test_load_stack_and_list_available(tmp_path: Path) -> None:
    builtin = tmp_path / "builtin"
    root = tmp_path / "ws"
    _write_recipe(builtin / "alpha")
    _write_recipe(root / ".workspace" / "recipes" / "beta")
    (builtin / "web").mkdir(parents=True)
    (builtin / "web" / "stack.yaml").write_text(
        yaml.safe_dump({"name": "web", "version": "1.0.0", "includes": ["alpha"]}),
        encoding="utf-8",
    )
    (builtin / "notes").mkdir()
    loader = RecipeLoader(builtin_dir=builtin, fetcher=_FakeFetcher())

    stack = loader.load_stack("web", root)

    assert stack is not None
    assert stack.includes == ["alpha"]
    assert loader.load_stack("alpha", root) is None
    assert loader.list_available(root) == ["alpha", "beta", "web"]
