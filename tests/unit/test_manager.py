"""Unit tests for workspace add/apply/validate orchestration."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

import pytest
import yaml

from workspace.engine import GenerationEngine
from workspace.errors import (
    ConflictsDetected,
    FetchFailed,
    HookFailed,
    RecipeNotFound,
    WorkspaceError,
    WorkspaceNotFound,
)
from workspace.loader import RecipeLoader
from workspace.manager import (
    add_recipe,
    apply_pending,
    collect_commands,
    init_workspace,
    validate_workspace,
)
from workspace.sources import RecipeSource
from workspace.state import load_workspace_config, load_workspace_lock, save_workspace_config


class _OfflineFetcher:
    def fetch(self, source: RecipeSource) -> Path:
        raise FetchFailed(source.repo or source.name, "offline")


def _runner(returncode: int = 0) -> Any:
    def _run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(args, returncode, stdout="", stderr="")

    return _run


def _write_recipe(recipes_dir: Path, name: str, **overrides: Any) -> None:
    recipe_dir = recipes_dir / name
    recipe_dir.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {"name": name, "version": "1.0.0"}
    data.update(overrides)
    (recipe_dir / "recipe.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


def _write_stack(recipes_dir: Path, name: str, **overrides: Any) -> None:
    stack_dir = recipes_dir / name
    stack_dir.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {"name": name, "version": "1.0.0", "type": "stack"}
    data.update(overrides)
    (stack_dir / "stack.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


@pytest.fixture
def recipes_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "recipes"
    _write_recipe(
        directory,
        "bun-runtime",
        conflicts=["node-runtime"],
        generates=[{"path": "package.json", "merge": {"scripts": {"start": "bun run"}}}],
        commands={"install": {"run": "bun install"}},
    )
    _write_recipe(directory, "node-runtime", conflicts=["bun-runtime"])
    _write_recipe(
        directory,
        "vitest-testing",
        requires=["bun-runtime|node-runtime"],
        conflicts=["jest-testing"],
        suggests=["editorconfig"],
        variables={"coverage_threshold": {"type": "number", "default": 80}},
        generates=[
            {"path": "coverage.txt", "content": "{{ coverage_threshold }}"},
            {"path": "package.json", "merge": {"scripts": {"test": "vitest"}}},
        ],
        commands={"test": {"run": "vitest run"}},
        validates=[
            {
                "check": "json_field",
                "path": "package.json",
                "field": "scripts.test",
                "equals": "vitest",
                "message": "missing test script",
            },
        ],
    )
    _write_recipe(directory, "jest-testing", conflicts=["vitest-testing"])
    _write_recipe(
        directory,
        "editorconfig",
        scope="workspace",
        generates=[{"path": ".editorconfig", "content": "root = true\n"}],
    )
    _write_stack(
        directory,
        "typescript-stack",
        includes=["editorconfig", "bun-runtime", "vitest-testing"],
        defaults={"vitest-testing": {"coverage_threshold": 90}},
    )
    return directory


@pytest.fixture
def loader(recipes_dir: Path) -> RecipeLoader:
    return RecipeLoader(builtin_dir=recipes_dir, fetcher=_OfflineFetcher())


@pytest.fixture
def root(tmp_path: Path) -> Path:
    workspace_root = tmp_path / "ws"
    init_workspace(workspace_root, "demo")
    return workspace_root


def test_init_workspace_refuses_existing_config(root: Path) -> None:
    with pytest.raises(WorkspaceError, match="already initialized"):
        init_workspace(root, "again")


def test_init_workspace_with_stack_queues_includes(tmp_path: Path, loader: RecipeLoader) -> None:
    config = init_workspace(tmp_path / "fresh", "fresh", stack="typescript-stack", loader=loader)

    assert config.pending == ["editorconfig", "bun-runtime", "vitest-testing"]


def test_add_requires_workspace(tmp_path: Path, loader: RecipeLoader) -> None:
    with pytest.raises(WorkspaceNotFound):
        add_recipe(tmp_path / "nowhere", "bun-runtime", loader=loader)


def test_add_single_recipe_queues_pending(root: Path, loader: RecipeLoader) -> None:
    result = add_recipe(root, "vitest-testing", loader=loader)

    config = load_workspace_config(root)
    assert config is not None
    assert config.pending == ["vitest-testing"]
    assert result.added == ["vitest-testing"]
    assert result.suggests == ["editorconfig"]
    assert list(result.commands) == ["test"]


def test_add_same_recipe_twice_is_noop(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "bun-runtime", loader=loader)
    result = add_recipe(root, "bun-runtime", loader=loader)

    config = load_workspace_config(root)
    assert config is not None
    assert config.pending == ["bun-runtime"]
    assert result.already_pending == ["bun-runtime"]


def test_add_unknown_recipe_raises(root: Path, loader: RecipeLoader) -> None:
    with pytest.raises(RecipeNotFound):
        add_recipe(root, "ghost", loader=loader)


def test_add_conflicting_recipe_aborts_without_saving(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "vitest-testing", loader=loader)

    with pytest.raises(ConflictsDetected) as exc_info:
        add_recipe(root, "jest-testing", loader=loader)

    config = load_workspace_config(root)
    assert config is not None
    assert config.pending == ["vitest-testing"]
    assert {conflict.recipe for conflict in exc_info.value.conflicts} == {
        "vitest-testing",
        "jest-testing",
    }


def test_add_stack_merges_defaults_over_existing(root: Path, loader: RecipeLoader) -> None:
    config = load_workspace_config(root)
    assert config is not None
    config.variables["vitest-testing"] = {"coverage_threshold": 70, "reporter": "dot"}
    save_workspace_config(root, config)

    result = add_recipe(root, "typescript-stack", loader=loader)

    saved = load_workspace_config(root)
    assert saved is not None
    assert result.stack == "typescript-stack"
    assert saved.pending == ["editorconfig", "bun-runtime", "vitest-testing"]
    assert saved.variables["vitest-testing"] == {"coverage_threshold": 90, "reporter": "dot"}


def test_apply_with_nothing_pending_is_noop(root: Path, loader: RecipeLoader) -> None:
    result = apply_pending(root, root / "main", loader=loader)

    assert result.applied == []
    assert load_workspace_lock(root) is None


def test_apply_stack_end_to_end(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "typescript-stack", loader=loader)
    target = root / "main"

    result = apply_pending(root, target, loader=loader, engine=GenerationEngine(runner=_runner()))

    assert [recipe.name for recipe in result.applied] == [
        "editorconfig",
        "bun-runtime",
        "vitest-testing",
    ]
    assert (root / ".editorconfig").read_text(encoding="utf-8") == "root = true\n"
    assert not (target / ".editorconfig").exists()
    assert (target / "coverage.txt").read_text(encoding="utf-8") == "90"
    assert json.loads((target / "package.json").read_text(encoding="utf-8")) == {
        "scripts": {"start": "bun run", "test": "vitest"}
    }

    config = load_workspace_config(root)
    lock = load_workspace_lock(root)
    assert config is not None
    assert lock is not None
    assert config.pending == []
    assert config.installed_names() == ["editorconfig", "bun-runtime", "vitest-testing"]
    assert all(recipe.checksum for recipe in config.recipes)
    assert [recipe.name for recipe in lock.recipes] == config.installed_names()
    assert lock.variables == config.variables


def test_apply_pulls_in_unrequested_dependency(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "vitest-testing", loader=loader)

    result = apply_pending(root, root / "main", loader=loader)

    assert [recipe.name for recipe in result.applied] == ["bun-runtime", "vitest-testing"]
    assert (root / "main" / "coverage.txt").read_text(encoding="utf-8") == "80"


def test_apply_skips_already_installed_dependencies(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "bun-runtime", loader=loader)
    apply_pending(root, root / "main", loader=loader)
    add_recipe(root, "vitest-testing", loader=loader)

    result = apply_pending(root, root / "main", loader=loader)

    assert [recipe.name for recipe in result.applied] == ["vitest-testing"]
    assert result.already_installed == ["bun-runtime"]
    config = load_workspace_config(root)
    assert config is not None
    assert config.installed_names() == ["bun-runtime", "vitest-testing"]


def test_failed_apply_keeps_pending_and_skips_lock(
    root: Path,
    recipes_dir: Path,
    loader: RecipeLoader,
) -> None:
    _write_recipe(recipes_dir, "broken", hooks={"post_apply": [{"command": "exit 1"}]})
    add_recipe(root, "editorconfig", loader=loader)
    add_recipe(root, "broken", loader=loader)

    with pytest.raises(HookFailed):
        apply_pending(
            root,
            root / "main",
            loader=loader,
            engine=GenerationEngine(runner=_runner(1)),
        )

    config = load_workspace_config(root)
    assert config is not None
    assert config.pending == ["editorconfig", "broken"]
    assert config.recipes == []
    assert load_workspace_lock(root) is None
    assert (root / ".editorconfig").exists()


def test_validate_and_collect_commands(root: Path, loader: RecipeLoader) -> None:
    add_recipe(root, "vitest-testing", loader=loader)
    apply_pending(root, root / "main", loader=loader)

    results = validate_workspace(root, root / "main", loader=loader, runner=_runner())
    commands = collect_commands(root, loader=loader)

    assert [(item.recipe, item.check, item.passed) for item in results] == [
        ("vitest-testing", "json_field", True)
    ]
    assert {name: command.recipe for name, command in commands.items()} == {
        "install": "bun-runtime",
        "test": "vitest-testing",
    }


def test_path_reference_is_not_reinstalled_under_manifest_name(
    tmp_path: Path,
    root: Path,
    loader: RecipeLoader,
) -> None:
    recipe_dir = tmp_path / "custom" / "lint-dir"
    recipe_dir.mkdir(parents=True)
    (recipe_dir / "recipe.yaml").write_text(
        yaml.safe_dump(
            {
                "name": "lint",
                "version": "1.0.0",
                "generates": [{"path": "a.txt", "content": "a"}],
            }
        ),
        encoding="utf-8",
    )
    reference = str(recipe_dir)

    add_recipe(root, reference, loader=loader)
    first = apply_pending(root, root / "main", loader=loader)
    again = add_recipe(root, reference, loader=loader)
    second = apply_pending(root, root / "main", loader=loader)

    config = load_workspace_config(root)
    assert config is not None
    assert [recipe.name for recipe in first.applied] == ["lint"]
    assert again.already_installed == ["lint"]
    assert again.added == []
    assert second.applied == []
    assert config.installed_names() == ["lint"]
