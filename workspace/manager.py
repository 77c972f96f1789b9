"""Workspace operations: init, add, apply, validate, and command listing."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from workspace.config import CommandSpec
from workspace.engine import GenerationEngine, RuleOutcome
from workspace.errors import ConflictsDetected, RecipeNotFound, WorkspaceError, WorkspaceNotFound
from workspace.loader import LoadedRecipe, RecipeLoader
from workspace.logging_utils import log_event
from workspace.resolver import DependencyResolver
from workspace.state import (
    InstalledRecipe,
    WorkspaceConfig,
    build_lock,
    create_workspace_config,
    load_workspace_config,
    save_workspace_config,
    save_workspace_lock,
    utc_timestamp,
)
from workspace.validator import ValidationResult, validate_recipe
from workspace.variables import merge_stack_defaults, resolve_variables

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AddResult:
    """What an ``add`` call queued."""

    requested: str
    stack: str | None = None
    description: str = ""
    added: list[str] = field(default_factory=list)
    already_installed: list[str] = field(default_factory=list)
    already_pending: list[str] = field(default_factory=list)
    suggests: list[str] = field(default_factory=list)
    commands: dict[str, CommandSpec] = field(default_factory=dict)


@dataclass(slots=True)
class ApplyResult:
    """What an ``apply`` call materialized."""

    target_dir: Path
    applied: list[InstalledRecipe] = field(default_factory=list)
    already_installed: list[str] = field(default_factory=list)
    outcomes: dict[str, list[RuleOutcome]] = field(default_factory=dict)


@dataclass(slots=True)
class WorkspaceCommand:
    """A command contributed by an installed recipe."""

    name: str
    run: str
    recipe: str
    description: str | None = None


def require_workspace_config(root: Path) -> WorkspaceConfig:
    """Load the workspace config or raise ``WorkspaceNotFound``."""
    config = load_workspace_config(root)
    if config is None:
        raise WorkspaceNotFound(root)
    return config


def init_workspace(
    root: Path,
    name: str,
    *,
    stack: str | None = None,
    loader: RecipeLoader | None = None,
) -> WorkspaceConfig:
    """Create ``.workspace/config.yaml`` under ``root`` and optionally queue a stack."""
    if load_workspace_config(root) is not None:
        raise WorkspaceError(f"Workspace already initialized: {root}")
    config = create_workspace_config(name)
    save_workspace_config(root, config)
    log_event(
        logger,
        logging.INFO,
        "manager.workspace_initialized",
        root=str(root),
        workspace_name=name,
    )
    if stack is not None:
        add_recipe(root, stack, loader=loader)
        return require_workspace_config(root)
    return config


def _screen_conflicts(
    resolver: DependencyResolver,
    config: WorkspaceConfig,
    new_names: list[str],
    root: Path,
) -> None:
    candidates = [*config.installed_names(), *config.pending, *new_names]
    conflicts = resolver.check_conflicts(candidates, root)
    if conflicts:
        raise ConflictsDetected(conflicts)


def add_recipe(
    root: Path,
    name: str,
    *,
    loader: RecipeLoader | None = None,
    resolver: DependencyResolver | None = None,
) -> AddResult:
    """Queue a recipe, or every recipe of a stack, for the next apply.

    Conflicting additions raise ``ConflictsDetected`` and leave the config
    untouched. Stack defaults are folded into the workspace overrides.
    """
    recipe_loader = loader or RecipeLoader()
    dependency_resolver = resolver or DependencyResolver(recipe_loader)
    config = require_workspace_config(root)
    installed = set(config.installed_names())

    stack = recipe_loader.load_stack(name, root)
    if stack is not None:
        result = AddResult(requested=name, stack=stack.name, description=stack.description)
        for recipe_name in stack.includes:
            if recipe_name in installed:
                result.already_installed.append(recipe_name)
            elif recipe_name in config.pending:
                result.already_pending.append(recipe_name)
            elif recipe_name not in result.added:
                result.added.append(recipe_name)
        if not result.added:
            return result

        _screen_conflicts(dependency_resolver, config, result.added, root)
        config.pending.extend(result.added)
        config.variables = merge_stack_defaults(config.variables, stack.defaults)
        save_workspace_config(root, config)
        log_event(
            logger,
            logging.INFO,
            "manager.stack_added",
            stack=stack.name,
            added=result.added,
        )
        return result

    recipe = recipe_loader.load(name, root)
    if recipe is None:
        raise RecipeNotFound(name)

    result = AddResult(
        requested=name,
        description=recipe.config.description,
        suggests=list(recipe.config.suggests),
        commands=dict(recipe.config.commands),
    )
    if name in installed or recipe.name in installed:
        result.already_installed.append(recipe.name)
        return result
    if name in config.pending:
        result.already_pending.append(name)
        return result

    _screen_conflicts(dependency_resolver, config, [name], root)
    config.pending.append(name)
    save_workspace_config(root, config)
    result.added.append(name)
    log_event(logger, logging.INFO, "manager.recipe_added", recipe=name)
    return result


def apply_pending(
    root: Path,
    target_dir: Path,
    *,
    loader: RecipeLoader | None = None,
    resolver: DependencyResolver | None = None,
    engine: GenerationEngine | None = None,
) -> ApplyResult:
    """Resolve and materialize every pending recipe, then persist config and lock.

    Recipes run one at a time in dependency order. Workspace-scoped recipes
    target ``root``; worktree-scoped ones target ``target_dir``. State is only
    written after the whole batch succeeds.
    """
    recipe_loader = loader or RecipeLoader()
    dependency_resolver = resolver or DependencyResolver(recipe_loader)
    generation_engine = engine or GenerationEngine()
    config = require_workspace_config(root)
    result = ApplyResult(target_dir=target_dir)

    if not config.pending:
        log_event(logger, logging.INFO, "manager.apply_noop", root=str(root))
        return result

    resolved = dependency_resolver.resolve(config.pending, root)
    installed = set(config.installed_names())
    to_apply: list[LoadedRecipe] = []
    for name in resolved:
        recipe = recipe_loader.require(name, root)
        if recipe.name in installed:
            result.already_installed.append(recipe.name)
        elif all(queued.name != recipe.name for queued in to_apply):
            to_apply.append(recipe)

    if not to_apply:
        config.pending = []
        save_workspace_config(root, config)
        return result

    log_event(
        logger,
        logging.INFO,
        "manager.apply_started",
        order=[recipe.name for recipe in to_apply],
    )
    for recipe in to_apply:
        variables = resolve_variables(recipe.config, config.variables.get(recipe.name))
        effective_target = root if recipe.config.scope == "workspace" else target_dir
        result.outcomes[recipe.name] = generation_engine.apply(
            recipe.config,
            recipe_dir=recipe.path,
            target_dir=effective_target,
            variables=variables,
            project_name=config.name,
        )
        result.applied.append(
            InstalledRecipe(
                name=recipe.name,
                version=recipe.config.version,
                applied_at=utc_timestamp(),
                checksum=recipe.checksum,
            )
        )

    config.recipes.extend(result.applied)
    config.pending = []
    save_workspace_config(root, config)
    save_workspace_lock(root, build_lock(config))
    log_event(
        logger,
        logging.INFO,
        "manager.apply_completed",
        applied=[recipe.name for recipe in result.applied],
    )
    return result


def validate_workspace(
    root: Path,
    target_dir: Path,
    *,
    loader: RecipeLoader | None = None,
    engine: GenerationEngine | None = None,
    runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
) -> list[ValidationResult]:
    """Run ``pre_validate`` hooks and ``validates`` rules of installed recipes."""
    recipe_loader = loader or RecipeLoader()
    generation_engine = engine or GenerationEngine(runner=runner)
    config = require_workspace_config(root)

    results: list[ValidationResult] = []
    for installed in config.recipes:
        recipe = recipe_loader.load(installed.name, root)
        if recipe is None:
            log_event(logger, logging.WARNING, "manager.validate_missing", recipe=installed.name)
            continue
        effective_target = root if recipe.config.scope == "workspace" else target_dir
        generation_engine.run_hooks(
            recipe.config.hooks.pre_validate,
            cwd=effective_target,
            recipe_name=recipe.config.name,
            stage="pre_validate",
        )
        results.extend(validate_recipe(recipe.config, effective_target, runner=runner))
    return results


def collect_commands(
    root: Path,
    *,
    loader: RecipeLoader | None = None,
) -> dict[str, WorkspaceCommand]:
    """Gather commands of installed recipes; later recipes win on name clashes."""
    recipe_loader = loader or RecipeLoader()
    config = require_workspace_config(root)
    commands: dict[str, WorkspaceCommand] = {}
    for installed in config.recipes:
        recipe = recipe_loader.load(installed.name, root)
        if recipe is None:
            continue
        for command_name, spec in recipe.config.commands.items():
            commands[command_name] = WorkspaceCommand(
                name=command_name,
                run=spec.run,
                recipe=recipe.config.name,
                description=spec.description,
            )
    return commands
