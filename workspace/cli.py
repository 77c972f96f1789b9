"""Command line interface for workspace recipe workflows."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import typer

from workspace import __version__
from workspace.errors import ConflictsDetected, WorkspaceError, WorkspaceNotFound
from workspace.fetcher import clear_cache
from workspace.loader import RecipeLoader
from workspace.logging_utils import start_operation
from workspace.manager import (
    AddResult,
    add_recipe,
    apply_pending,
    collect_commands,
    init_workspace,
    validate_workspace,
)
from workspace.paths import default_cache_dir, find_workspace_root, resolve_target_dir

app = typer.Typer(
    no_args_is_help=True,
    help="Workspace recipe management CLI.",
    add_completion=False,
)
cache_app = typer.Typer(no_args_is_help=True, help="Remote recipe cache commands.")
app.add_typer(cache_app, name="cache")


def _fail(message: str) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


def _loader(recipes_dir: Path | None) -> RecipeLoader:
    return RecipeLoader(builtin_dir=recipes_dir)


def _workspace_root(root: Path | None) -> Path:
    if root is not None:
        return root
    found = find_workspace_root(Path.cwd())
    if found is None:
        raise WorkspaceNotFound(Path.cwd())
    return found


def _print_add_result(result: AddResult) -> None:
    label = f"stack '{result.stack}'" if result.stack else f"recipe '{result.requested}'"
    if result.description:
        typer.echo(f"{label}: {result.description}")
    for name in result.added:
        typer.echo(f"  + {name} (pending)")
    for name in result.already_installed:
        typer.echo(f"  = {name} (already installed)")
    for name in result.already_pending:
        typer.echo(f"  = {name} (already pending)")
    if result.commands:
        typer.echo("Commands:")
        for command_name, spec in result.commands.items():
            typer.echo(f"  {command_name}: {spec.run}")
    if result.suggests:
        typer.echo(f"Suggested: {', '.join(result.suggests)}")
    if result.added:
        typer.echo("Run 'workspace apply' to materialize pending recipes.")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress events."),
) -> None:
    """Configure logging and the operation id for this invocation."""
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    if verbose:
        logging.getLogger("workspace").setLevel(logging.INFO)
    start_operation()


@app.command("version")
def version_command() -> None:
    """Print the installed version."""
    typer.echo(__version__)


@app.command("init")
def init_command(
    name: str | None = typer.Argument(None, help="Workspace name (defaults to directory name)."),
    root: Path = typer.Option(
        Path("."),
        "--root",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Workspace root directory.",
    ),
    stack: str | None = typer.Option(None, "--stack", help="Stack to queue after init."),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
) -> None:
    """Create .workspace/config.yaml in the workspace root."""
    workspace_name = name or root.name
    try:
        config = init_workspace(root, workspace_name, stack=stack, loader=_loader(recipes_dir))
    except WorkspaceError as exc:
        raise _fail(str(exc)) from exc
    typer.echo(f"Initialized workspace '{config.name}' at {root}")
    if config.pending:
        typer.echo(f"Pending: {', '.join(config.pending)}")


@app.command("add")
def add_command(
    name: str = typer.Argument(..., help="Recipe or stack name, path, or git reference."),
    root: Path | None = typer.Option(
        None,
        "--root",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Workspace root (defaults to the enclosing workspace).",
    ),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
) -> None:
    """Queue a recipe or stack for the next apply."""
    try:
        workspace_root = _workspace_root(root)
        result = add_recipe(workspace_root, name, loader=_loader(recipes_dir))
    except ConflictsDetected as exc:
        for conflict in exc.conflicts:
            typer.secho(f"  {conflict.describe()}", fg=typer.colors.RED, err=True)
        raise _fail("Remove the conflicting recipe first.") from exc
    except WorkspaceError as exc:
        raise _fail(str(exc)) from exc
    _print_add_result(result)


@app.command("apply")
def apply_command(
    root: Path | None = typer.Option(
        None,
        "--root",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Workspace root (defaults to the enclosing workspace).",
    ),
    target: Path | None = typer.Option(
        None,
        "--target",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Worktree for worktree-scoped recipes (defaults from the current directory).",
    ),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
) -> None:
    """Resolve and apply every pending recipe."""
    loader = _loader(recipes_dir)
    try:
        workspace_root = _workspace_root(root)
        target_dir = target or resolve_target_dir(workspace_root, Path.cwd())
        result = apply_pending(workspace_root, target_dir, loader=loader)
        commands = collect_commands(workspace_root, loader=loader) if result.applied else {}
    except WorkspaceError as exc:
        raise _fail(str(exc)) from exc

    if not result.applied:
        typer.echo("Nothing to apply.")
        return
    for installed in result.applied:
        typer.echo(f"Applied {installed.name}@{installed.version}")
        for outcome in result.outcomes.get(installed.name, []):
            suffix = f" ({outcome.reason})" if outcome.reason else ""
            typer.echo(f"  {outcome.action}: {outcome.path}{suffix}")
    if commands:
        typer.echo("Commands:")
        for command in commands.values():
            typer.echo(f"  {command.name}: {command.run}")


@app.command("list")
def list_command(
    root: Path | None = typer.Option(
        None,
        "--root",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Workspace root whose local recipes are included.",
    ),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON."),
) -> None:
    """List available recipes and stacks."""
    workspace_root = root or find_workspace_root(Path.cwd())
    names = _loader(recipes_dir).list_available(workspace_root)
    if json_output:
        typer.echo(json.dumps(names, indent=2))
        return
    if not names:
        typer.echo("No recipes found.")
        return
    for name in names:
        typer.echo(name)


@app.command("info")
def info_command(
    name: str = typer.Argument(..., help="Recipe name, path, or git reference."),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON."),
) -> None:
    """Show a recipe manifest."""
    loader = _loader(recipes_dir)
    workspace_root = find_workspace_root(Path.cwd())
    try:
        recipe = loader.require(name, workspace_root)
    except WorkspaceError as exc:
        raise _fail(str(exc)) from exc

    config = recipe.config
    if json_output:
        payload: dict[str, Any] = config.model_dump(mode="json", exclude_none=True)
        payload["path"] = str(recipe.path)
        payload["checksum"] = recipe.checksum
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"{config.name}@{config.version} ({config.scope})")
    if config.description:
        typer.echo(f"  {config.description}")
    typer.echo(f"  path: {recipe.path}")
    if config.requires:
        typer.echo(f"  requires: {', '.join(config.requires)}")
    if config.conflicts:
        typer.echo(f"  conflicts: {', '.join(config.conflicts)}")
    for variable_name, spec in config.variables.items():
        typer.echo(f"  variable {variable_name} ({spec.type}) default={spec.default}")


@app.command("validate")
def validate_command(
    root: Path | None = typer.Option(
        None,
        "--root",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Workspace root (defaults to the enclosing workspace).",
    ),
    target: Path | None = typer.Option(
        None,
        "--target",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Worktree to validate (defaults from the current directory).",
    ),
    recipes_dir: Path | None = typer.Option(
        None,
        "--recipes-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Built-in recipe directory (defaults to WORKSPACE_RECIPES_DIR).",
    ),
) -> None:
    """Run validation rules of installed recipes."""
    try:
        workspace_root = _workspace_root(root)
        target_dir = target or resolve_target_dir(workspace_root, Path.cwd())
        results = validate_workspace(workspace_root, target_dir, loader=_loader(recipes_dir))
    except WorkspaceError as exc:
        raise _fail(str(exc)) from exc

    if not results:
        typer.echo("No validation rules to run.")
        return
    for item in results:
        status = "ok" if item.passed else "FAIL"
        typer.echo(f"[{status}] {item.recipe} {item.check}: {item.message}")
    failed = [item for item in results if not item.passed]
    if failed:
        raise _fail(f"{len(failed)} validation check(s) failed.")


@cache_app.command("clear")
def cache_clear_command(
    cache_dir: Path | None = typer.Option(
        None,
        "--cache-dir",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Cache directory (defaults to WORKSPACE_CACHE_DIR).",
    ),
) -> None:
    """Remove every cached remote recipe checkout."""
    target = cache_dir or default_cache_dir()
    if clear_cache(target):
        typer.echo(f"Removed {target}")
    else:
        typer.echo(f"No cache at {target}")


def main() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
