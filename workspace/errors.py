"""Error taxonomy for recipe resolution and application."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from workspace.resolver import Conflict


class WorkspaceError(Exception):
    """Base class for all recipe engine failures."""


class ManifestInvalid(WorkspaceError):
    """A manifest was found but could not be parsed or lacks required fields."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid manifest at {path}: {detail}")


class MalformedReference(WorkspaceError):
    """A recipe reference string could not be parsed."""

    def __init__(self, reference: str, detail: str) -> None:
        self.reference = reference
        self.detail = detail
        super().__init__(f"Invalid recipe reference '{reference}': {detail}")


class RecipeNotFound(WorkspaceError):
    """No resolution location produced a manifest for a recipe."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Recipe not found: {name}")


class FetchFailed(WorkspaceError):
    """Cloning or updating a remote recipe source failed."""

    def __init__(self, repo: str, detail: str) -> None:
        self.repo = repo
        self.detail = detail
        super().__init__(f"Failed to fetch {repo}: {detail}")


class CircularDependency(WorkspaceError):
    """The requirement graph contains a cycle."""

    def __init__(self, name: str, chain: Sequence[str] = ()) -> None:
        self.name = name
        self.chain = list(chain)
        detail = " -> ".join([*self.chain, name]) if self.chain else name
        super().__init__(f"Circular dependency detected: {detail}")


class UnsatisfiedDependency(WorkspaceError):
    """No alternative of a requirement could be loaded."""

    def __init__(self, requirement: str, required_by: str) -> None:
        self.requirement = requirement
        self.required_by = required_by
        super().__init__(
            f"No available recipe satisfies dependency: {requirement} (required by {required_by})"
        )


class MissingTemplate(WorkspaceError):
    """A template rule references a file absent from the recipe directory."""

    def __init__(self, recipe: str, template_path: Path) -> None:
        self.recipe = recipe
        self.template_path = template_path
        super().__init__(f"Template not found for recipe '{recipe}': {template_path}")


class TemplateRenderError(WorkspaceError):
    """A template or inline string could not be rendered."""

    def __init__(self, recipe: str, rule_path: str, detail: str) -> None:
        self.recipe = recipe
        self.rule_path = rule_path
        self.detail = detail
        super().__init__(f"Failed to render '{rule_path}' for recipe '{recipe}': {detail}")


class HookFailed(WorkspaceError):
    """A recipe hook command exited with a non-zero status."""

    def __init__(self, recipe: str, command: str, returncode: int, stderr: str = "") -> None:
        self.recipe = recipe
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Hook failed for recipe '{recipe}' (exit {returncode}): {command}")


class InvalidMergeTarget(WorkspaceError):
    """An existing merge target is not a parseable structured document."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Cannot merge into {path}: {detail}")


class GenerationIOError(WorkspaceError):
    """Writing a generated file failed."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Failed to write {path}: {detail}")


class WorkspaceNotFound(WorkspaceError):
    """No workspace configuration exists at or above a directory."""

    def __init__(self, location: Path) -> None:
        self.location = location
        super().__init__(f"Not in a workspace: {location}. Run 'workspace init' first.")


class ConflictsDetected(WorkspaceError):
    """Conflict screening returned entries and the caller chose to abort."""

    def __init__(self, conflicts: Sequence[Conflict]) -> None:
        self.conflicts = list(conflicts)
        details = "; ".join(conflict.describe() for conflict in self.conflicts)
        super().__init__(f"Conflicts detected: {details}")
