"""Dependency ordering and conflict screening for recipe sets."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from workspace.config import split_alternatives
from workspace.errors import CircularDependency, RecipeNotFound, UnsatisfiedDependency
from workspace.loader import LoadedRecipe, RecipeLoader
from workspace.logging_utils import log_event

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Conflict:
    """A recipe in a candidate set that declares a conflict with another member."""

    recipe: str
    conflicts_with: str

    def describe(self) -> str:
        return f"{self.recipe} conflicts with {self.conflicts_with}"


@dataclass(slots=True)
class _Frame:
    name: str
    requirements: Iterator[str] = field(repr=False)


def _unique(names: Iterable[str]) -> list[str]:
    ordered: list[str] = []
    seen: set[str] = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        ordered.append(name)
    return ordered


class DependencyResolver:
    """Topologically order recipes over their transitive ``requires`` graph."""

    def __init__(self, loader: RecipeLoader) -> None:
        self.loader = loader

    def resolve(self, names: Iterable[str], workspace_root: Path | None = None) -> list[str]:
        """Return names in application order, dependencies first.

        Independent requested names keep their input order. Alternations pick
        the first candidate that loads, in declared order.
        """
        requested = list(names)
        log_event(logger, logging.DEBUG, "resolver.resolve_started", requested=requested)

        order: list[str] = []
        seen: set[str] = set()
        for name in requested:
            if name in seen:
                continue
            self._visit(name, workspace_root, order=order, seen=seen)

        log_event(logger, logging.INFO, "resolver.resolve_completed", order=order)
        return order

    def _visit(
        self,
        root_name: str,
        workspace_root: Path | None,
        *,
        order: list[str],
        seen: set[str],
    ) -> None:
        visiting: set[str] = set()
        stack: list[_Frame] = []

        def enter(name: str) -> None:
            if name in visiting:
                raise CircularDependency(name, [frame.name for frame in stack])
            visiting.add(name)
            recipe = self.loader.load(name, workspace_root)
            if recipe is None:
                raise RecipeNotFound(name)
            stack.append(_Frame(name=name, requirements=iter(recipe.config.requires)))

        enter(root_name)
        while stack:
            frame = stack[-1]
            requirement = next(frame.requirements, None)
            if requirement is None:
                stack.pop()
                visiting.discard(frame.name)
                seen.add(frame.name)
                order.append(frame.name)
                continue

            candidate = self._select_alternative(requirement, frame.name, workspace_root)
            if candidate in seen:
                continue
            enter(candidate)

    def _select_alternative(
        self,
        requirement: str,
        required_by: str,
        workspace_root: Path | None,
    ) -> str:
        for candidate in split_alternatives(requirement):
            recipe: LoadedRecipe | None = self.loader.load(candidate, workspace_root)
            if recipe is not None:
                return candidate
        raise UnsatisfiedDependency(requirement, required_by)

    def check_conflicts(
        self,
        names: Iterable[str],
        workspace_root: Path | None = None,
    ) -> list[Conflict]:
        """Return every declared conflict between members of ``names``.

        The screen is not recursive and never raises for conflicts; the caller
        decides whether to abort. Members that cannot be loaded are skipped.
        """
        candidates = _unique(names)
        members = set(candidates)
        conflicts: list[Conflict] = []
        for name in candidates:
            recipe = self.loader.load(name, workspace_root)
            if recipe is None:
                continue
            for other in recipe.config.conflicts:
                if other != name and other in members:
                    conflicts.append(Conflict(recipe=name, conflicts_with=other))

        if conflicts:
            log_event(
                logger,
                logging.WARNING,
                "resolver.conflicts_detected",
                conflicts=[conflict.describe() for conflict in conflicts],
            )
        return conflicts
