"""Effective variable computation for recipe application."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from workspace.config import RecipeConfig


def resolve_variables(
    recipe: RecipeConfig,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Return the effective value of each declared variable.

    A workspace override wins over the declared default; ``None`` overrides fall
    back to the default. Declared types and options are not enforced.
    """
    stored = overrides or {}
    resolved: dict[str, Any] = {}
    for key, spec in recipe.variables.items():
        value = stored.get(key)
        resolved[key] = spec.default if value is None else value
    return resolved


def merge_stack_defaults(
    variables: Mapping[str, Mapping[str, Any]],
    defaults: Mapping[str, Mapping[str, Any]],
) -> dict[str, dict[str, Any]]:
    """Fold a stack's per-recipe defaults into workspace override maps."""
    merged = {recipe: dict(values) for recipe, values in variables.items()}
    for recipe, values in defaults.items():
        merged[recipe] = {**merged.get(recipe, {}), **values}
    return merged
