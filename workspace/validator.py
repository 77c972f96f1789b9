"""Post-apply validation of recipe ``validates`` rules."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from workspace.config import (
    CommandSucceedsCheck,
    FileContainsCheck,
    FileExistsCheck,
    JsonFieldCheck,
    RecipeConfig,
    ValidateRule,
)
from workspace.logging_utils import log_event

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(slots=True)
class ValidationResult:
    """Outcome of one validation rule."""

    recipe: str
    check: str
    passed: bool
    message: str


def _lookup_field(document: Any, dotted: str) -> Any:
    value = document
    for part in dotted.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _check_file_exists(rule: FileExistsCheck, target_dir: Path) -> tuple[bool, str]:
    if (target_dir / rule.path).exists():
        return True, f"{rule.path} exists"
    return False, rule.message


def _check_file_contains(rule: FileContainsCheck, target_dir: Path) -> tuple[bool, str]:
    path = target_dir / rule.path
    if not path.is_file():
        return False, f"File not found: {rule.path}"
    if rule.contains in path.read_text(encoding="utf-8", errors="replace"):
        return True, f"{rule.path} contains expected content"
    return False, rule.message


def _check_command(
    rule: CommandSucceedsCheck,
    target_dir: Path,
    runner: Callable[..., subprocess.CompletedProcess[str]],
) -> tuple[bool, str]:
    try:
        proc = runner(
            ["sh", "-c", rule.command],
            cwd=str(target_dir),
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return False, rule.message
    if proc.returncode == 0:
        return True, rule.command
    return False, rule.message


def _check_json_field(rule: JsonFieldCheck, target_dir: Path) -> tuple[bool, str]:
    path = target_dir / rule.path
    if not path.is_file():
        return False, f"File not found: {rule.path}"
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return False, f"Invalid JSON: {rule.path}"

    value = _lookup_field(document, rule.field)
    if value is _MISSING:
        return False, rule.message
    if "equals" in rule.model_fields_set:
        if value == rule.equals:
            return True, f"{rule.path}:{rule.field} = {rule.equals}"
        return False, rule.message
    return True, f"{rule.path}:{rule.field} exists"


def validate_rule(
    rule: ValidateRule,
    target_dir: Path,
    *,
    runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
) -> tuple[bool, str]:
    """Evaluate one rule against ``target_dir``."""
    if isinstance(rule, FileExistsCheck):
        return _check_file_exists(rule, target_dir)
    if isinstance(rule, FileContainsCheck):
        return _check_file_contains(rule, target_dir)
    if isinstance(rule, CommandSucceedsCheck):
        return _check_command(rule, target_dir, runner or subprocess.run)
    return _check_json_field(rule, target_dir)


def validate_recipe(
    recipe: RecipeConfig,
    target_dir: Path,
    *,
    runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
) -> list[ValidationResult]:
    """Run every ``validates`` rule of ``recipe`` in declared order."""
    results: list[ValidationResult] = []
    for rule in recipe.validates:
        passed, message = validate_rule(rule, target_dir, runner=runner)
        results.append(
            ValidationResult(recipe=recipe.name, check=rule.check, passed=passed, message=message)
        )
    log_event(
        logger,
        logging.INFO,
        "validator.recipe_checked",
        recipe=recipe.name,
        passed=sum(1 for result in results if result.passed),
        failed=sum(1 for result in results if not result.passed),
    )
    return results
