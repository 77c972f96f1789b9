"""Generation engine that materializes recipe rules onto a target directory."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from time import perf_counter
from typing import Any, Literal

import yaml
from jinja2 import ChainableUndefined, Environment, TemplateError

from workspace.config import GenerateRule, HookCommand, RecipeConfig
from workspace.errors import (
    GenerationIOError,
    HookFailed,
    InvalidMergeTarget,
    MissingTemplate,
    TemplateRenderError,
)
from workspace.logging_utils import log_event

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., subprocess.CompletedProcess[str]]
RuleAction = Literal["written", "appended", "merged", "unchanged", "skipped"]
HookStage = Literal["pre_apply", "post_apply", "pre_validate"]
YAML_SUFFIXES = {".yaml", ".yml"}

_TEMPLATES = Environment(
    autoescape=False,
    undefined=ChainableUndefined,
    keep_trailing_newline=True,
)


@dataclass(slots=True)
class RuleOutcome:
    """What happened to one generate rule during apply."""

    path: str
    action: RuleAction
    reason: str | None = None


def render_template(source: str, context: Mapping[str, Any]) -> str:
    """Render ``{{ name }}`` interpolations; undefined names and paths render empty."""
    return _TEMPLATES.from_string(source).render(**context)


def deep_merge(target: Mapping[str, Any], payload: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``payload`` into a copy of ``target``.

    Nested mappings present on both sides merge key by key; any other value
    from ``payload`` (including lists) replaces the existing one.
    """
    result = dict(target)
    for key, value in payload.items():
        existing = result.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            result[key] = deep_merge(existing, value)
        else:
            result[key] = value
    return result


def _read_structured(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidMergeTarget(path, str(exc)) from exc
    if not text.strip():
        return {}
    try:
        if path.suffix in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise InvalidMergeTarget(path, f"not a parseable document: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidMergeTarget(path, "top-level value must be an object")
    return data


def _dump_structured(path: Path, data: Mapping[str, Any]) -> str:
    if path.suffix in YAML_SUFFIXES:
        return yaml.safe_dump(dict(data), sort_keys=False, default_flow_style=False)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _write_text(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise GenerationIOError(path, str(exc)) from exc


class GenerationEngine:
    """Apply a recipe's hooks and generate rules, in declared order.

    There is no rollback: if a hook or rule fails, everything applied before it
    stays on disk.
    """

    def __init__(
        self,
        *,
        runner: ProcessRunner | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._runner = runner or subprocess.run
        self._clock = clock or (lambda: datetime.now(UTC))

    def apply(
        self,
        recipe: RecipeConfig,
        *,
        recipe_dir: Path,
        target_dir: Path,
        variables: Mapping[str, Any],
        project_name: str,
    ) -> list[RuleOutcome]:
        started = perf_counter()
        log_event(
            logger,
            logging.INFO,
            "engine.apply_started",
            recipe=recipe.name,
            target_dir=str(target_dir),
            rule_count=len(recipe.generates),
        )
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise GenerationIOError(target_dir, str(exc)) from exc

        self.run_hooks(
            recipe.hooks.pre_apply,
            cwd=target_dir,
            recipe_name=recipe.name,
            stage="pre_apply",
        )
        outcomes = [
            self.apply_rule(
                rule,
                recipe=recipe,
                recipe_dir=recipe_dir,
                target_dir=target_dir,
                variables=variables,
                project_name=project_name,
            )
            for rule in recipe.generates
        ]
        self.run_hooks(
            recipe.hooks.post_apply,
            cwd=target_dir,
            recipe_name=recipe.name,
            stage="post_apply",
        )

        log_event(
            logger,
            logging.INFO,
            "engine.apply_completed",
            recipe=recipe.name,
            elapsed_ms=int((perf_counter() - started) * 1000),
            skipped=sum(1 for outcome in outcomes if outcome.action == "skipped"),
        )
        return outcomes

    def run_hooks(
        self,
        hooks: list[HookCommand],
        *,
        cwd: Path,
        recipe_name: str,
        stage: HookStage,
    ) -> None:
        """Run hook commands through ``sh -c``; the first non-zero exit aborts."""
        for hook in hooks:
            log_event(
                logger,
                logging.INFO,
                "engine.hook_started",
                recipe=recipe_name,
                stage=stage,
                command=hook.command,
            )
            try:
                proc = self._runner(
                    ["sh", "-c", hook.command],
                    cwd=str(cwd),
                    check=False,
                    capture_output=True,
                    text=True,
                )
            except FileNotFoundError as exc:
                raise HookFailed(
                    recipe_name,
                    hook.command,
                    127,
                    f"command not found: {exc.filename}",
                ) from exc
            if proc.returncode != 0:
                stderr = (proc.stderr or "").strip()
                log_event(
                    logger,
                    logging.ERROR,
                    "engine.hook_failed",
                    recipe=recipe_name,
                    stage=stage,
                    command=hook.command,
                    exit_code=proc.returncode,
                )
                raise HookFailed(recipe_name, hook.command, proc.returncode, stderr)

    def apply_rule(
        self,
        rule: GenerateRule,
        *,
        recipe: RecipeConfig,
        recipe_dir: Path,
        target_dir: Path,
        variables: Mapping[str, Any],
        project_name: str,
    ) -> RuleOutcome:
        """Apply a single generate rule and report what happened."""
        target_path = target_dir / rule.path

        skip_reason = self._skip_reason(rule, target_dir, target_path)
        if skip_reason is not None:
            log_event(
                logger,
                logging.DEBUG,
                "engine.rule_skipped",
                recipe=recipe.name,
                path=rule.path,
                reason=skip_reason,
            )
            return RuleOutcome(path=rule.path, action="skipped", reason=skip_reason)

        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise GenerationIOError(target_path.parent, str(exc)) from exc

        context: dict[str, Any] = {
            **variables,
            "project_name": project_name,
            "recipe_name": recipe.name,
        }
        if rule.kind == "template":
            outcome = self._apply_template(rule, recipe, recipe_dir, target_path, context)
        elif rule.kind == "content":
            _write_text(target_path, self._render(rule.content or "", context, recipe, rule))
            outcome = RuleOutcome(path=rule.path, action="written")
        elif rule.kind == "append":
            outcome = self._apply_append(rule, recipe, target_path, context)
        else:
            merged = deep_merge(_read_structured(target_path), rule.merge or {})
            _write_text(target_path, _dump_structured(target_path, merged))
            outcome = RuleOutcome(path=rule.path, action="merged")

        log_event(
            logger,
            logging.DEBUG,
            "engine.rule_applied",
            recipe=recipe.name,
            path=rule.path,
            kind=rule.kind,
            action=outcome.action,
        )
        return outcome

    @staticmethod
    def _skip_reason(rule: GenerateRule, target_dir: Path, target_path: Path) -> str | None:
        if rule.when is not None:
            if rule.when.file_exists and not (target_dir / rule.when.file_exists).exists():
                return "condition not met (file_exists)"
            if rule.when.file_not_exists and (target_dir / rule.when.file_not_exists).exists():
                return "condition not met (file_not_exists)"
        if target_path.exists() and not rule.overwrite and rule.kind not in {"append", "merge"}:
            return "already exists (overwrite: false)"
        return None

    @staticmethod
    def _render(
        source: str,
        context: Mapping[str, Any],
        recipe: RecipeConfig,
        rule: GenerateRule,
    ) -> str:
        try:
            return render_template(source, context)
        except TemplateError as exc:
            raise TemplateRenderError(recipe.name, rule.path, str(exc)) from exc

    def _apply_template(
        self,
        rule: GenerateRule,
        recipe: RecipeConfig,
        recipe_dir: Path,
        target_path: Path,
        context: dict[str, Any],
    ) -> RuleOutcome:
        template_path = recipe_dir / (rule.template or "")
        if not template_path.is_file():
            raise MissingTemplate(recipe.name, template_path)
        template_context = {
            **context,
            "recipe_version": recipe.version,
            "generation_timestamp": self._clock().isoformat(),
        }
        source = template_path.read_text(encoding="utf-8")
        _write_text(target_path, self._render(source, template_context, recipe, rule))
        return RuleOutcome(path=rule.path, action="written")

    def _apply_append(
        self,
        rule: GenerateRule,
        recipe: RecipeConfig,
        target_path: Path,
        context: dict[str, Any],
    ) -> RuleOutcome:
        rendered = self._render(rule.append or "", context, recipe, rule)
        existing = ""
        if target_path.exists():
            try:
                existing = target_path.read_text(encoding="utf-8")
            except OSError as exc:
                raise GenerationIOError(target_path, str(exc)) from exc
        if rendered.strip() in existing:
            return RuleOutcome(path=rule.path, action="unchanged", reason="already present")
        _write_text(target_path, existing + rendered)
        return RuleOutcome(path=rule.path, action="appended")
