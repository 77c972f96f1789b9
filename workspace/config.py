"""Configuration models for declarative recipe and stack manifests."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from workspace.errors import ManifestInvalid

Scope = Literal["worktree", "workspace"]
VariableType = Literal["string", "number", "boolean"]
RuleKind = Literal["template", "content", "append", "merge"]
ScalarValue = str | int | float | bool
ALTERNATIVE_SEPARATOR = "|"


class VariableSpec(BaseModel):
    """Declared recipe variable; type and options are descriptive only."""

    model_config = ConfigDict(extra="forbid")

    type: VariableType = "string"
    default: ScalarValue | None = None
    description: str | None = None
    options: list[str | int | float] | None = None


class WhenCondition(BaseModel):
    """File-existence gates evaluated relative to the target directory."""

    model_config = ConfigDict(extra="forbid")

    file_exists: str | None = None
    file_not_exists: str | None = None


class GenerateRule(BaseModel):
    """One instruction to produce or modify a file at apply time."""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1)
    template: str | None = None
    content: str | None = None
    append: str | None = None
    merge: dict[str, Any] | None = None
    overwrite: bool = True
    when: WhenCondition | None = None

    @model_validator(mode="after")
    def validate_single_kind(self) -> GenerateRule:
        """Require exactly one of template, content, append, or merge."""
        defined = [
            kind
            for kind in ("template", "content", "append", "merge")
            if getattr(self, kind) is not None
        ]
        if len(defined) != 1:
            found = ", ".join(defined) or "none"
            raise ValueError(
                f"generate rule for '{self.path}' must define exactly one of "
                f"template, content, append, merge (found: {found})"
            )
        return self

    @property
    def kind(self) -> RuleKind:
        """Return which generation kind this rule uses."""
        if self.template is not None:
            return "template"
        if self.content is not None:
            return "content"
        if self.append is not None:
            return "append"
        return "merge"


class CommandSpec(BaseModel):
    """Named command a recipe contributes to the workspace."""

    model_config = ConfigDict(extra="forbid")

    run: str
    description: str | None = None


class HookCommand(BaseModel):
    """Shell command run at a lifecycle point."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1)


class RecipeHooks(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pre_apply: list[HookCommand] = Field(default_factory=list)
    post_apply: list[HookCommand] = Field(default_factory=list)
    pre_validate: list[HookCommand] = Field(default_factory=list)


class DetectRule(BaseModel):
    """Heuristic used by callers to suggest a recipe for an existing repo."""

    model_config = ConfigDict(extra="forbid")

    file: str | None = None
    contains: list[str] | None = None
    command: str | None = None
    expect: str | None = None


class FileExistsCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check: Literal["file_exists"]
    path: str
    message: str


class FileContainsCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check: Literal["file_contains"]
    path: str
    contains: str
    message: str


class CommandSucceedsCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check: Literal["command_succeeds"]
    command: str
    message: str


class JsonFieldCheck(BaseModel):
    """Check that a dotted field exists in a JSON file, optionally with a value."""

    model_config = ConfigDict(extra="forbid")

    check: Literal["json_field"]
    path: str
    field: str
    equals: Any = None
    message: str


ValidateRule = Annotated[
    FileExistsCheck | FileContainsCheck | CommandSucceedsCheck | JsonFieldCheck,
    Field(discriminator="check"),
]


class FileContainsAssertion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    contains: str


class JsonFieldAssertion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    field: str
    equals: Any = None
    contains: str | None = None


class RecipeTest(BaseModel):
    """Typed ``tests`` extension consumed by the external recipe test runner."""

    model_config = ConfigDict(extra="forbid")

    name: str
    assert_file_exists: str | None = None
    assert_file_not_exists: str | None = None
    assert_file_contains: FileContainsAssertion | None = None
    assert_json_field: JsonFieldAssertion | None = None
    assert_command_succeeds: str | None = None
    assert_command_fails: str | None = None


class RecipeConfig(BaseModel):
    """Top-level recipe manifest loaded from ``recipe.yaml``."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str = ""
    author: str | None = None
    license: str | None = None
    repository: str | None = None
    tags: list[str] = Field(default_factory=list)
    scope: Scope = "worktree"
    detect: list[DetectRule] = Field(default_factory=list)
    detect_any: list[DetectRule] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    suggests: list[str] = Field(default_factory=list)
    variables: dict[str, VariableSpec] = Field(default_factory=dict)
    generates: list[GenerateRule] = Field(default_factory=list)
    commands: dict[str, CommandSpec] = Field(default_factory=dict)
    validates: list[ValidateRule] = Field(default_factory=list)
    hooks: RecipeHooks = Field(default_factory=RecipeHooks)
    tests: list[RecipeTest] = Field(default_factory=list)


class StackConfig(BaseModel):
    """Recipe bundle loaded from ``stack.yaml``."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str = ""
    type: Literal["stack"] = "stack"
    includes: list[str] = Field(default_factory=list)
    defaults: dict[str, dict[str, Any]] = Field(default_factory=dict)


def split_alternatives(requirement: str) -> list[str]:
    """Split ``a|b|c`` into candidate names, preserving declared order."""
    return [
        candidate.strip()
        for candidate in requirement.split(ALTERNATIVE_SEPARATOR)
        if candidate.strip()
    ]


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        messages.append(f"{location}: {error['msg']}")
    return "; ".join(messages)


def parse_recipe_config(data: Mapping[str, object], path: Path) -> RecipeConfig:
    """Validate recipe manifest data, raising ``ManifestInvalid`` on failure."""
    try:
        return RecipeConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ManifestInvalid(path, _format_validation_error(exc)) from exc


def parse_stack_config(data: Mapping[str, object], path: Path) -> StackConfig:
    """Validate stack manifest data, raising ``ManifestInvalid`` on failure."""
    try:
        return StackConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ManifestInvalid(path, _format_validation_error(exc)) from exc
