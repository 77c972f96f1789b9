"""Recipe reference parsing into typed source descriptors."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal

from workspace.errors import MalformedReference

SourceType = Literal["local", "git"]
GITHUB_SHORTHAND_PREFIX = "github:"
REGISTRY_ENV = "WORKSPACE_REGISTRY"
REGISTRY_REF_ENV = "WORKSPACE_REGISTRY_REF"
DEFAULT_REGISTRY = "https://github.com/agent-workspace/recipes.git"
DEFAULT_REF = "main"
_LOCAL_PREFIXES = ("./", "../", "/")
_SSH_PREFIXES = ("git@", "ssh://")
_HTTP_PREFIXES = ("https://", "http://")
_GITHUB_URL_PATTERN = re.compile(
    r"^https?://github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?"
    r"(?:/tree/(?P<ref>[^/]+)/(?P<subpath>.+?))?/?$"
)


@dataclass(slots=True, frozen=True)
class RecipeSource:
    """Where a recipe manifest should be looked up."""

    type: SourceType
    name: str
    path: str | None = None
    repo: str | None = None
    ref: str | None = None
    subpath: str | None = None


def default_registry() -> str:
    """Return the registry repository searched for bare recipe names."""
    configured = os.environ.get(REGISTRY_ENV)
    if configured is not None and configured.strip():
        return configured.strip()
    return DEFAULT_REGISTRY


def default_ref() -> str:
    """Return the branch used when a reference does not name one."""
    configured = os.environ.get(REGISTRY_REF_ENV)
    if configured is not None and configured.strip():
        return configured.strip()
    return DEFAULT_REF


def _repo_name_from_url(url: str) -> str:
    last = url.rstrip("/").split("/")[-1]
    last = last.split(":")[-1]
    return last.removesuffix(".git") or url


def _parse_github_shorthand(reference: str) -> RecipeSource:
    parts = reference.removeprefix(GITHUB_SHORTHAND_PREFIX).split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise MalformedReference(reference, "expected github:owner/repo[/path]")
    owner, repo, *subpath_parts = parts
    subpath_parts = [part for part in subpath_parts if part]
    subpath = "/".join(subpath_parts) if subpath_parts else None
    return RecipeSource(
        type="git",
        name=subpath_parts[-1] if subpath_parts else repo,
        repo=f"https://github.com/{owner}/{repo}.git",
        ref=default_ref(),
        subpath=subpath,
    )


def parse_recipe_ref(reference: str) -> RecipeSource:
    """Parse a recipe reference string into a source descriptor.

    Supported forms, checked in order:

    * ``./recipe``, ``../recipe``, ``/abs/recipe`` - local directory
    * ``github:owner/repo[/sub/path]`` - GitHub shorthand
    * ``git@host:owner/repo.git`` or ``ssh://...`` - SSH git URL
    * ``https://github.com/owner/repo/tree/<ref>/<path>`` or any HTTPS git URL
    * ``name`` - subdirectory of the default registry
    """
    value = reference.strip()

    if value.startswith(_LOCAL_PREFIXES):
        name = value.rstrip("/").split("/")[-1] or value
        return RecipeSource(type="local", name=name, path=value)

    if value.startswith(GITHUB_SHORTHAND_PREFIX):
        return _parse_github_shorthand(value)

    if value.startswith(_SSH_PREFIXES):
        return RecipeSource(
            type="git",
            name=_repo_name_from_url(value),
            repo=value,
            ref=default_ref(),
        )

    if value.startswith(_HTTP_PREFIXES):
        match = _GITHUB_URL_PATTERN.match(value)
        if match is not None:
            subpath = match.group("subpath")
            return RecipeSource(
                type="git",
                name=subpath.split("/")[-1] if subpath else match.group("repo"),
                repo=f"https://github.com/{match.group('owner')}/{match.group('repo')}.git",
                ref=match.group("ref") or default_ref(),
                subpath=subpath,
            )
        return RecipeSource(
            type="git",
            name=_repo_name_from_url(value),
            repo=value,
            ref=default_ref(),
        )

    return RecipeSource(
        type="git",
        name=value,
        repo=default_registry(),
        ref=default_ref(),
        subpath=value,
    )
