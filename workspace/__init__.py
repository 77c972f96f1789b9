"""Agent workspace package."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("agent-workspace")
except PackageNotFoundError:
    __version__ = "0.1.0"
