"""CLI package for querying and running the telemetry service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# The Typer application lives in ``cli.app``. It is not re-exported from the
# package root so that ``cli.app`` keeps resolving to the module; tests patch
# ``cli.app.ApiClient`` and ``cli.app.build_default_supervisor`` through that path.

__all__ = []
