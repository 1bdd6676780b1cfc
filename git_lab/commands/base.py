"""Base class and registry for commands."""

from __future__ import annotations

import argparse
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import git

from git_lab.cache import MetadataCache
from git_lab.config import build_providers
from git_lab.errors import NotInRepository
from git_lab.models import LOGGER_NAME, CommandContext, OutputFormat
from git_lab.store import KeyValueStore

# ---------------------------------------------------------------------------
# Command Registry
# ---------------------------------------------------------------------------

_command_registry: dict[str, type[Command]] = {}


def register_command(name: str, group: str | None = None):
    """Decorator to register a command class under a CLI subcommand name.

    Grouped commands are invoked as ``git lab <group> <name>``.
    """

    def decorator(cls):
        key = f"{group} {name}" if group else name
        _command_registry[key] = cls
        cls.command_name = key
        return cls

    return decorator


def get_command_registry() -> dict[str, type[Command]]:
    """Get the command registry."""
    return _command_registry


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


@dataclass
class Invocation:
    """The inputs of one process run: flags, environment and the two config scopes.

    ``output_format`` is resolved from the ``format`` key alone before any
    command runs.
    """

    flags: Mapping[str, Any]
    environ: Mapping[str, str]
    repo: git.Repo | None
    local_store: KeyValueStore
    global_store: KeyValueStore
    output_format: OutputFormat = OutputFormat.TEXT

    def providers(self) -> list:
        return build_providers(self.flags, self.environ, self.local_store, self.global_store)

    def cache(self, max_age: timedelta | None = None) -> MetadataCache | None:
        if self.repo is None:
            return None
        return MetadataCache.for_repository(self.repo, max_age)

    def require_repo(self) -> git.Repo:
        if self.repo is None:
            raise NotInRepository()
        return self.repo


# ---------------------------------------------------------------------------
# Command Base Class
# ---------------------------------------------------------------------------


class Command(ABC):
    """Base class for all commands."""

    command_name: str = ""
    # Resolve host/token and build a CommandContext before run()
    requires_config: bool = True
    # Fail with NotAttached when no project id is resolved
    requires_project: bool = False

    def __init__(self, args: argparse.Namespace, invocation: Invocation):
        self.args = args
        self.invocation = invocation
        self.logger = logging.getLogger(LOGGER_NAME)

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        """Add command-specific CLI arguments."""

    @abstractmethod
    def run(self, ctx: CommandContext | None) -> int:
        """Execute the command and return the process exit status."""
        ...

    def output_format(self, ctx: CommandContext | None) -> OutputFormat:
        if ctx is not None:
            return ctx.output_format
        return self.invocation.output_format

    def emit(self, ctx: CommandContext | None, data: Any, lines: list[str]) -> None:
        """Print ``data`` as JSON or ``lines`` as text, depending on the output format."""
        if self.output_format(ctx) == OutputFormat.JSON:
            print(json.dumps(data, indent=2))
        else:
            for line in lines:
                print(line)
