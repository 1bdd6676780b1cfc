"""Local key-value store backed by git-config files.

Local scope is the repository's own ``config`` file, global scope is the user's
``~/.gitconfig``. Every key lives in the ``gitlab`` section; a dotted key such as
``tls.verify`` is stored in a subsection::

    [gitlab]
        host = https://gitlab.example.com
    [gitlab "tls"]
        verify = false
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

import git
from git.config import GitConfigParser, get_config_path

from git_lab.errors import NotInRepository
from git_lab.models import CONFIG_SECTION, LOGGER_NAME, Scope

logger = logging.getLogger(LOGGER_NAME)


class KeyValueStore(Protocol):
    scope: Scope

    @property
    def writable(self) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def unset(self, key: str) -> bool: ...

    def items(self) -> dict[str, str]: ...


def split_key(key: str) -> tuple[str, str]:
    """Return the git-config (section, option) pair for a logical key."""
    subsection, _, option = key.rpartition(".")
    if not option:
        raise ValueError(f"Invalid key: {key!r}")
    if subsection:
        return f'{CONFIG_SECTION} "{subsection}"', option
    return CONFIG_SECTION, option


def join_key(section: str, option: str) -> str | None:
    """Inverse of :func:`split_key`; None for sections outside ``gitlab``."""
    if section == CONFIG_SECTION:
        return option
    prefix = f'{CONFIG_SECTION} "'
    if section.startswith(prefix) and section.endswith('"'):
        return f"{section[len(prefix):-1]}.{option}"
    return None


def find_repository(path: str | os.PathLike | None = None) -> git.Repo | None:
    """Open the repository containing ``path`` (default: cwd), searching parent directories."""
    try:
        return git.Repo(path or os.getcwd(), search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        logger.debug(f"No git repository found from {path or os.getcwd()}")
        return None


class GitConfigStore:
    """One scope of git configuration, restricted to the ``gitlab`` section."""

    def __init__(self, scope: Scope, repo: git.Repo | None = None, path: str | os.PathLike | None = None):
        self.scope = scope
        self.repo = repo
        if path is not None:
            self.path: Path | None = Path(path)
        elif scope == Scope.GLOBAL:
            self.path = Path(get_config_path("global"))
        elif repo is not None:
            self.path = Path(repo.git_dir) / "config"
        else:
            self.path = None

    def __repr__(self) -> str:
        return f"GitConfigStore({self.scope.value}, {self.path})"

    @property
    def writable(self) -> bool:
        return self.path is not None

    def get(self, key: str) -> str | None:
        if self.path is None:
            return None
        section, option = split_key(key)
        with GitConfigParser(str(self.path), read_only=True) as reader:
            if not reader.has_option(section, option):
                return None
            return reader.get(section, option)

    def set(self, key: str, value: str) -> None:
        section, option = split_key(key)
        with self._writer() as writer:
            writer.set_value(section, option, value)
        logger.debug(f"Wrote {CONFIG_SECTION}.{key} to {self.scope.value} config {self.path}")

    def unset(self, key: str) -> bool:
        if self.path is None or not self.path.exists():
            return False
        section, option = split_key(key)
        with self._writer() as writer:
            if not writer.has_option(section, option):
                return False
            writer.remove_option(section, option)
            if not _options(writer, section):
                writer.remove_section(section)
        logger.debug(f"Removed {CONFIG_SECTION}.{key} from {self.scope.value} config {self.path}")
        return True

    def items(self) -> dict[str, str]:
        if self.path is None:
            return {}
        values = {}
        with GitConfigParser(str(self.path), read_only=True) as reader:
            for section in reader.sections():
                for option in _options(reader, section):
                    key = join_key(section, option)
                    if key is not None:
                        values[key] = reader.get(section, option)
        return values

    def _writer(self) -> GitConfigParser:
        if self.path is None:
            raise NotInRepository(f"Cannot write {self.scope.value} configuration outside a git repository.")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return GitConfigParser(str(self.path), read_only=False)


def _options(parser: GitConfigParser, section: str) -> list[str]:
    return [option for option in parser.options(section) if option != "__name__"]


class MemoryStore:
    """Dict-backed store with the same interface, for callers that do not want files."""

    def __init__(self, scope: Scope, values: dict[str, str] | None = None, writable: bool = True):
        self.scope = scope
        self.values = dict(values or {})
        self._writable = writable

    def __repr__(self) -> str:
        return f"MemoryStore({self.scope.value}, {self.values})"

    @property
    def writable(self) -> bool:
        return self._writable

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        if not self._writable:
            raise NotInRepository(f"Cannot write {self.scope.value} configuration outside a git repository.")
        self.values[key] = value

    def unset(self, key: str) -> bool:
        return self.values.pop(key, None) is not None

    def items(self) -> dict[str, str]:
        return dict(self.values)


def open_stores(path: str | os.PathLike | None = None) -> tuple[git.Repo | None, GitConfigStore, GitConfigStore]:
    """Return (repo, local store, global store) for the working directory."""
    repo = find_repository(path)
    return repo, GitConfigStore(Scope.LOCAL, repo), GitConfigStore(Scope.GLOBAL)
