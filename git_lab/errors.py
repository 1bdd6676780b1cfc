"""Error taxonomy for git-lab.

Every error carries a stable ``exit_code`` per category so that scripts can
branch on the kind of failure:

    ConfigError     3
    DiscoveryError  4
    AttachError     5
    CacheError      6
    ContextError    7
"""

from __future__ import annotations

from collections.abc import Iterable

from git_lab.models import ConfigSource, env_var_name


class GitLabCliError(Exception):
    exit_code = 1


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(GitLabCliError):
    exit_code = 3


class MissingCredentials(ConfigError):
    """Required keys are absent from every configuration source."""

    def __init__(self, missing: Iterable[str], consulted: Iterable[ConfigSource]):
        self.missing = list(missing)
        self.consulted = list(consulted)
        hints = "; ".join(
            f"'{key}' (set it with `git lab init`, `git config --global gitlab.{key}` "
            f"or the {env_var_name(key)} environment variable)"
            for key in self.missing
        )
        sources = ", ".join(source.value for source in self.consulted)
        super().__init__(f"Missing required configuration: {hints}. Sources consulted: {sources}.")


class InvalidConfigValue(ConfigError):
    def __init__(self, key: str, source: ConfigSource, reason: str):
        self.key = key
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid value for '{key}' from {source.value}: {reason}")


class UnknownConfigKey(ConfigError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unknown configuration key: '{key}'")


class NotInRepository(ConfigError):
    def __init__(self, message: str = "Local repo not found. Are you in the correct directory?"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Remote discovery
# ---------------------------------------------------------------------------


class DiscoveryError(GitLabCliError):
    exit_code = 4


class NoRemoteConfigured(DiscoveryError):
    def __init__(self):
        super().__init__(
            "No git remote is configured. Add one with `git remote add origin <url>` "
            "or pass the project explicitly with --project-id."
        )


class UnparseableRemote(DiscoveryError):
    def __init__(self, urls: Iterable[str]):
        self.urls = list(urls)
        super().__init__(
            f"Could not parse any git remote URL ({', '.join(self.urls)}). "
            "Pass the project explicitly with --project-id."
        )


# ---------------------------------------------------------------------------
# Attachment
# ---------------------------------------------------------------------------


class AttachError(GitLabCliError):
    exit_code = 5


class ProjectNotFound(AttachError):
    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Could not find a GitLab project matching '{path}'")


class AmbiguousProject(ProjectNotFound):
    """More than one project matches; reported as not found unless disambiguated."""

    def __init__(self, path: str, candidates: Iterable[str]):
        self.candidates = sorted(candidates)
        super().__init__(
            path,
            f"'{path}' matches several GitLab projects ({', '.join(self.candidates)}). "
            "Pass the project explicitly with --project-id.",
        )


class AuthenticationFailed(AttachError):
    def __init__(self, detail: str):
        super().__init__(f"GitLab rejected the access token: {detail}")


class TransportError(AttachError):
    def __init__(self, detail: str):
        super().__init__(f"GitLab request failed: {detail}")


# ---------------------------------------------------------------------------
# Metadata cache
# ---------------------------------------------------------------------------


class CacheError(GitLabCliError):
    exit_code = 6


class StaleRecord(CacheError):
    def __init__(self, project_id: int, age_hours: float):
        self.project_id = project_id
        self.age_hours = age_hours
        super().__init__(
            f"Cached metadata for project {project_id} is {age_hours:.1f}h old and could not be refreshed"
        )


class CorruptRecord(CacheError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unreadable metadata cache {path}: {reason}")


class UnknownReference(CacheError):
    def __init__(self, collection: str, names: Iterable[str]):
        self.collection = collection
        self.names = sorted(names)
        super().__init__(f"Unknown {collection}: {', '.join(self.names)}")


# ---------------------------------------------------------------------------
# Command context
# ---------------------------------------------------------------------------


class ContextError(GitLabCliError):
    exit_code = 7


class NotAttached(ContextError):
    def __init__(self):
        super().__init__(
            "This repository is not attached to a GitLab project. "
            "Run `git lab project attach` or pass --project-id."
        )
