"""Data models and constants for git-lab."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LOGGER_NAME = "git-lab"
API_V4 = "/api/v4"
PER_PAGE = 100

# Retry configuration
DEFAULT_MAX_RETRIES = 3
RETRY_BACKOFF_FACTOR = 0.5  # seconds
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Configuration
ENV_PREFIX = "GITLAB"
CONFIG_SECTION = "gitlab"
DEFAULT_CACHE_MAX_AGE_HOURS = 24.0
DEFAULT_ANCESTOR_MAX_DEPTH = 20

# Metadata cache
CACHE_SCHEMA_VERSION = 2
CACHE_DIRNAME = "git-lab"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OutputFormat(Enum):
    TEXT = "text"
    JSON = "json"


class Scope(Enum):
    LOCAL = "local"
    GLOBAL = "global"


class ConfigSource(Enum):
    """Where a configuration value came from, highest precedence first."""

    FLAG = "command-line flag"
    ENVIRONMENT = "environment variable"
    LOCAL = "local git config"
    GLOBAL = "global git config"
    DEFAULT = "built-in default"


class AttachState(Enum):
    UNATTACHED = "unattached"
    DISCOVERING_REMOTE = "discovering-remote"
    RESOLVING_PROJECT = "resolving-project"
    FETCHING_METADATA = "fetching-metadata"
    ATTACHED = "attached"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveConfig:
    """Resolved configuration for a single invocation."""

    host: str
    token: str
    project_id: int | None = None
    output_format: OutputFormat = OutputFormat.TEXT
    tls_verify: bool = True
    default_branch: str | None = None
    cache_max_age_hours: float = DEFAULT_CACHE_MAX_AGE_HOURS
    ancestor_max_depth: int = DEFAULT_ANCESTOR_MAX_DEPTH
    sources: dict[str, ConfigSource] = field(default_factory=dict, compare=False, repr=False)

    @property
    def cache_max_age(self) -> timedelta:
        return timedelta(hours=self.cache_max_age_hours)

    def with_default_branch(self, branch: str | None) -> EffectiveConfig:
        return replace(self, default_branch=branch)


@dataclass(frozen=True)
class RemoteBinding:
    """Server host and namespace path parsed from a git remote URL."""

    host: str
    namespace_path: str
    url: str
    protocol: str  # "ssh", "http" or "https"
    port: int | None = None

    @property
    def project_name(self) -> str:
        return self.namespace_path.rsplit("/", 1)[-1]


@dataclass
class ProjectMetadataCache:
    """Cached server-side reference data for one attached project.

    All collections are fetched in the same refresh pass and share ``fetched_at``.
    Ordering is part of the record: labels by name, members by username and
    milestones by due date.
    """

    project_id: int
    path_with_namespace: str
    default_branch: str | None
    labels: dict[str, str]
    members: dict[str, int]
    milestones: dict[str, int]
    fetched_at: datetime
    schema_version: int = CACHE_SCHEMA_VERSION

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "fetched_at": self.fetched_at.isoformat(),
            "project_id": self.project_id,
            "path_with_namespace": self.path_with_namespace,
            "default_branch": self.default_branch,
            "labels": dict(self.labels),
            "members": dict(self.members),
            "milestones": dict(self.milestones),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectMetadataCache:
        """Build a record from its serialized form.

        Raises KeyError, TypeError or ValueError when the payload does not have
        the expected shape.
        """
        fetched_at = datetime.fromisoformat(data["fetched_at"])
        if fetched_at.tzinfo is None:
            raise ValueError("fetched_at has no timezone")
        branch = data.get("default_branch")
        if branch is not None and not isinstance(branch, str):
            raise TypeError("default_branch must be a string")
        return cls(
            project_id=_as_int(data["project_id"]),
            path_with_namespace=str(data["path_with_namespace"]),
            default_branch=branch,
            labels={str(k): str(v) for k, v in _as_mapping(data["labels"]).items()},
            members={str(k): _as_int(v) for k, v in _as_mapping(data["members"]).items()},
            milestones={str(k): _as_int(v) for k, v in _as_mapping(data["milestones"]).items()},
            fetched_at=fetched_at,
            schema_version=_as_int(data["schema_version"]),
        )


@dataclass(frozen=True)
class CommandContext:
    """Everything a project-scoped command needs, fixed for the invocation."""

    config: EffectiveConfig
    client: Any
    project_id: int | None
    default_branch: str | None
    output_format: OutputFormat
    metadata: ProjectMetadataCache | None = None
    stale: bool = False

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def token(self) -> str:
        return self.config.token


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer, got {value!r}")
    return value


def _as_mapping(value: Any) -> dict:
    if not isinstance(value, dict):
        raise TypeError(f"expected mapping, got {type(value).__name__}")
    return value


def env_var_name(key: str) -> str:
    """Map a configuration key to its environment variable (``tls.verify`` -> ``GITLAB_TLS_VERIFY``)."""
    return f"{ENV_PREFIX}_{key.upper().replace('.', '_')}"


def key_for_env_var(name: str) -> str | None:
    """Reverse of :func:`env_var_name`; None when the name lacks the prefix."""
    prefix = f"{ENV_PREFIX}_"
    if not name.startswith(prefix) or len(name) == len(prefix):
        return None
    return name[len(prefix) :].lower().replace("_", ".")
