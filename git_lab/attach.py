"""Attach a local repository to a GitLab project.

The workflow runs through a fixed sequence of states::

    UNATTACHED -> DISCOVERING_REMOTE -> RESOLVING_PROJECT -> FETCHING_METADATA -> ATTACHED

and moves to FAILED from any of them. Nothing is written until the complete
metadata record has been fetched, so a failed or interrupted attachment leaves
the previous state of the repository intact.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

import requests

from git_lab.cache import MetadataCache, utcnow
from git_lab.client import GitLabClient
from git_lab.config import persist
from git_lab.discovery import discover, host_matches
from git_lab.errors import (
    AmbiguousProject,
    AttachError,
    AuthenticationFailed,
    GitLabCliError,
    NotInRepository,
    ProjectNotFound,
    TransportError,
)
from git_lab.models import (
    CACHE_SCHEMA_VERSION,
    DEFAULT_ANCESTOR_MAX_DEPTH,
    LOGGER_NAME,
    AttachState,
    EffectiveConfig,
    ProjectMetadataCache,
    RemoteBinding,
    Scope,
)
from git_lab.store import KeyValueStore

logger = logging.getLogger(LOGGER_NAME)


def map_request_error(exc: requests.RequestException, subject: str) -> AttachError:
    """Translate a transport failure into the attach error taxonomy."""
    response = getattr(exc, "response", None)
    status = response.status_code if response is not None else None
    if status in (401, 403):
        return AuthenticationFailed(f"HTTP {status} while looking up {subject}")
    if status == 404:
        return ProjectNotFound(subject)
    return TransportError(str(exc))


# ---------------------------------------------------------------------------
# Metadata fetching
# ---------------------------------------------------------------------------


def ancestor_groups(client: GitLabClient, project: dict, max_depth: int) -> Iterator[dict]:
    """Yield the project's containing groups, nearest first, at most ``max_depth`` of them."""
    namespace = project.get("namespace") or {}
    if namespace.get("kind") != "group":
        return
    group_id = namespace.get("id")
    depth = 0
    while group_id is not None:
        if depth >= max_depth:
            logger.debug(f"Stopping ancestor traversal at depth {max_depth} (next group id={group_id})")
            return
        group = client.get_group(group_id)
        yield group
        depth += 1
        group_id = group.get("parent_id")


def _milestone_order(milestone: dict) -> tuple:
    due = milestone.get("due_date")
    return (due is None, due or "", milestone["title"])


def fetch_metadata(
    client: GitLabClient,
    project: dict,
    ancestor_traversal: bool = True,
    max_depth: int = DEFAULT_ANCESTOR_MAX_DEPTH,
) -> ProjectMetadataCache:
    """Fetch every reference collection for ``project`` and build one record in memory.

    With ``ancestor_traversal`` the labels and milestones of containing groups
    are merged in; the nearest scope wins when names collide.
    """
    project_id = project["id"]
    labels = {label["name"]: label.get("color", "") for label in client.get_project_labels(project_id)}
    milestones = {m["title"]: m for m in client.get_project_milestones(project_id)}
    members = client.get_project_members(project_id)

    if ancestor_traversal:
        for group in ancestor_groups(client, project, max_depth):
            logger.debug(f"Merging labels and milestones from group {group.get('full_path', group['id'])}")
            for label in client.get_group_labels(group["id"]):
                labels.setdefault(label["name"], label.get("color", ""))
            for milestone in client.get_group_milestones(group["id"]):
                milestones.setdefault(milestone["title"], milestone)

    return ProjectMetadataCache(
        project_id=project_id,
        path_with_namespace=project["path_with_namespace"],
        default_branch=project.get("default_branch"),
        labels={name: labels[name] for name in sorted(labels)},
        members={m["username"]: m["id"] for m in sorted(members, key=lambda m: m["username"])},
        milestones={m["title"]: m["id"] for m in sorted(milestones.values(), key=_milestone_order)},
        fetched_at=utcnow(),
        schema_version=CACHE_SCHEMA_VERSION,
    )


class MetadataFetcher:
    """Callable used by MetadataCache.refresh to re-fetch a project by id."""

    def __init__(
        self,
        client: GitLabClient,
        ancestor_traversal: bool = True,
        max_depth: int = DEFAULT_ANCESTOR_MAX_DEPTH,
    ):
        self.client = client
        self.ancestor_traversal = ancestor_traversal
        self.max_depth = max_depth

    def __call__(self, project_id: int) -> ProjectMetadataCache:
        try:
            project = self.client.get_project(project_id)
            return fetch_metadata(self.client, project, self.ancestor_traversal, self.max_depth)
        except requests.RequestException as e:
            raise map_request_error(e, f"project {project_id}") from e


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class AttachmentWorkflow:
    def __init__(
        self,
        client: GitLabClient,
        cache: MetadataCache,
        local_store: KeyValueStore,
        max_depth: int = DEFAULT_ANCESTOR_MAX_DEPTH,
    ):
        self.client = client
        self.cache = cache
        self.local_store = local_store
        self.max_depth = max_depth
        self.state = AttachState.UNATTACHED
        self.history = [self.state]

    def _transition(self, state: AttachState) -> None:
        logger.debug(f"attach: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def attach(
        self,
        config: EffectiveConfig,
        remote_urls: Sequence[str],
        ancestor_traversal: bool = True,
        project_id: int | None = None,
    ) -> ProjectMetadataCache:
        """Bind the repository to a project and populate its metadata cache.

        With ``project_id`` remote discovery is skipped. Re-attaching an already
        attached repository overwrites the cached record and the stored id.
        """
        if not self.local_store.writable:
            raise NotInRepository()

        subject = f"project {project_id}" if project_id is not None else "the git remote"
        try:
            if project_id is None:
                self._transition(AttachState.DISCOVERING_REMOTE)
                binding = discover(remote_urls)
                subject = binding.namespace_path
                if not host_matches(binding, config.host):
                    logger.warning(
                        f"Remote host '{binding.host}' does not match configured GitLab host '{config.host}'"
                    )
                self._transition(AttachState.RESOLVING_PROJECT)
                project = self._resolve(binding)
            else:
                self._transition(AttachState.RESOLVING_PROJECT)
                project = self.client.get_project(project_id)
            logger.info(f"Resolved project '{project['path_with_namespace']}' (id={project['id']})")

            self._transition(AttachState.FETCHING_METADATA)
            record = fetch_metadata(self.client, project, ancestor_traversal, self.max_depth)

            self.cache.put(record.project_id, record)
            persist("projectid", record.project_id, Scope.LOCAL, local_store=self.local_store)
        except requests.RequestException as e:
            self._transition(AttachState.FAILED)
            raise map_request_error(e, subject) from e
        except GitLabCliError:
            self._transition(AttachState.FAILED)
            raise

        self._transition(AttachState.ATTACHED)
        return record

    def _resolve(self, binding: RemoteBinding) -> dict:
        """Look the namespace path up directly, then fall back to a search matched on remote URL."""
        try:
            return self.client.get_project_by_path(binding.namespace_path)
        except requests.HTTPError as e:
            if e.response is None or e.response.status_code != 404:
                raise

        logger.debug(f"No project at '{binding.namespace_path}', searching for '{binding.project_name}'")
        matches: dict[int, dict] = {}
        for candidate in self.client.search_projects(binding.project_name):
            if _same_remote(candidate, binding):
                matches[candidate["id"]] = candidate

        if not matches:
            raise ProjectNotFound(binding.namespace_path)
        if len(matches) > 1:
            raise AmbiguousProject(binding.namespace_path, [p["path_with_namespace"] for p in matches.values()])
        (match,) = matches.values()
        return self.client.get_project(match["id"])


def _same_remote(project: dict, binding: RemoteBinding) -> bool:
    if project.get("path_with_namespace", "").lower() == binding.namespace_path.lower():
        return True
    return binding.url in (project.get("ssh_url_to_repo"), project.get("http_url_to_repo"))


def detach(local_store: KeyValueStore, cache: MetadataCache | None) -> int | None:
    """Forget the attached project: remove the stored id and its cache record."""
    raw = local_store.get("projectid")
    local_store.unset("projectid")
    if raw is None:
        return None
    try:
        project_id = int(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed projectid '{raw}' in local config")
        return None
    if cache is not None:
        cache.invalidate(project_id)
    return project_id
