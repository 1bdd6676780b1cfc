"""Shared test fixtures for git-lab tests."""

import logging
import os
import sys
import urllib.parse
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import git
import pytest
import responses

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from git_lab.client import GitLabClient
from git_lab.models import LOGGER_NAME, ProjectMetadataCache, Scope
from git_lab.store import GitConfigStore, MemoryStore

# Constants for use in tests - pytest makes conftest.py fixtures available,
# but these constants need to be imported directly from tests
MOCK_GITLAB_URL = "https://gitlab.example.com"
MOCK_API_URL = f"{MOCK_GITLAB_URL}/api/v4"
PAGE = {"x-total-pages": "1"}


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point HOME at an empty directory and clear GITLAB_* variables."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for name in list(os.environ):
        if name.startswith("GITLAB_"):
            monkeypatch.delenv(name)
    return home


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by main() so they do not outlive the captured streams."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def git_repo(tmp_path) -> git.Repo:
    """Empty git repository."""
    return git.Repo.init(tmp_path / "repo")


@pytest.fixture
def local_store(git_repo) -> GitConfigStore:
    return GitConfigStore(Scope.LOCAL, git_repo)


@pytest.fixture
def global_store() -> GitConfigStore:
    return GitConfigStore(Scope.GLOBAL)


@pytest.fixture
def memory_local() -> MemoryStore:
    return MemoryStore(Scope.LOCAL)


@pytest.fixture
def mock_client():
    """GitLabClient pointing at mock server, without retries."""
    return GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=0)


@pytest.fixture
def sample_project() -> dict[str, Any]:
    """Sample project API response."""
    return {
        "id": 42,
        "name": "app",
        "path_with_namespace": "team/app",
        "default_branch": "main",
        "web_url": f"{MOCK_GITLAB_URL}/team/app",
        "ssh_url_to_repo": "git@gitlab.example.com:team/app.git",
        "http_url_to_repo": f"{MOCK_GITLAB_URL}/team/app.git",
        "namespace": {"id": 7, "kind": "group", "full_path": "team", "parent_id": None},
    }


@pytest.fixture
def sample_labels() -> list[dict[str, Any]]:
    return [
        {"id": 2, "name": "feature", "color": "#00ff00"},
        {"id": 1, "name": "bug", "color": "#ff0000"},
    ]


@pytest.fixture
def sample_members() -> list[dict[str, Any]]:
    return [
        {"id": 11, "username": "zoe"},
        {"id": 10, "username": "alice"},
    ]


@pytest.fixture
def sample_milestones() -> list[dict[str, Any]]:
    return [
        {"id": 101, "title": "v2.0", "due_date": "2026-12-01"},
        {"id": 102, "title": "backlog", "due_date": None},
        {"id": 100, "title": "v1.0", "due_date": "2026-06-01"},
    ]


@pytest.fixture
def sample_record() -> ProjectMetadataCache:
    return ProjectMetadataCache(
        project_id=42,
        path_with_namespace="team/app",
        default_branch="main",
        labels={"bug": "#ff0000", "feature": "#00ff00"},
        members={"alice": 10, "zoe": 11},
        milestones={"v1.0": 100, "v2.0": 101, "backlog": 102},
        fetched_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
    )


def register_project_api(
    project: dict[str, Any],
    labels: list[dict] = (),
    members: list[dict] = (),
    milestones: list[dict] = (),
    api_url: str = MOCK_API_URL,
) -> None:
    """Register the endpoints fetched while attaching ``project`` (call inside @responses.activate)."""
    pid = project["id"]
    encoded = urllib.parse.quote(project["path_with_namespace"], safe="")
    responses.add(responses.GET, f"{api_url}/projects/{encoded}", json=project)
    responses.add(responses.GET, f"{api_url}/projects/{pid}", json=project)
    responses.add(responses.GET, f"{api_url}/projects/{pid}/labels", json=list(labels), headers=PAGE)
    responses.add(responses.GET, f"{api_url}/projects/{pid}/milestones", json=list(milestones), headers=PAGE)
    responses.add(responses.GET, f"{api_url}/projects/{pid}/members/all", json=list(members), headers=PAGE)
    responses.add(responses.GET, f"{api_url}/projects/{pid}/members", json=[], headers=PAGE)


def register_group_api(
    group: dict[str, Any],
    labels: list[dict] = (),
    milestones: list[dict] = (),
    api_url: str = MOCK_API_URL,
) -> None:
    gid = group["id"]
    responses.add(responses.GET, f"{api_url}/groups/{gid}", json=group)
    responses.add(responses.GET, f"{api_url}/groups/{gid}/labels", json=list(labels), headers=PAGE)
    responses.add(responses.GET, f"{api_url}/groups/{gid}/milestones", json=list(milestones), headers=PAGE)
