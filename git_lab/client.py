"""GitLab API client with pagination and retry support."""

from __future__ import annotations

import logging
import math
import time
import urllib.parse
from typing import Any

import requests

from git_lab.models import (
    API_V4,
    DEFAULT_MAX_RETRIES,
    LOGGER_NAME,
    PER_PAGE,
    RETRY_BACKOFF_FACTOR,
    RETRYABLE_STATUS_CODES,
)


class GitLabClient:
    """Thin wrapper around GitLab REST API v4 with pagination support and retry logic."""

    def __init__(self, base_url: str, token: str, verify: bool = True, max_retries: int = DEFAULT_MAX_RETRIES):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}{API_V4}"
        self.session = requests.Session()
        self.session.headers.update(
            {
                "PRIVATE-TOKEN": token,
                "Accept": "application/json",
            }
        )
        self.session.verify = verify
        self.max_retries = max(0, max_retries)
        self.logger = logging.getLogger(LOGGER_NAME)

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Make an HTTP request, retrying connection errors, rate limits and 5xx responses."""
        url = f"{self.api_url}{endpoint}"
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            last_attempt = attempt == self.max_retries
            self.logger.debug(f"{method.upper()} {url} {kwargs.get('params', '')} (attempt {attempt + 1}/{attempts})")
            try:
                resp = self.session.request(method, url, **kwargs)
            except requests.exceptions.ConnectionError as e:
                if last_attempt:
                    raise
                wait_time = RETRY_BACKOFF_FACTOR * (2**attempt)
                self.logger.warning(f"Connection error, retrying in {wait_time:.1f}s: {e}")
                time.sleep(wait_time)
                continue

            if resp.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                wait_time = self._calculate_backoff(resp, attempt)
                self.logger.warning(f"Retryable error {resp.status_code}, waiting {wait_time:.1f}s before retry")
                time.sleep(wait_time)
                continue

            if resp.status_code >= 400:
                self.logger.debug(f"API error {resp.status_code}: {resp.text[:500]}")
            resp.raise_for_status()
            return resp

    def _calculate_backoff(self, resp: requests.Response, attempt: int) -> float:
        """Seconds to wait before the next attempt; a 429's Retry-After header wins when it is usable."""
        if resp.status_code == 429:
            try:
                retry_after = float(resp.headers.get("Retry-After", ""))
            except ValueError:
                retry_after = -1.0
            if math.isfinite(retry_after) and retry_after >= 0:
                return retry_after
        return RETRY_BACKOFF_FACTOR * (2**attempt)

    def get(self, endpoint: str, params: dict | None = None) -> Any:
        return self._request("GET", endpoint, params=params).json()

    def paginate(self, endpoint: str, params: dict | None = None) -> list[dict]:
        """Fetch all pages of a paginated endpoint."""
        params = dict(params or {})
        params.setdefault("per_page", PER_PAGE)
        page = 1
        results = []
        while True:
            params["page"] = page
            resp = self._request("GET", endpoint, params=params)
            data = resp.json()
            if not data:
                break
            results.extend(data)
            # Check if there are more pages
            total_pages = int(resp.headers.get("x-total-pages", page))
            if page >= total_pages:
                break
            page += 1
        return results

    # -- Projects --

    def get_project(self, project_id: int) -> dict:
        """Get project details by ID."""
        return self.get(f"/projects/{project_id}")

    def get_project_by_path(self, path: str) -> dict:
        """Get project details by path."""
        encoded_path = urllib.parse.quote(path, safe="")
        return self.get(f"/projects/{encoded_path}")

    def search_projects(self, term: str) -> list[dict]:
        """Projects visible to the token whose name or namespace matches ``term``."""
        return self.paginate("/projects", params={"search": term, "search_namespaces": "true", "simple": "true"})

    def get_project_labels(self, project_id: int) -> list[dict]:
        """Labels defined on the project itself, without inherited group labels."""
        return self.paginate(f"/projects/{project_id}/labels", params={"include_ancestor_groups": "false"})

    def get_project_milestones(self, project_id: int) -> list[dict]:
        return self.paginate(f"/projects/{project_id}/milestones", params={"state": "active"})

    def get_project_members(self, project_id: int) -> list[dict]:
        """Direct and inherited project members, de-duplicated by username.

        Some GitLab versions return only inherited members from ``members/all``,
        so both endpoints are queried and merged.
        """
        merged: dict[str, dict] = {}
        for endpoint in (f"/projects/{project_id}/members/all", f"/projects/{project_id}/members"):
            for member in self.paginate(endpoint):
                merged.setdefault(member["username"], member)
        return [merged[username] for username in sorted(merged)]

    # -- Groups --

    def get_group(self, group_id: int) -> dict:
        return self.get(f"/groups/{group_id}", params={"with_projects": "false"})

    def get_group_labels(self, group_id: int) -> list[dict]:
        """Labels defined on the group itself."""
        return self.paginate(
            f"/groups/{group_id}/labels",
            params={"include_ancestor_groups": "false", "only_group_labels": "true"},
        )

    def get_group_milestones(self, group_id: int) -> list[dict]:
        return self.paginate(f"/groups/{group_id}/milestones", params={"state": "active"})
