"""Tests for the GitLab API client: endpoints, pagination and retry with backoff."""

from unittest.mock import patch

import pytest
import requests
import responses

from conftest import MOCK_API_URL, MOCK_GITLAB_URL, PAGE
from git_lab.client import GitLabClient
from git_lab.models import DEFAULT_MAX_RETRIES, RETRY_BACKOFF_FACTOR, RETRYABLE_STATUS_CODES


class TestRequests:
    """Session setup and endpoint construction."""

    @responses.activate
    def test_token_header(self):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/42", json={"id": 42})

        GitLabClient(MOCK_GITLAB_URL, "test-token").get_project(42)

        assert responses.calls[0].request.headers["PRIVATE-TOKEN"] == "test-token"

    def test_tls_verification_setting(self):
        assert GitLabClient(MOCK_GITLAB_URL, "t").session.verify is True
        assert GitLabClient(MOCK_GITLAB_URL, "t", verify=False).session.verify is False

    def test_trailing_slash_stripped(self):
        assert GitLabClient(f"{MOCK_GITLAB_URL}/", "t").api_url == MOCK_API_URL

    @responses.activate
    def test_project_path_is_url_encoded(self):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/group%2Fsub%2Fapp", json={"id": 42})

        project = GitLabClient(MOCK_GITLAB_URL, "t").get_project_by_path("group/sub/app")

        assert project["id"] == 42
        assert "group%2Fsub%2Fapp" in responses.calls[0].request.url

    @responses.activate
    def test_search_parameters(self):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects", json=[{"id": 1}], headers=PAGE)

        GitLabClient(MOCK_GITLAB_URL, "t").search_projects("app")

        url = responses.calls[0].request.url
        assert "search=app" in url
        assert "search_namespaces=true" in url

    @responses.activate
    def test_project_labels_exclude_ancestors(self):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/42/labels", json=[], headers=PAGE)

        GitLabClient(MOCK_GITLAB_URL, "t").get_project_labels(42)

        assert "include_ancestor_groups=false" in responses.calls[0].request.url


class TestPagination:
    @responses.activate
    def test_follows_total_pages(self):
        responses.add(
            responses.GET,
            f"{MOCK_API_URL}/projects/42/labels",
            json=[{"name": "a"}],
            headers={"x-total-pages": "2"},
        )
        responses.add(
            responses.GET,
            f"{MOCK_API_URL}/projects/42/labels",
            json=[{"name": "b"}],
            headers={"x-total-pages": "2"},
        )

        labels = GitLabClient(MOCK_GITLAB_URL, "t").get_project_labels(42)

        assert [label["name"] for label in labels] == ["a", "b"]
        assert "page=2" in responses.calls[1].request.url

    @responses.activate
    def test_empty_page_stops(self):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/42/milestones", json=[])

        assert GitLabClient(MOCK_GITLAB_URL, "t").get_project_milestones(42) == []
        assert len(responses.calls) == 1


class TestMembers:
    @responses.activate
    def test_direct_and_inherited_members_merged(self):
        responses.add(
            responses.GET,
            f"{MOCK_API_URL}/projects/42/members/all",
            json=[{"id": 2, "username": "zoe"}, {"id": 1, "username": "alice"}],
            headers=PAGE,
        )
        responses.add(
            responses.GET,
            f"{MOCK_API_URL}/projects/42/members",
            json=[{"id": 1, "username": "alice"}, {"id": 3, "username": "bob"}],
            headers=PAGE,
        )

        members = GitLabClient(MOCK_GITLAB_URL, "t").get_project_members(42)

        assert [m["username"] for m in members] == ["alice", "bob", "zoe"]


class TestRetryOn429:
    """Tests for retry on rate limit (429) responses."""

    @responses.activate
    def test_429_respects_retry_after_header(self):
        """429 response uses Retry-After header for wait time."""
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=429, headers={"Retry-After": "0.05"})
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", json={"id": 123})

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=3)

        with patch("time.sleep") as mock_sleep:
            result = client.get("/projects/123")
            mock_sleep.assert_called_once()
            assert mock_sleep.call_args[0][0] == 0.05
        assert result["id"] == 123
        assert len(responses.calls) == 2


class TestRetryOn5xx:
    """Tests for retry on server error (5xx) responses."""

    @responses.activate
    def test_503_triggers_retry_with_backoff(self):
        """503 response triggers retry with exponential backoff."""
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=503)
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=503)
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", json={"id": 123})

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=3)

        with patch("time.sleep") as mock_sleep:
            result = client.get("/projects/123")
            assert result["id"] == 123
            assert len(responses.calls) == 3
            # Should have slept twice (before 2nd and 3rd attempts)
            assert mock_sleep.call_count == 2

    @responses.activate
    def test_all_retryable_status_codes(self):
        """All status codes in RETRYABLE_STATUS_CODES trigger retries."""
        for status_code in RETRYABLE_STATUS_CODES:
            responses.reset()
            responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=status_code)
            responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", json={"id": 123})

            client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=1)

            with patch("time.sleep"):
                result = client.get("/projects/123")
                assert result["id"] == 123, f"Failed for status code {status_code}"


class TestRetryOnConnectionError:
    """Tests for retry on connection errors."""

    @responses.activate
    def test_connection_error_triggers_retry(self):
        """Connection error triggers retry."""
        call_count = [0]

        def request_callback(request):
            call_count[0] += 1
            if call_count[0] == 1:
                raise requests.exceptions.ConnectionError("Connection refused")
            return (200, {}, '{"id": 123}')

        responses.add_callback(responses.GET, f"{MOCK_API_URL}/projects/123", callback=request_callback)

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=3)

        with patch("time.sleep"):
            result = client.get("/projects/123")
            assert result["id"] == 123
            assert call_count[0] == 2


class TestMaxRetriesExceeded:
    """Tests for behavior when max retries are exceeded."""

    @responses.activate
    def test_raises_after_max_retries_5xx(self):
        """Raises HTTPError after max retries exceeded for 5xx."""
        for _ in range(DEFAULT_MAX_RETRIES + 1):
            responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=503)

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=DEFAULT_MAX_RETRIES)

        with patch("time.sleep"):
            with pytest.raises(requests.HTTPError) as exc_info:
                client.get("/projects/123")
            assert exc_info.value.response.status_code == 503

    @responses.activate
    def test_raises_after_max_retries_connection_error(self):
        """Raises ConnectionError after max retries exceeded."""

        def always_fail(request):
            raise requests.exceptions.ConnectionError("Connection refused")

        responses.add_callback(responses.GET, f"{MOCK_API_URL}/projects/123", callback=always_fail)

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=2)

        with patch("time.sleep"):
            with pytest.raises(requests.exceptions.ConnectionError):
                client.get("/projects/123")


class TestNoRetryOn4xx:
    """Tests that 4xx errors (except 429) are not retried."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    @responses.activate
    def test_not_retried(self, status):
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=status)

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=3)

        with pytest.raises(requests.HTTPError):
            client.get("/projects/123")

        assert len(responses.calls) == 1  # No retry


class TestBackoffCalculation:
    """Tests for exponential backoff calculation."""

    def test_backoff_increases_exponentially(self):
        """Backoff time increases exponentially with attempts."""
        client = GitLabClient(MOCK_GITLAB_URL, "test-token")

        mock_response = requests.Response()
        mock_response.status_code = 503
        mock_response.headers = {}

        assert client._calculate_backoff(mock_response, 0) == RETRY_BACKOFF_FACTOR * 1
        assert client._calculate_backoff(mock_response, 1) == RETRY_BACKOFF_FACTOR * 2
        assert client._calculate_backoff(mock_response, 2) == RETRY_BACKOFF_FACTOR * 4

    def test_429_uses_retry_after_not_exponential(self):
        """429 with Retry-After header uses header value, not exponential."""
        client = GitLabClient(MOCK_GITLAB_URL, "test-token")

        mock_response = requests.Response()
        mock_response.status_code = 429
        mock_response.headers = {"Retry-After": "5.5"}

        assert client._calculate_backoff(mock_response, 0) == 5.5
        assert client._calculate_backoff(mock_response, 5) == 5.5

    @pytest.mark.parametrize("header", ["soon", "-3", "inf", "nan"])
    def test_unusable_retry_after_falls_back_to_exponential(self, header):
        """A Retry-After that is not a finite, non-negative number is ignored."""
        client = GitLabClient(MOCK_GITLAB_URL, "test-token")

        mock_response = requests.Response()
        mock_response.status_code = 429
        mock_response.headers = {"Retry-After": header}

        assert client._calculate_backoff(mock_response, 1) == RETRY_BACKOFF_FACTOR * 2


class TestCustomMaxRetries:
    """Tests for custom max_retries configuration."""

    @responses.activate
    def test_zero_retries_no_retry(self):
        """max_retries=0 means no retries."""
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", status=503)

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=0)

        with pytest.raises(requests.HTTPError):
            client.get("/projects/123")

        assert len(responses.calls) == 1  # Only initial attempt

    @responses.activate
    def test_negative_retries_still_makes_one_attempt(self):
        """A negative max_retries is treated as zero."""
        responses.add(responses.GET, f"{MOCK_API_URL}/projects/123", json={"id": 123})

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=-2)

        assert client.get("/projects/123") == {"id": 123}
        assert client.max_retries == 0
        assert len(responses.calls) == 1

    @responses.activate
    def test_connection_error_with_zero_retries_propagates(self):
        responses.add(
            responses.GET,
            f"{MOCK_API_URL}/projects/123",
            body=requests.exceptions.ConnectionError("refused"),
        )

        client = GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=0)

        with patch("time.sleep") as mock_sleep:
            with pytest.raises(requests.exceptions.ConnectionError):
                client.get("/projects/123")

        mock_sleep.assert_not_called()
        assert len(responses.calls) == 1
