"""
GitLab Backup - GitLab Client Tests

Tests for the REST client, pagination and the service families,
using responses to mock the GitLab API.
"""

from pathlib import Path

import pytest
import responses

from cancellation import OperationCancelled
from exceptions import GitLabAPIError
from gitlab_api.client import GitLabClient
from gitlab_api.models import JobStatus
from gitlab_api.pagination import PaginatedFetcher
from gitlab_api.services import GitLabServices, project_ref
from conftest import API_URL, TEST_TOKEN


class TestGitLabClient:
    """Tests for GitLabClient."""

    def test_sends_private_token(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that the token is sent in the PRIVATE-TOKEN header."""
        mock_gitlab_api.add(responses.GET, f"{API_URL}/version", json={"version": "16.0"})

        data = gitlab_client.get_json("version", cancel)

        assert data == {"version": "16.0"}
        assert mock_gitlab_api.calls[0].request.headers["PRIVATE-TOKEN"] == TEST_TOKEN

    def test_error_message_from_body(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that GitLab's message is surfaced in the error."""
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/projects/1",
            json={"message": "404 Project Not Found"},
            status=404,
        )

        with pytest.raises(GitLabAPIError) as exc_info:
            gitlab_client.get_json("projects/1", cancel)

        assert str(exc_info.value) == "error message from GitLab API: 404 Project Not Found"
        assert exc_info.value.is_not_found

    def test_error_without_message(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        mock_gitlab_api.add(responses.GET, f"{API_URL}/projects/1", body="oops", status=500)

        with pytest.raises(GitLabAPIError, match="unexpected HTTP status code: 500"):
            gitlab_client.get_json("projects/1", cancel)

    def test_cancelled_token_sends_nothing(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        cancel.cancel()

        with pytest.raises(OperationCancelled):
            gitlab_client.get_json("version", cancel)
        assert len(mock_gitlab_api.calls) == 0

    def test_set_endpoint_and_token(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that endpoint and token can be replaced at runtime."""
        mock_gitlab_api.add(responses.GET, "https://other.example.com/api/v4/version", json={})

        gitlab_client.set_endpoint("https://other.example.com/api/v4/")
        gitlab_client.set_token("new-token")
        gitlab_client.get_json("version", cancel)

        assert gitlab_client.api_url == "https://other.example.com/api/v4"
        assert mock_gitlab_api.calls[0].request.headers["PRIVATE-TOKEN"] == "new-token"


class TestPaginatedFetcher:
    """Tests for Link-header pagination."""

    def test_follows_next_links(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that all pages are concatenated in order."""
        url = f"{API_URL}/groups/1/projects"
        mock_gitlab_api.add(
            responses.GET,
            url,
            json=[{"id": 1}, {"id": 2}],
            headers={"Link": f'<{url}?page=2&per_page=2>; rel="next"'},
        )
        mock_gitlab_api.add(responses.GET, url, json=[{"id": 3}])

        items = PaginatedFetcher(gitlab_client, page_size=2).fetch_all(cancel, "groups/1/projects")

        assert [item["id"] for item in items] == [1, 2, 3]
        assert len(mock_gitlab_api.calls) == 2

    def test_single_page(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        url = f"{API_URL}/groups/1/subgroups"
        mock_gitlab_api.add(responses.GET, url, json=[{"id": 7}])

        assert PaginatedFetcher(gitlab_client).fetch_all(cancel, "groups/1/subgroups") == [{"id": 7}]

    def test_loop_detection(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that a server linking back to a seen page is an error."""
        url = f"{API_URL}/groups/1/projects"
        next_link = {"Link": f'<{url}?page=2>; rel="next"'}
        mock_gitlab_api.add(responses.GET, url, json=[{"id": 1}], headers=next_link)
        mock_gitlab_api.add(responses.GET, url, json=[{"id": 2}], headers=next_link)

        with pytest.raises(GitLabAPIError, match="pagination loop"):
            PaginatedFetcher(gitlab_client).fetch_all(cancel, "groups/1/projects")

    def test_page_failure_propagates(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        """Test that no partial result is returned when a page fails."""
        url = f"{API_URL}/groups/1/projects"
        mock_gitlab_api.add(
            responses.GET,
            url,
            json=[{"id": 1}],
            headers={"Link": f'<{url}?page=2>; rel="next"'},
        )
        mock_gitlab_api.add(responses.GET, url, json={"message": "500 Internal"}, status=500)

        with pytest.raises(GitLabAPIError, match="500 Internal"):
            PaginatedFetcher(gitlab_client).fetch_all(cancel, "groups/1/projects")

    def test_total_header(self, gitlab_client: GitLabClient, mock_gitlab_api, cancel):
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/projects/3/issues",
            json=[{"id": 1}],
            headers={"X-Total": "17"},
        )

        page = PaginatedFetcher(gitlab_client).fetch_page(cancel, "projects/3/issues")

        assert page.total == 17
        assert page.count == 17


class TestGitLabServices:
    """Tests for the REST service families."""

    def test_project_ref_encodes_paths(self):
        assert project_ref(42) == "42"
        assert project_ref("team/sub/app") == "team%2Fsub%2Fapp"

    def test_find_project_missing(self, gitlab_client, mock_gitlab_api, cancel):
        """Test that a 404 lookup yields None."""
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/projects/team%2Fapp",
            json={"message": "404 Project Not Found"},
            status=404,
        )

        assert GitLabServices(gitlab_client).find_project(cancel, "team/app") is None

    def test_find_project_other_error(self, gitlab_client, mock_gitlab_api, cancel):
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/projects/team%2Fapp",
            json={"message": "403 Forbidden"},
            status=403,
        )

        with pytest.raises(GitLabAPIError):
            GitLabServices(gitlab_client).find_project(cancel, "team/app")

    def test_list_projects(self, gitlab_client, mock_gitlab_api, cancel):
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/groups/5/projects",
            json=[{"id": 1, "name": "app", "archived": True}, {"id": 2, "name": "lib"}],
        )

        projects = GitLabServices(gitlab_client).list_projects(cancel, 5)

        assert [p.id for p in projects] == [1, 2]
        assert projects[0].archived is True
        assert projects[1].archive_name == "lib-2.tar.gz"

    def test_request_export_returns_status(self, gitlab_client, mock_gitlab_api, cancel):
        """Test that non-2xx export answers are returned, not raised."""
        mock_gitlab_api.add(responses.POST, f"{API_URL}/projects/9/export", status=429)

        assert GitLabServices(gitlab_client).request_export(cancel, 9) == 429

    def test_export_status(self, gitlab_client, mock_gitlab_api, cancel):
        mock_gitlab_api.add(
            responses.GET,
            f"{API_URL}/projects/9/export",
            json={"id": 9, "export_status": "regeneration_in_progress"},
        )

        job = GitLabServices(gitlab_client).export_status(cancel, 9)

        assert job.status is JobStatus.STARTED

    def test_download_export(self, gitlab_client, mock_gitlab_api, cancel, temp_dir: Path):
        """Test that the archive is streamed to the destination."""
        mock_gitlab_api.add(
            responses.GET, f"{API_URL}/projects/9/export/download", body=b"archive-bytes"
        )
        dest = temp_dir / "app-9.tar.gz"

        written = GitLabServices(gitlab_client).download_export(cancel, 9, dest)

        assert written == len(b"archive-bytes")
        assert dest.read_bytes() == b"archive-bytes"
        assert not (temp_dir / "app-9.tar.gz.tmp").exists()

    def test_import_from_file(self, gitlab_client, mock_gitlab_api, cancel, export_archive: Path):
        mock_gitlab_api.add(
            responses.POST,
            f"{API_URL}/projects/import",
            json={"id": 77, "import_status": "scheduled", "path_with_namespace": "team/app"},
        )

        with open(export_archive, "rb") as f:
            job = GitLabServices(gitlab_client).import_from_file(cancel, f, "team", "app")

        assert job.project_id == 77
        assert job.status is JobStatus.SCHEDULED
        body = mock_gitlab_api.calls[0].request.body
        assert b'name="namespace"' in body
        assert b"my-project-42.tar.gz" in body
