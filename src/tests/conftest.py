"""
GitLab Backup - Test Fixtures

Provides pytest fixtures for mocking S3, the GitLab API and backup archives.
"""

import io
import os
import tarfile
import tempfile
import threading
import time
from pathlib import Path
from typing import Generator, Optional

import boto3
import pytest
import responses
from moto import mock_aws

from cancellation import CancelToken
from config import Settings
from exceptions import GitLabAPIError, StorageError
from gitlab_api.client import GitLabClient
from gitlab_api.models import ExportJob, Group, ImportJob, Page, Project
from gitlab_api.rate_limiter import OperationClass, RateLimiters

GITLAB_URI = "https://gitlab.example.com"
API_URL = f"{GITLAB_URI}/api/v4"
TEST_TOKEN = "glpat-test-token-12345"


# ═══════════════════════════════════════════════════════════════════════════════
# Environment Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with mocked values.

    Note: s3_endpoint_url is None so moto can intercept boto3 calls.
    """
    return Settings(
        # GitLab
        gitlab_token=TEST_TOKEN,
        gitlab_uri=GITLAB_URI,
        gitlab_group_id=10,
        # Backup
        local_path=str(temp_dir),
        tmp_dir=str(temp_dir),
        # S3 - endpoint_url=None allows moto to intercept
        s3_endpoint_url=None,
        s3_bucket="test-bucket",
        s3_access_key="testing-access",
        s3_secret_key="testing-secret",
        s3_region="us-east-1",
        # App
        log_level="DEBUG",
    )


@pytest.fixture
def cancel() -> CancelToken:
    """A live root cancellation token."""
    return CancelToken()


@pytest.fixture
def fast_limiters() -> RateLimiters:
    """Rate limiters that never block during a test."""
    return RateLimiters.uniform({op: 10_000 for op in OperationClass}, 1.0)


# ═══════════════════════════════════════════════════════════════════════════════
# S3 Fixtures (Moto)
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def aws_credentials():
    """Set up mock AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def mock_s3(aws_credentials):
    """Create a mocked S3 service."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="test-bucket")
        yield s3


# ═══════════════════════════════════════════════════════════════════════════════
# GitLab API Fixtures (Responses)
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def gitlab_client() -> GitLabClient:
    """GitLab client pointing at the mocked instance."""
    return GitLabClient(api_url=API_URL, token=TEST_TOKEN, timeout=5)


@pytest.fixture
def mock_gitlab_api():
    """Mock GitLab API responses."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


# ═══════════════════════════════════════════════════════════════════════════════
# Archive Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


def build_tar_gz(path: Path, members: dict[str, bytes]) -> Path:
    """Write a tar.gz with the given member names and contents."""
    with tarfile.open(path, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))
    return path


def export_members() -> dict[str, bytes]:
    """Members of a minimal GitLab native export."""
    return {
        "VERSION": b"0.2.4\n",
        "project.json": b'{"description": "test project"}',
        "tree/project/issues.ndjson": b'{"title": "issue"}\n',
    }


@pytest.fixture
def make_tar_gz():
    """Builder for tar.gz archives with arbitrary members."""
    return build_tar_gz


@pytest.fixture
def export_archive(temp_dir: Path) -> Path:
    """A GitLab native export archive (modern backup format)."""
    return build_tar_gz(temp_dir / "my-project-42.tar.gz", export_members())


@pytest.fixture
def export_bytes(temp_dir: Path) -> bytes:
    """Raw bytes of a GitLab native export archive."""
    path = build_tar_gz(temp_dir / "export-source.tar.gz", export_members())
    data = path.read_bytes()
    path.unlink()
    return data


# ═══════════════════════════════════════════════════════════════════════════════
# Fake GitLab Services
# ═══════════════════════════════════════════════════════════════════════════════


class FakeGitLab:
    """In-memory GitLab implementing every service family.

    Status scripts are consumed front to back; the last entry repeats.
    """

    def __init__(self, export_data: bytes = b""):
        self._lock = threading.Lock()
        self.calls: list[tuple[str, object]] = []

        # Projects and groups
        self.projects: dict[str, Project] = {}
        self.group_projects: dict[int, list[Project]] = {}
        self.subgroups: dict[int, list[Group]] = {}

        # Content listings
        self.counts = {"commits": 0, "issues": 0, "labels": 0}
        self.send_totals = True
        self.listing_errors: dict[str, GitLabAPIError] = {}

        # Export
        self.export_request_codes = [202]
        self.export_statuses = ["finished"]
        self.export_error = ""
        self.failing_exports: set[int] = set()
        self.export_data = export_data
        self.download_delay = 0.0
        self.download_errors: dict[int, Exception] = {}

        # Import
        self.import_statuses = ["finished"]
        self.import_error = ""
        self.imported_project_id = 4242
        self.import_submit_error: Optional[Exception] = None
        self.uploaded: list[tuple[str, str, bytes]] = []

    def _record(self, name: str, arg: object) -> None:
        with self._lock:
            self.calls.append((name, arg))

    def _next(self, script: list):
        with self._lock:
            if len(script) > 1:
                return script.pop(0)
            return script[0]

    def calls_to(self, name: str) -> list:
        return [arg for call, arg in self.calls if call == name]

    # --- Groups ---

    def get_group(self, cancel: CancelToken, group_id: int) -> Group:
        self._record("get_group", group_id)
        return Group(id=group_id, name=f"group-{group_id}")

    def list_subgroups(self, cancel: CancelToken, group_id: int) -> list[Group]:
        self._record("list_subgroups", group_id)
        return list(self.subgroups.get(group_id, []))

    def list_projects(self, cancel: CancelToken, group_id: int) -> list[Project]:
        self._record("list_projects", group_id)
        return list(self.group_projects.get(group_id, []))

    # --- Projects ---

    def get_project(self, cancel: CancelToken, project) -> Project:
        self._record("get_project", project)
        found = self.find_project(cancel, project)
        if found is None:
            raise GitLabAPIError("error message from GitLab API: 404 Project Not Found", status_code=404)
        return found

    def find_project(self, cancel: CancelToken, project) -> Optional[Project]:
        self._record("find_project", project)
        return self.projects.get(str(project))

    # --- Content listings ---

    def _page(self, cancel: CancelToken, kind: str, project_id: int, per_page: int) -> Page:
        cancel.raise_if_cancelled()
        self._record(f"list_{kind}", project_id)
        if kind in self.listing_errors:
            raise self.listing_errors[kind]
        count = self.counts[kind]
        items = [{"id": i} for i in range(min(count, per_page))]
        return Page(items=items, total=count if self.send_totals else None)

    def list_commits(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._page(cancel, "commits", project_id, per_page)

    def list_issues(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._page(cancel, "issues", project_id, per_page)

    def list_labels(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._page(cancel, "labels", project_id, per_page)

    # --- Import / Export ---

    def request_export(self, cancel: CancelToken, project_id: int) -> int:
        self._record("request_export", project_id)
        return self._next(self.export_request_codes)

    def export_status(self, cancel: CancelToken, project_id: int) -> ExportJob:
        self._record("export_status", project_id)
        if project_id in self.failing_exports:
            return ExportJob.from_api(project_id, {"export_status": "failed", "export_error": "boom"})
        raw = self._next(self.export_statuses)
        return ExportJob.from_api(project_id, {"export_status": raw, "export_error": self.export_error})

    def download_export(self, cancel: CancelToken, project_id: int, dest: Path) -> int:
        self._record("download_export", project_id)
        if project_id in self.download_errors:
            raise self.download_errors[project_id]
        if self.download_delay:
            cancel.wait(self.download_delay)
        dest.write_bytes(self.export_data)
        return len(self.export_data)

    def import_from_file(self, cancel: CancelToken, archive, namespace: str, path: str) -> ImportJob:
        self._record("import_from_file", f"{namespace}/{path}")
        if self.import_submit_error is not None:
            raise self.import_submit_error
        self.uploaded.append((namespace, path, archive.read()))
        return ImportJob.from_api({
            "id": self.imported_project_id,
            "import_status": "scheduled",
            "path_with_namespace": f"{namespace}/{path}",
        })

    def import_status(self, cancel: CancelToken, project_id: int) -> ImportJob:
        self._record("import_status", project_id)
        raw = self._next(self.import_statuses)
        return ImportJob.from_api({
            "id": project_id,
            "import_status": raw,
            "import_error": self.import_error,
        })


class FakeStorage:
    """Storage that keeps archives in memory and serves them from a directory."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.saved: dict[str, bytes] = {}
        self.fail_keys: set[str] = set()
        self._lock = threading.Lock()

    def save(self, token: CancelToken, local_path: Path, dest_key: str) -> None:
        token.raise_if_cancelled()
        if dest_key in self.fail_keys:
            raise StorageError(f"cannot save {dest_key}")
        with self._lock:
            self.saved[dest_key] = Path(local_path).read_bytes()

    def get(self, token: CancelToken, key: str) -> Path:
        token.raise_if_cancelled()
        name = key.rsplit("/", 1)[-1]
        fd, tmp = tempfile.mkstemp(prefix="gitlab-restore-", suffix=".tar.gz", dir=self.directory)
        with os.fdopen(fd, "wb") as f:
            f.write(self.saved[name])
        return Path(tmp)


@pytest.fixture
def fake_gitlab(export_bytes: bytes) -> FakeGitLab:
    """Fake GitLab whose exports download a valid archive."""
    return FakeGitLab(export_data=export_bytes)


@pytest.fixture
def fake_storage(temp_dir: Path) -> FakeStorage:
    """In-memory storage backend."""
    return FakeStorage(temp_dir)
