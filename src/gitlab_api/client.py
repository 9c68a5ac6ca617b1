"""
GitLab Backup - GitLab Client Module

Thin wrapper around a requests Session for the GitLab REST API (v4).

The endpoint and token can be changed at runtime by the host application;
requests in flight keep the values they started with.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import requests

from cancellation import CancelToken
from exceptions import GitLabAPIError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://gitlab.com/api/v4"


class ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class GitLabClient:
    """HTTP access to the GitLab API with token auth and request timeouts."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token: str = "",
        timeout: float = 3600,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the GitLab client.

        Args:
            api_url: API base URL, e.g. https://gitlab.com/api/v4.
            token: Personal access token sent as PRIVATE-TOKEN.
            timeout: Upper bound for a single request in seconds.
            session: Optional requests session (a new one by default).
        """
        self._lock = ReadWriteLock()
        self._api_url = api_url.rstrip("/")
        self._token = token
        self.timeout = timeout
        self.session = session or requests.Session()

        if not token:
            logger.warning("GitLab client initialized without a token")

    @property
    def api_url(self) -> str:
        with self._lock.read():
            return self._api_url

    def set_endpoint(self, api_url: str) -> None:
        """Point the client at another GitLab instance."""
        with self._lock.write():
            self._api_url = api_url.rstrip("/")

    def set_token(self, token: str) -> None:
        """Replace the API token."""
        if not token:
            logger.warning("No GitLab token provided")
        with self._lock.write():
            self._token = token

    def _snapshot(self) -> tuple[str, str]:
        with self._lock.read():
            return self._api_url, self._token

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.api_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        cancel: CancelToken,
        params: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
        stream: bool = False,
        raise_for_status: bool = True,
    ) -> requests.Response:
        """Send a request to the API.

        Args:
            method: HTTP method.
            path: Path below the API URL, or an absolute URL (pagination links).
            cancel: Cancellation token; its remaining time bounds the request timeout.
            raise_for_status: Raise GitLabAPIError on non-2xx responses.

        Raises:
            GitLabAPIError: On transport errors or (optionally) non-2xx responses.
            OperationCancelled: If ``cancel`` is already cancelled.
        """
        cancel.raise_if_cancelled()
        api_url, token = self._snapshot()
        url = path if path.startswith(("http://", "https://")) else f"{api_url}/{path.lstrip('/')}"

        timeout = self.timeout
        remaining = cancel.remaining()
        if remaining is not None:
            timeout = max(min(timeout, remaining), 0.001)

        try:
            response = self.session.request(
                method,
                url,
                headers={"PRIVATE-TOKEN": token},
                params=params,
                data=data,
                files=files,
                stream=stream,
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise GitLabAPIError(f"{method} {url} failed: {e}") from e

        if raise_for_status and not 200 <= response.status_code < 300:
            raise api_error(response)
        return response

    def get_json(self, path: str, cancel: CancelToken, params: Optional[dict[str, Any]] = None) -> Any:
        return self.request("GET", path, cancel, params=params).json()


def api_error(response: requests.Response) -> GitLabAPIError:
    """Build an error from a GitLab error response.

    GitLab answers errors with {"message": ...}; fall back to the status code.
    """
    try:
        message = response.json().get("message")
    except (ValueError, AttributeError):
        message = None

    if message:
        return GitLabAPIError(
            f"error message from GitLab API: {message}", status_code=response.status_code
        )
    return GitLabAPIError(
        f"unexpected HTTP status code: {response.status_code}", status_code=response.status_code
    )
