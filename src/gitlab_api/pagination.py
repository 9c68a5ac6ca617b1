"""
GitLab Backup - Pagination Module

Follows GitLab's Link-header pagination until the last page.
"""

import logging
from typing import Any, Iterator, Optional

from cancellation import CancelToken
from exceptions import GitLabAPIError
from gitlab_api.client import GitLabClient
from gitlab_api.models import Page

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class PaginatedFetcher:
    """Concatenates every page of a list endpoint, in server order."""

    def __init__(self, client: GitLabClient, page_size: int = DEFAULT_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def fetch_page(
        self,
        cancel: CancelToken,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Page:
        """Fetch a single page, keeping the X-Total header and the next link."""
        response = self.client.request("GET", path, cancel, params=params)
        total = response.headers.get("X-Total")
        return Page(
            items=response.json(),
            total=int(total) if total and total.isdigit() else None,
            next_url=response.links.get("next", {}).get("url"),
        )

    def iter_pages(
        self,
        cancel: CancelToken,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Iterator[Page]:
        """Yield pages until the server stops sending a next link.

        Raises:
            GitLabAPIError: If a page fails or the server links back to a page already seen.
        """
        query = {"per_page": self.page_size, **(params or {})}
        url: Optional[str] = path
        seen: set[str] = set()

        while url:
            if url in seen:
                raise GitLabAPIError(f"pagination loop detected at {url}")
            seen.add(url)

            page = self.fetch_page(cancel, url, params=query)
            yield page

            url = page.next_url
            # The next link already carries the query string
            query = None

    def fetch_all(
        self,
        cancel: CancelToken,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Return all items of a list endpoint.

        Any page failure propagates; partial results are never returned.
        """
        items: list[dict[str, Any]] = []
        pages = 0
        for page in self.iter_pages(cancel, path, params):
            items.extend(page.items)
            pages += 1
        logger.debug(f"Fetched {len(items)} items from {path} ({pages} pages)")
        return items
