"""
GitLab Backup - Restore Validator Module

Checks that a restore target has no commits, issues or labels.
"""

import logging
from typing import Optional

from cancellation import CancelToken
from gitlab_api.models import Page
from gitlab_api.rate_limiter import OperationClass, RateLimiters
from gitlab_api.services import CommitsService, IssuesService, LabelsService
from restore.types import EmptinessChecks

logger = logging.getLogger(__name__)


class EmptinessValidator:
    """Queries a project's content with single-item pages.

    Results are never cached: the target can change between calls.
    """

    def __init__(
        self,
        commits: CommitsService,
        issues: IssuesService,
        labels: LabelsService,
        limiters: Optional[RateLimiters] = None,
    ):
        self.commits = commits
        self.issues = issues
        self.labels = labels
        self.limiters = limiters

    def _acquire(self, cancel: CancelToken) -> None:
        cancel.raise_if_cancelled()
        if self.limiters is not None:
            self.limiters.acquire(cancel, OperationClass.METADATA)

    def validate_project_empty(self, cancel: CancelToken, project_id: int) -> EmptinessChecks:
        """Count commits, issues and labels of ``project_id``.

        The first failed listing aborts the check; partial counts are never
        reported.

        Raises:
            GitLabAPIError: Any listing failed, including a 404.
            OperationCancelled: ``cancel`` fired before one of the calls.
        """
        self._acquire(cancel)
        commits = self.commits.list_commits(cancel, project_id, per_page=1)
        self._acquire(cancel)
        issues = self.issues.list_issues(cancel, project_id, per_page=1)
        self._acquire(cancel)
        labels = self.labels.list_labels(cancel, project_id, per_page=1)
        logger.debug(
            f"Project {project_id} has {commits.count} commits, "
            f"{issues.count} issues, {labels.count} labels"
        )

        return _checks(commits, issues, labels)


def _checks(commits: Page, issues: Page, labels: Page) -> EmptinessChecks:
    return EmptinessChecks(
        has_commits=bool(commits.items) or commits.count > 0,
        has_issues=bool(issues.items) or issues.count > 0,
        has_labels=bool(labels.items) or labels.count > 0,
        commit_count=commits.count,
        issue_count=issues.count,
        label_count=labels.count,
    )
