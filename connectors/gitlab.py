"""
GitLab connector using python-gitlab.

This connector provides the commit, merge request and deployment lookups
used by the source-control collector. Records are returned as the raw
GitLab REST attribute dictionaries.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import gitlab
from gitlab.exceptions import GitlabAuthenticationError, GitlabError

from connectors.exceptions import (
    APIException,
    AuthenticationException,
    NotFoundException,
    RateLimitException,
)
from connectors.utils import retry_with_backoff

logger = logging.getLogger(__name__)

ProjectId = Union[int, str]


class GitLabConnector:
    """
    GitLab connector with rate limit and error handling.
    """

    def __init__(
        self,
        url: str = "https://gitlab.com",
        private_token: Optional[str] = None,
        per_page: int = 100,
        timeout: int = 30,
        client: Optional[gitlab.Gitlab] = None,
    ):
        """
        Initialize GitLab connector.

        :param url: GitLab instance URL.
        :param private_token: GitLab private token.
        :param per_page: Number of items per page for pagination.
        :param timeout: Request timeout in seconds.
        :param client: Optional pre-built python-gitlab client.
        """
        self.url = url
        self.per_page = per_page

        if client is not None:
            self.gitlab = client
            return

        self.gitlab = gitlab.Gitlab(
            url=url, private_token=private_token, timeout=timeout
        )
        if private_token:
            try:
                self.gitlab.auth()
            except GitlabAuthenticationError as e:
                raise AuthenticationException(
                    f"GitLab authentication failed: {e}", "gitlab"
                )

    def _handle_gitlab_exception(self, e: Exception) -> None:
        """
        Convert python-gitlab exceptions to connector exceptions.

        :param e: Exception from GitLab API.
        :raises: Appropriate connector exception.
        """
        if isinstance(e, GitlabAuthenticationError):
            raise AuthenticationException(f"GitLab authentication failed: {e}", "gitlab")
        elif isinstance(e, GitlabError):
            code = getattr(e, "response_code", None)
            if code == 429:
                raise RateLimitException(f"GitLab rate limit exceeded: {e}", "gitlab")
            elif code == 404:
                raise NotFoundException(f"GitLab resource not found: {e}", "gitlab")
            raise APIException(f"GitLab API error: {e}", "gitlab")
        else:
            raise APIException(f"Unexpected error: {e}", "gitlab")

    def _project(self, project_id: ProjectId):
        return self.gitlab.projects.get(project_id, lazy=True)

    @staticmethod
    def _attributes(items) -> List[Dict[str, Any]]:
        return [dict(item.attributes) for item in items]

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException, APIException),
    )
    def get_commits(
        self, project_id: ProjectId, since: datetime
    ) -> List[Dict[str, Any]]:
        """
        Get commits authored since ``since`` on the default branch.

        :param project_id: GitLab project ID or path.
        :param since: Lower bound of the window.
        :return: List of commit summaries.
        """
        try:
            commits = self._project(project_id).commits.list(
                since=since.isoformat(),
                per_page=self.per_page,
                get_all=True,
            )
            result = self._attributes(commits)
            logger.info(f"Retrieved {len(result)} commits for project {project_id}")
            return result
        except Exception as e:
            self._handle_gitlab_exception(e)

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException, APIException),
    )
    def get_commit_detail(self, project_id: ProjectId, sha: str) -> Dict[str, Any]:
        """
        Get a single commit including its line stats.

        :param project_id: GitLab project ID or path.
        :param sha: Commit SHA.
        :return: Commit detail.
        """
        try:
            commit = self._project(project_id).commits.get(sha)
            return dict(commit.attributes)
        except Exception as e:
            self._handle_gitlab_exception(e)

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException, APIException),
    )
    def get_merged_merge_requests(
        self, project_id: ProjectId, since: datetime
    ) -> List[Dict[str, Any]]:
        """
        Get merge requests in state ``merged`` updated since ``since``.

        :param project_id: GitLab project ID or path.
        :param since: Lower bound of the window.
        :return: List of merge requests.
        """
        try:
            mrs = self._project(project_id).mergerequests.list(
                state="merged",
                updated_after=since.isoformat(),
                per_page=self.per_page,
                get_all=True,
            )
            result = self._attributes(mrs)
            logger.info(
                f"Retrieved {len(result)} merged merge requests for project {project_id}"
            )
            return result
        except Exception as e:
            self._handle_gitlab_exception(e)

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException, APIException),
    )
    def get_open_merge_requests(self, project_id: ProjectId) -> List[Dict[str, Any]]:
        """
        Get every currently open merge request.

        :param project_id: GitLab project ID or path.
        :return: List of merge requests.
        """
        try:
            mrs = self._project(project_id).mergerequests.list(
                state="opened",
                per_page=self.per_page,
                get_all=True,
            )
            result = self._attributes(mrs)
            logger.info(
                f"Retrieved {len(result)} open merge requests for project {project_id}"
            )
            return result
        except Exception as e:
            self._handle_gitlab_exception(e)

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException, APIException),
    )
    def get_deployments(
        self, project_id: ProjectId, since: datetime
    ) -> List[Dict[str, Any]]:
        """
        Get deployments updated since ``since``.

        :param project_id: GitLab project ID or path.
        :param since: Lower bound of the window.
        :return: List of deployments.
        """
        try:
            deployments = self._project(project_id).deployments.list(
                updated_after=since.isoformat(),
                order_by="updated_at",
                per_page=self.per_page,
                get_all=True,
            )
            result = self._attributes(deployments)
            logger.info(
                f"Retrieved {len(result)} deployments for project {project_id}"
            )
            return result
        except Exception as e:
            self._handle_gitlab_exception(e)
