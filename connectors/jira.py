"""
Jira connector built on the shared REST client.

Fetches issues updated since a cursor and the sprints of the configured
agile board. Payloads are returned as the raw Jira JSON objects; mapping to
canonical entities happens in ``providers.jira.normalize``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from connectors.exceptions import PaginationException
from connectors.utils import RESTClient

logger = logging.getLogger(__name__)

JIRA_JQL_DATE_FORMAT = "%Y-%m-%d %H:%M"

SEARCH_PAGE_SIZE = 100
SPRINT_PAGE_SIZE = 50
MAX_SPRINT_PAGES = 200

ISSUE_FIELDS = [
    "summary",
    "description",
    "status",
    "assignee",
    "created",
    "updated",
    "customfield_10016",
    "customfield_10020",
    "priority",
    "issuetype",
    "labels",
]


def build_updated_issues_jql(project_keys: Sequence[str], since: datetime) -> str:
    """
    Build the incremental search query for issues updated at or after ``since``.

    :param project_keys: Jira project keys to search.
    :param since: Lower bound of the window.
    :return: JQL string.
    """
    keys = ", ".join(project_keys)
    return (
        f"project in ({keys}) AND updated >= "
        f"'{since.strftime(JIRA_JQL_DATE_FORMAT)}' ORDER BY updated DESC"
    )


class JiraConnector:
    """
    Jira Cloud connector using basic auth (account email + API token).
    """

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        project_keys: Sequence[str],
        board_id: Optional[str] = None,
        timeout: int = 30,
        rest_client: Optional[RESTClient] = None,
    ):
        """
        Initialize Jira connector.

        :param base_url: Jira site URL, e.g. https://example.atlassian.net.
        :param email: Account email used for basic auth.
        :param api_token: Jira API token.
        :param project_keys: Project keys included in issue searches.
        :param board_id: Agile board used for sprint lookups.
        :param timeout: Request timeout in seconds.
        :param rest_client: Optional pre-built REST client.
        """
        self.project_keys = list(project_keys)
        self.board_id = board_id
        self.rest_client = rest_client or RESTClient(
            base_url=base_url,
            timeout=timeout,
            auth=(email, api_token),
            source="jira",
        )

    def get_updated_issues(self, since: datetime) -> List[Dict[str, Any]]:
        """
        Get issues updated at or after ``since``, newest first.

        Bounded by a single page of ``SEARCH_PAGE_SIZE`` results; the
        incremental cursor keeps each window small.

        :param since: Lower bound of the window.
        :return: List of Jira issue payloads.
        """
        if not self.project_keys:
            logger.info("No Jira project keys configured; skipping issue search")
            return []

        params = {
            "jql": build_updated_issues_jql(self.project_keys, since),
            "maxResults": SEARCH_PAGE_SIZE,
            "fields": ",".join(ISSUE_FIELDS),
        }
        logger.debug(f"Searching Jira issues updated since {since}")
        data = self.rest_client.get("rest/api/3/search", params=params)
        issues = data.get("issues") or []
        logger.info(f"Retrieved {len(issues)} Jira issues")
        return issues

    def get_all_sprints(self) -> List[Dict[str, Any]]:
        """
        Get every sprint on the configured board.

        :return: List of Jira sprint payloads.
        """
        if not self.board_id:
            logger.info("No Jira board configured; skipping sprint lookup")
            return []

        sprints: List[Dict[str, Any]] = []
        start_at = 0
        pages = 0
        while True:
            if pages >= MAX_SPRINT_PAGES:
                raise PaginationException(
                    f"Sprint listing for board {self.board_id} did not terminate",
                    "jira",
                )
            pages += 1
            data = self.rest_client.get(
                f"rest/agile/1.0/board/{self.board_id}/sprint",
                params={"startAt": start_at, "maxResults": SPRINT_PAGE_SIZE},
            )
            values = data.get("values") or []
            sprints.extend(values)
            if data.get("isLast", True) or not values:
                break
            start_at += len(values)

        logger.info(f"Retrieved {len(sprints)} sprints from board {self.board_id}")
        return sprints

