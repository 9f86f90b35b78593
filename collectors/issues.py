import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from collectors.base import CollectionResult, Ok, Outcome, Skipped, run_sync
from connectors import ConnectorException, JiraConnector
from models.work_items import COMPLETED_STATUSES, Ticket, TicketStatus
from providers.jira.normalize import (assignee_email, jira_issue_to_ticket,
                                      jira_sprint_to_model, sprint_external_id)
from storage import SQLAlchemyStore

logger = logging.getLogger(__name__)

# Fields refreshed on every poll of an already-known ticket.
MUTABLE_TICKET_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "story_points",
    "labels",
    "external_updated_at",
)


def apply_status_timestamps(ticket: Ticket, status: TicketStatus, now: datetime) -> None:
    """Stamp started/completed the first time the ticket reaches those states."""
    if status == TicketStatus.IN_PROGRESS and ticket.started_at is None:
        ticket.started_at = now
    if status in COMPLETED_STATUSES and ticket.completed_at is None:
        ticket.completed_at = now


class IssueCollector:
    """Pull Jira issues and sprints into the store."""

    def __init__(
        self,
        connector: JiraConnector,
        store: SQLAlchemyStore,
        team_id: Optional[uuid.UUID] = None,
    ) -> None:
        self.connector = connector
        self.store = store
        self.team_id = team_id

    async def collect_tickets(
        self, since: datetime, now: Optional[datetime] = None
    ) -> CollectionResult:
        logger.info("Starting Jira ticket collection since %s", since.isoformat())
        try:
            issues: List[Dict[str, Any]] = await run_sync(
                self.connector.get_updated_issues, since
            )
        except ConnectorException as e:
            logger.error("Jira ticket fetch failed: %s", e)
            return CollectionResult.failed()

        now = now or datetime.now(timezone.utc)
        outcomes: List[Outcome] = []
        for issue in issues:
            outcomes.append(await self._process_issue(issue, now))

        result = CollectionResult.from_outcomes(outcomes)
        logger.info(
            "Collected %d tickets from Jira (%d skipped)",
            result.count,
            result.error_count,
        )
        return result

    async def _process_issue(self, issue: Dict[str, Any], now: datetime) -> Outcome:
        key = issue.get("key")
        try:
            mapped = jira_issue_to_ticket(issue)
            existing = await self.store.get_ticket(mapped.external_id, mapped.source)
            if existing is not None:
                for field in MUTABLE_TICKET_FIELDS:
                    setattr(existing, field, getattr(mapped, field))
                apply_status_timestamps(existing, mapped.status, now)
                if existing.sprint_id is None:
                    existing.sprint_id = await self._sprint_id_for(issue)
                await self.store.save(existing)
            else:
                developer = await self.store.find_developer_by_email(
                    assignee_email(issue)
                )
                if developer is not None:
                    mapped.developer_id = developer.id
                mapped.sprint_id = await self._sprint_id_for(issue)
                apply_status_timestamps(mapped, mapped.status, now)
                await self.store.save(mapped)
            return Ok(mapped.external_id)
        except Exception as e:
            logger.warning("Skipping Jira issue %s: %s", key, e)
            return Skipped(key, str(e))

    async def _sprint_id_for(self, issue: Dict[str, Any]) -> Optional[uuid.UUID]:
        external_id = sprint_external_id(issue)
        if external_id is None:
            return None
        sprint = await self.store.get_sprint_by_external_id(external_id)
        return sprint.id if sprint is not None else None

    async def collect_sprints(self) -> CollectionResult:
        """Insert board sprints that have not been seen before. Known sprints are left as-is."""
        logger.info("Starting Jira sprint collection")
        try:
            payloads: List[Dict[str, Any]] = await run_sync(
                self.connector.get_all_sprints
            )
        except ConnectorException as e:
            logger.error("Jira sprint fetch failed: %s", e)
            return CollectionResult.failed()

        inserted = 0
        errors = 0
        for payload in payloads:
            sprint_id = payload.get("id")
            try:
                if await self.store.has_sprint(str(sprint_id)):
                    continue
                sprint = jira_sprint_to_model(payload)
                sprint.team_id = self.team_id
                await self.store.save(sprint)
                inserted += 1
            except Exception as e:
                logger.warning("Skipping Jira sprint %s: %s", sprint_id, e)
                errors += 1

        logger.info("Collected %d new sprints from Jira", inserted)
        return CollectionResult(count=inserted, error_count=errors)
