"""
Sprint lifecycle transitions.

Sprints move PLANNED -> ACTIVE -> COMPLETED. Starting a sprint snapshots the
points committed to it; completing it snapshots the points delivered. Both
snapshots come from the sprint's tickets at transition time.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from errors import InvalidStateError, NotFoundError
from metrics.compute_sprints import compute_sprint_velocity
from metrics.schemas import SprintVelocity
from models.work_items import Sprint, SprintStatus
from storage import SQLAlchemyStore

logger = logging.getLogger(__name__)


def _today(today: Optional[date]) -> date:
    return today or datetime.now(timezone.utc).date()


class SprintService:
    def __init__(self, store: SQLAlchemyStore) -> None:
        self.store = store

    async def get_sprint(self, sprint_external_id: str) -> Sprint:
        sprint = await self.store.get_sprint_by_external_id(sprint_external_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_external_id)
        return sprint

    async def _points(self, sprint: Sprint) -> SprintVelocity:
        tickets = await self.store.list_sprint_tickets(sprint.id)
        return compute_sprint_velocity(sprint=sprint, tickets=tickets)

    async def start_sprint(
        self, sprint_external_id: str, today: Optional[date] = None
    ) -> Sprint:
        """
        Move a planned sprint to active and snapshot its committed points.

        :raises InvalidStateError: If the sprint is not PLANNED.
        """
        sprint = await self.get_sprint(sprint_external_id)
        if sprint.status != SprintStatus.PLANNED:
            raise InvalidStateError(
                f"Sprint {sprint_external_id} must be planned to start, "
                f"not {sprint.status.value}"
            )

        points = await self._points(sprint)
        sprint.committed_points = points.planned_points
        sprint.status = SprintStatus.ACTIVE
        if sprint.start_date is None:
            sprint.start_date = _today(today)
        await self.store.save(sprint)
        logger.info(
            "Started sprint %s with %d committed points",
            sprint.external_id,
            sprint.committed_points,
        )
        return sprint

    async def complete_sprint(
        self, sprint_external_id: str, today: Optional[date] = None
    ) -> Sprint:
        """
        Move an active sprint to completed and snapshot its completed points.

        :raises InvalidStateError: If the sprint is not ACTIVE.
        """
        sprint = await self.get_sprint(sprint_external_id)
        if sprint.status != SprintStatus.ACTIVE:
            raise InvalidStateError(
                f"Sprint {sprint_external_id} must be active to complete, "
                f"not {sprint.status.value}"
            )

        points = await self._points(sprint)
        sprint.completed_points = points.completed_points
        sprint.status = SprintStatus.COMPLETED
        if sprint.end_date is None:
            sprint.end_date = _today(today)
        await self.store.save(sprint)
        logger.info(
            "Completed sprint %s with %d completed points out of %s committed",
            sprint.external_id,
            sprint.completed_points,
            sprint.committed_points,
        )
        return sprint

    async def update_sprint_points(self, sprint_external_id: str) -> Sprint:
        """Refresh both point snapshots without changing status."""
        sprint = await self.get_sprint(sprint_external_id)
        points = await self._points(sprint)
        sprint.committed_points = points.planned_points
        sprint.completed_points = points.completed_points
        await self.store.save(sprint)
        return sprint
