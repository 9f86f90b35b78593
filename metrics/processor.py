import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from errors import NotFoundError
from metrics.compute_sprints import (bucket_points, compute_sprint_metrics,
                                     compute_sprint_velocity,
                                     compute_team_velocity,
                                     compute_time_series_stats)
from metrics.schemas import SprintMetrics, SprintVelocity, TeamVelocity, TimeSeries
from models.metrics import Metric, MetricType
from models.work_items import Ticket
from storage import SQLAlchemyStore
from utils import DateRange

logger = logging.getLogger(__name__)

DEFAULT_SPRINT_COUNT = 6


class MetricsProcessor:
    """Read-side queries over sprints, tickets and stored metric rows."""

    def __init__(self, store: SQLAlchemyStore) -> None:
        self.store = store

    async def sprint_metrics(
        self, sprint_external_id: str, today: Optional[date] = None
    ) -> SprintMetrics:
        sprint = await self.store.get_sprint_by_external_id(sprint_external_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_external_id)
        tickets = await self.store.list_sprint_tickets(sprint.id)
        today = today or datetime.now(timezone.utc).date()
        return compute_sprint_metrics(sprint=sprint, tickets=tickets, today=today)

    async def team_velocity(
        self, team_id: uuid.UUID, sprint_count: int = DEFAULT_SPRINT_COUNT
    ) -> TeamVelocity:
        team = await self.store.get_team(team_id)
        if team is None:
            raise NotFoundError("Team", team_id)

        sprints = await self.store.list_recent_sprints(team_id, sprint_count)
        by_sprint: Dict[uuid.UUID, List[Ticket]] = defaultdict(list)
        for ticket in await self.store.list_tickets_for_sprints([s.id for s in sprints]):
            by_sprint[ticket.sprint_id].append(ticket)
        velocities: List[SprintVelocity] = [
            compute_sprint_velocity(sprint=sprint, tickets=by_sprint[sprint.id])
            for sprint in sprints
        ]
        logger.debug("Computed velocity for team %s over %d sprints", team_id, len(velocities))
        return compute_team_velocity(team_id=team_id, sprints=velocities)

    async def time_series(
        self,
        metric_type: MetricType,
        date_range: DateRange,
        granularity: str = "raw",
        team_id: Optional[uuid.UUID] = None,
    ) -> TimeSeries:
        """
        Points for one metric type plus summary statistics.

        Statistics are taken over the raw stored values, independent of the
        bucketing applied to the returned points.
        """
        rows = await self.store.list_metrics(
            metric_type, date_range.start, date_range.end, team_id=team_id
        )
        samples = [(row.timestamp, row.value) for row in rows]
        return TimeSeries(
            metric_type=metric_type.value,
            granularity=granularity,
            points=bucket_points(samples, granularity),
            stats=compute_time_series_stats([value for _, value in samples]),
        )

    async def record_sprint_velocity(
        self, sprint_external_id: str, now: Optional[datetime] = None
    ) -> Metric:
        """Append a VELOCITY row with the sprint's completed points."""
        sprint = await self.store.get_sprint_by_external_id(sprint_external_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_external_id)
        tickets = await self.store.list_sprint_tickets(sprint.id)
        velocity = compute_sprint_velocity(sprint=sprint, tickets=tickets)
        metric = Metric(
            team_id=sprint.team_id,
            type=MetricType.VELOCITY,
            name="sprint_velocity",
            value=float(velocity.completed_points),
            unit="points",
            source="metrics-processor",
            timestamp=now or datetime.now(timezone.utc),
            tags={
                "sprint_id": sprint.external_id,
                "planned_points": str(velocity.planned_points),
            },
        )
        await self.store.insert_metrics([metric])
        logger.info(
            "Recorded velocity %d for sprint %s", velocity.completed_points, sprint.external_id
        )
        return metric
