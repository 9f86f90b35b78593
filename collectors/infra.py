import logging
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from collectors.base import CollectionResult, run_sync
from connectors import (RESOURCE_KINDS, CloudWatchConnector, ConnectorException,
                        CostExplorerConnector)
from connectors.aws import resource_dimensions
from models.metrics import Metric
from models.teams import Team
from providers.aws.normalize import (cloudwatch_series_to_metric,
                                     cost_to_metrics, summarize_datapoints)
from storage import SQLAlchemyStore

logger = logging.getLogger(__name__)

# Team.aws_resources key -> resource kind name
RESOURCE_KEY_KINDS: Tuple[Tuple[str, str], ...] = (
    ("ec2_instances", "ec2"),
    ("rds_instances", "rds"),
    ("ecs_services", "ecs"),
    ("lambda_functions", "lambda"),
    ("load_balancers", "alb"),
)


class InfraCollector:
    """Pull CloudWatch statistics and Cost Explorer spend into the metrics table."""

    def __init__(
        self,
        store: SQLAlchemyStore,
        cloudwatch: Optional[CloudWatchConnector] = None,
        cost_explorer: Optional[CostExplorerConnector] = None,
    ) -> None:
        self.store = store
        self.cloudwatch = cloudwatch
        self.cost_explorer = cost_explorer

    async def collect_resource_metrics(
        self,
        kind_name: str,
        resource: str,
        team_id: Optional[uuid.UUID],
        since: datetime,
        now: Optional[datetime] = None,
    ) -> List[Metric]:
        """
        Fetch and store one resource's metric catalog.

        Series with no datapoints in the window produce no row.

        :raises ConnectorException: If CloudWatch cannot be queried.
        :raises ValueError: If the resource identifier is malformed.
        """
        if self.cloudwatch is None:
            raise ValueError("CloudWatch connector is not configured")
        kind = RESOURCE_KINDS[kind_name]
        now = now or datetime.now(timezone.utc)
        dimensions = resource_dimensions(kind, resource)
        series = await run_sync(
            self.cloudwatch.get_resource_metrics, kind, resource, since, now
        )

        dimension_name, dimension_value = dimensions[-1]
        metrics: List[Metric] = []
        for metric_name, datapoints in series.items():
            summary = summarize_datapoints(datapoints)
            if summary is None:
                logger.debug(
                    "No datapoints for %s %s on %s", kind.namespace, metric_name, resource
                )
                continue
            metrics.append(
                cloudwatch_series_to_metric(
                    namespace=kind.namespace,
                    metric_name=metric_name,
                    dimension_name=dimension_name,
                    dimension_value=dimension_value,
                    resource_id=f"{kind.name}:{resource}",
                    summary=summary,
                    team_id=team_id,
                    collected_at=now,
                )
            )
        await self.store.insert_metrics(metrics)
        logger.info(
            "Collected %d %s metrics for %s", len(metrics), kind.name, resource
        )
        return metrics

    async def collect_team_metrics(
        self, team: Team, since: datetime, now: Optional[datetime] = None
    ) -> CollectionResult:
        """Collect every configured resource of a team; one failing resource does not stop the rest."""
        count = 0
        errors = 0
        for key, kind_name in RESOURCE_KEY_KINDS:
            for resource in team.resource_ids(key):
                try:
                    stored = await self.collect_resource_metrics(
                        kind_name, resource, team.id, since, now
                    )
                    count += len(stored)
                except Exception as e:
                    logger.error(
                        "Metric collection failed for %s %s: %s", kind_name, resource, e
                    )
                    errors += 1
        return CollectionResult(count=count, error_count=errors)

    async def collect_cost_metrics(
        self, team_id: Optional[uuid.UUID], start: date, end: date
    ) -> CollectionResult:
        if self.cost_explorer is None:
            logger.info("Cost Explorer not configured; skipping cost collection")
            return CollectionResult()

        logger.info("Collecting cost metrics from %s to %s", start, end)
        try:
            total = await run_sync(self.cost_explorer.get_total_cost, start, end)
            by_service = await run_sync(
                self.cost_explorer.get_cost_by_service, start, end
            )
        except ConnectorException as e:
            logger.error("Cost fetch failed: %s", e)
            return CollectionResult.failed()

        metrics = cost_to_metrics(
            total=total,
            by_service=by_service,
            start=start,
            end=end,
            team_id=team_id,
            collected_at=datetime.now(timezone.utc),
        )
        saved = await self.store.insert_metrics(metrics)
        logger.info("Collected %d cost metrics", saved)
        return CollectionResult(count=saved)
