from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from connectors.models import CostData, MetricDatapoint
from models.metrics import Metric, MetricType
from providers.aws.classification import classify_metric

SOURCE = "aws"


@dataclass(frozen=True)
class SeriesSummary:
    average: float
    maximum: float
    minimum: float
    unit: str
    count: int


def summarize_datapoints(datapoints: Sequence[MetricDatapoint]) -> Optional[SeriesSummary]:
    """
    Reduce a statistics window to a single summary.

    Averages are averaged, maxima maxed and minima minned; the unit is the
    first datapoint's. Returns None for an empty window.
    """
    if not datapoints:
        return None
    averages = [dp.average for dp in datapoints if dp.average is not None]
    maxima = [dp.maximum for dp in datapoints if dp.maximum is not None]
    minima = [dp.minimum for dp in datapoints if dp.minimum is not None]
    return SeriesSummary(
        average=sum(averages) / len(averages) if averages else 0.0,
        maximum=max(maxima) if maxima else 0.0,
        minimum=min(minima) if minima else 0.0,
        unit=datapoints[0].unit or "None",
        count=len(datapoints),
    )


def cloudwatch_series_to_metric(
    *,
    namespace: str,
    metric_name: str,
    dimension_name: str,
    dimension_value: str,
    resource_id: str,
    summary: SeriesSummary,
    team_id: Optional[uuid.UUID],
    collected_at: datetime,
) -> Metric:
    return Metric(
        team_id=team_id,
        type=classify_metric(namespace, metric_name),
        name=metric_name.lower(),
        value=summary.average,
        unit=summary.unit,
        source=SOURCE,
        timestamp=collected_at,
        tags={
            "namespace": namespace,
            "resource_id": resource_id,
            "dimension_name": dimension_name or "",
            "dimension_value": dimension_value or "",
            "max_value": str(summary.maximum),
            "min_value": str(summary.minimum),
            "data_point_count": str(summary.count),
        },
    )


def cost_to_metrics(
    *,
    total: CostData,
    by_service: Dict[str, CostData],
    start: date,
    end: date,
    team_id: Optional[uuid.UUID],
    collected_at: datetime,
) -> List[Metric]:
    """
    Build one ``total_cost`` row plus one ``service_cost`` row per service.
    """
    period = {"start_date": start.isoformat(), "end_date": end.isoformat()}
    metrics = [
        Metric(
            team_id=team_id,
            type=MetricType.COST,
            name="total_cost",
            value=total.total_amount,
            unit=total.currency,
            source=SOURCE,
            timestamp=collected_at,
            tags=dict(period),
        )
    ]
    for service, cost in sorted(by_service.items()):
        metrics.append(
            Metric(
                team_id=team_id,
                type=MetricType.COST,
                name="service_cost",
                value=cost.total_amount,
                unit=cost.currency,
                source=SOURCE,
                timestamp=collected_at,
                tags={"service": service, **period},
            )
        )
    return metrics
