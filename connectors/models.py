"""
Typed records returned by the source clients.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MetricDatapoint:
    """One CloudWatch statistics bucket."""

    timestamp: Optional[str]
    average: Optional[float]
    maximum: Optional[float]
    minimum: Optional[float]
    unit: Optional[str] = None


@dataclass(frozen=True)
class CostData:
    """Cost for a period, optionally split per day."""

    total_amount: float
    currency: str
    daily_amounts: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceKind:
    """A resource kind and the CloudWatch metrics collected for it."""

    name: str
    namespace: str
    dimension_names: List[str]
    metric_names: List[str]


@dataclass(frozen=True)
class ForecastPeriod:
    start: str
    end: str
    mean_amount: float


@dataclass(frozen=True)
class CostForecast:
    """Forecast spend for a future window, split into monthly periods."""

    total_amount: float
    currency: str
    periods: List[ForecastPeriod] = field(default_factory=list)


@dataclass(frozen=True)
class ResourceCost:
    service: str
    usage_type: str
    amount: float
    currency: str = "USD"
