from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


class DoraTier(str, enum.Enum):
    ELITE = "elite"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> int:
        return _TIER_SCORES[self]


_TIER_SCORES = {
    DoraTier.ELITE: 4,
    DoraTier.HIGH: 3,
    DoraTier.MEDIUM: 2,
    DoraTier.LOW: 1,
}


@dataclass(frozen=True)
class SprintMetrics:
    sprint_id: str
    sprint_name: Optional[str]
    total_tickets: int
    completed_tickets: int
    in_progress_tickets: int
    todo_tickets: int
    blocked_tickets: int
    total_story_points: int
    completed_story_points: int
    average_cycle_time_hours: float
    days_remaining: int
    completion_rate: float


@dataclass(frozen=True)
class SprintVelocity:
    sprint_id: str
    sprint_name: Optional[str]
    planned_points: int
    completed_points: int
    completion_rate: float


@dataclass(frozen=True)
class TeamVelocity:
    team_id: uuid.UUID
    sprints: List[SprintVelocity]
    average_velocity: float
    velocity_trend: float


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class TimeSeriesStats:
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass(frozen=True)
class TimeSeries:
    metric_type: str
    granularity: str
    points: List[TimeSeriesPoint]
    stats: TimeSeriesStats


@dataclass(frozen=True)
class DeploymentFrequency:
    total_deployments: int
    per_day: float
    per_week: float
    tier: DoraTier
    trend: str  # up|down|stable

    @classmethod
    def empty(cls) -> "DeploymentFrequency":
        return cls(0, 0.0, 0.0, DoraTier.LOW, "stable")


@dataclass(frozen=True)
class LeadTimeForChanges:
    average_hours: float
    median_hours: float
    p90_hours: float
    sample_size: int
    tier: DoraTier

    @classmethod
    def empty(cls) -> "LeadTimeForChanges":
        return cls(0.0, 0.0, 0.0, 0, DoraTier.LOW)


@dataclass(frozen=True)
class ChangeFailureRate:
    rate: float
    failed_deployments: int
    total_deployments: int
    tier: DoraTier

    @classmethod
    def empty(cls) -> "ChangeFailureRate":
        return cls(0.0, 0, 0, DoraTier.ELITE)


@dataclass(frozen=True)
class MeanTimeToRecovery:
    average_minutes: float
    incident_count: int
    tier: DoraTier

    @classmethod
    def empty(cls) -> "MeanTimeToRecovery":
        return cls(0.0, 0, DoraTier.ELITE)


@dataclass(frozen=True)
class DoraMetrics:
    start: datetime
    end: datetime
    deployment_frequency: DeploymentFrequency
    lead_time: LeadTimeForChanges
    change_failure_rate: ChangeFailureRate
    mttr: MeanTimeToRecovery
    overall_tier: DoraTier


@dataclass(frozen=True)
class IncidentMetrics:
    total_incidents: int
    resolved_incidents: int
    open_incidents: int
    average_mttr_minutes: float
    by_severity: Dict[str, int] = field(default_factory=dict)
