from __future__ import annotations

import uuid
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

from metrics.schemas import (SprintMetrics, SprintVelocity, TeamVelocity,
                             TimeSeriesPoint, TimeSeriesStats)
from metrics.stats import mean, median, percentage_change, percentile
from models.work_items import Sprint, Ticket, TicketStatus

# Number of sprints on each side of the velocity trend comparison.
TREND_WINDOW = 3

GRANULARITIES = ("raw", "hour", "day", "week")


def _points(ticket: Ticket) -> int:
    return int(ticket.story_points or 0)


def _rate(part: float, whole: float) -> float:
    return part / whole * 100.0 if whole else 0.0


def compute_sprint_metrics(
    *,
    sprint: Sprint,
    tickets: Sequence[Ticket],
    today: date,
) -> SprintMetrics:
    """
    Summarize ticket progress for one sprint.

    Buckets: done+closed count as completed, todo+backlog as todo. Tickets in
    review, testing or cancelled only count toward the total.
    """
    total = len(tickets)
    completed = sum(1 for t in tickets if t.is_completed)
    in_progress = sum(1 for t in tickets if t.status == TicketStatus.IN_PROGRESS)
    todo = sum(
        1 for t in tickets if t.status in (TicketStatus.TODO, TicketStatus.BACKLOG)
    )
    blocked = sum(1 for t in tickets if t.status == TicketStatus.BLOCKED)

    cycle_times = [t.cycle_time_hours for t in tickets if t.cycle_time_hours is not None]

    return SprintMetrics(
        sprint_id=sprint.external_id,
        sprint_name=sprint.name,
        total_tickets=total,
        completed_tickets=completed,
        in_progress_tickets=in_progress,
        todo_tickets=todo,
        blocked_tickets=blocked,
        total_story_points=sum(_points(t) for t in tickets),
        completed_story_points=sum(_points(t) for t in tickets if t.is_completed),
        average_cycle_time_hours=mean(cycle_times),
        days_remaining=sprint.days_remaining(today),
        completion_rate=_rate(completed, total),
    )


def compute_sprint_velocity(
    *, sprint: Sprint, tickets: Sequence[Ticket]
) -> SprintVelocity:
    planned = sum(_points(t) for t in tickets)
    done = sum(_points(t) for t in tickets if t.is_completed)
    return SprintVelocity(
        sprint_id=sprint.external_id,
        sprint_name=sprint.name,
        planned_points=planned,
        completed_points=done,
        completion_rate=_rate(done, planned),
    )


def velocity_trend(completed_newest_first: Sequence[float]) -> float:
    """
    Percent change of the mean of the newest three sprints against the three before.

    Needs at least six sprints; otherwise the trend is 0.
    """
    if len(completed_newest_first) < TREND_WINDOW * 2:
        return 0.0
    recent = mean(completed_newest_first[:TREND_WINDOW])
    previous = mean(completed_newest_first[TREND_WINDOW : TREND_WINDOW * 2])
    return percentage_change(previous, recent)


def compute_team_velocity(
    *, team_id: uuid.UUID, sprints: Sequence[SprintVelocity]
) -> TeamVelocity:
    """``sprints`` must be ordered newest end date first."""
    completed = [float(s.completed_points) for s in sprints]
    return TeamVelocity(
        team_id=team_id,
        sprints=list(sprints),
        average_velocity=mean(completed),
        velocity_trend=velocity_trend(completed),
    )


def compute_time_series_stats(values: Sequence[float]) -> TimeSeriesStats:
    if not values:
        return TimeSeriesStats()
    return TimeSeriesStats(
        min=float(min(values)),
        max=float(max(values)),
        mean=mean(values),
        median=median(values),
        p95=percentile(values, 95),
        p99=percentile(values, 99),
    )


def _bucket_start(ts: datetime, granularity: str) -> datetime:
    if granularity == "hour":
        return ts.replace(minute=0, second=0, microsecond=0)
    if granularity == "day":
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "week":
        day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
        return day - timedelta(days=day.weekday())
    raise ValueError(f"Unsupported granularity: {granularity}")


def bucket_points(
    samples: Iterable[Tuple[datetime, float]], granularity: str
) -> List[TimeSeriesPoint]:
    """
    Average samples into fixed buckets.

    ``raw`` keeps every sample as-is; the other granularities emit one point
    per bucket, stamped with the bucket start.
    """
    if granularity not in GRANULARITIES:
        raise ValueError(
            f"Unsupported granularity: {granularity}. Supported: {', '.join(GRANULARITIES)}"
        )
    ordered = sorted(samples, key=lambda s: s[0])
    if granularity == "raw":
        return [TimeSeriesPoint(timestamp=ts, value=float(v)) for ts, v in ordered]

    buckets: Dict[datetime, List[float]] = OrderedDict()
    for ts, value in ordered:
        buckets.setdefault(_bucket_start(ts, granularity), []).append(float(value))
    return [
        TimeSeriesPoint(timestamp=start, value=mean(values))
        for start, values in buckets.items()
    ]
