from __future__ import annotations

from typing import Iterable, Sequence

from metrics.schemas import (ChangeFailureRate, DeploymentFrequency, DoraTier,
                             LeadTimeForChanges, MeanTimeToRecovery)
from metrics.stats import mean


def deployment_frequency_tier(per_day: float) -> DoraTier:
    """
    - elite:  at least daily
    - high:   at least weekly
    - medium: at least monthly
    - low:    less often
    """
    if per_day >= 1.0:
        return DoraTier.ELITE
    if per_day >= 1.0 / 7.0:
        return DoraTier.HIGH
    if per_day >= 1.0 / 30.0:
        return DoraTier.MEDIUM
    return DoraTier.LOW


def deployment_trend(per_day: float) -> str:
    if per_day > 1.0:
        return "up"
    if per_day < 0.14:
        return "down"
    return "stable"


def lead_time_tier(average_hours: float) -> DoraTier:
    if average_hours < 24:
        return DoraTier.ELITE
    if average_hours < 168:
        return DoraTier.HIGH
    if average_hours < 720:
        return DoraTier.MEDIUM
    return DoraTier.LOW


def change_failure_tier(rate: float) -> DoraTier:
    if rate <= 5:
        return DoraTier.ELITE
    if rate <= 10:
        return DoraTier.HIGH
    if rate <= 15:
        return DoraTier.MEDIUM
    return DoraTier.LOW


def mttr_tier(average_minutes: float) -> DoraTier:
    if average_minutes < 60:
        return DoraTier.ELITE
    if average_minutes < 1440:
        return DoraTier.HIGH
    if average_minutes < 10080:
        return DoraTier.MEDIUM
    return DoraTier.LOW


def compute_deployment_frequency(*, deployments: int, days: int) -> DeploymentFrequency:
    if deployments <= 0:
        return DeploymentFrequency.empty()
    per_day = deployments / float(max(days, 1))
    return DeploymentFrequency(
        total_deployments=deployments,
        per_day=per_day,
        per_week=per_day * 7.0,
        tier=deployment_frequency_tier(per_day),
        trend=deployment_trend(per_day),
    )


def compute_lead_time(*, lead_times_hours: Iterable[int]) -> LeadTimeForChanges:
    """
    Summarize per-change lead times in whole hours.

    Median is the upper-middle element for even samples and p90 is the
    element at ``int(n * 0.9)``; neither interpolates.
    """
    ordered = sorted(lead_times_hours)
    if not ordered:
        return LeadTimeForChanges.empty()
    n = len(ordered)
    average = mean(ordered)
    return LeadTimeForChanges(
        average_hours=average,
        median_hours=float(ordered[n // 2]),
        p90_hours=float(ordered[min(int(n * 0.9), n - 1)]),
        sample_size=n,
        tier=lead_time_tier(average),
    )


def compute_change_failure_rate(*, failed: int, total: int) -> ChangeFailureRate:
    if total <= 0:
        return ChangeFailureRate.empty()
    rate = failed / float(total) * 100.0
    return ChangeFailureRate(
        rate=rate,
        failed_deployments=failed,
        total_deployments=total,
        tier=change_failure_tier(rate),
    )


def compute_mttr(*, recovery_minutes: Sequence[int]) -> MeanTimeToRecovery:
    if not recovery_minutes:
        return MeanTimeToRecovery.empty()
    average = mean(recovery_minutes)
    return MeanTimeToRecovery(
        average_minutes=average,
        incident_count=len(recovery_minutes),
        tier=mttr_tier(average),
    )


def overall_tier(tiers: Sequence[DoraTier]) -> DoraTier:
    """Average tier scores (elite=4 .. low=1) and re-bucket at 3.5 / 2.5 / 1.5."""
    if not tiers:
        return DoraTier.LOW
    score = mean([t.score for t in tiers])
    if score >= 3.5:
        return DoraTier.ELITE
    if score >= 2.5:
        return DoraTier.HIGH
    if score >= 1.5:
        return DoraTier.MEDIUM
    return DoraTier.LOW
