import logging

from metrics.compute_dora import (compute_change_failure_rate,
                                  compute_deployment_frequency,
                                  compute_lead_time, compute_mttr,
                                  overall_tier)
from metrics.schemas import (ChangeFailureRate, DeploymentFrequency,
                             DoraMetrics, LeadTimeForChanges,
                             MeanTimeToRecovery)
from storage import SQLAlchemyStore
from utils import DateRange

logger = logging.getLogger(__name__)


class DoraEngine:
    """
    The four DORA metrics over a closed date range.

    A deployment counts as failed when its status is FAILED or it was marked
    as having caused an incident.
    """

    def __init__(self, store: SQLAlchemyStore) -> None:
        self.store = store

    async def deployment_frequency(self, date_range: DateRange) -> DeploymentFrequency:
        deployments = await self.store.list_deployments(date_range.start, date_range.end)
        return compute_deployment_frequency(
            deployments=len(deployments), days=date_range.days
        )

    async def lead_time_for_changes(self, date_range: DateRange) -> LeadTimeForChanges:
        merge_requests = await self.store.list_merged_merge_requests(
            date_range.start, date_range.end
        )
        hours = [
            mr.lead_time_hours for mr in merge_requests if mr.lead_time_hours is not None
        ]
        return compute_lead_time(lead_times_hours=hours)

    async def change_failure_rate(self, date_range: DateRange) -> ChangeFailureRate:
        deployments = await self.store.list_deployments(date_range.start, date_range.end)
        failed = sum(1 for d in deployments if d.is_failure)
        return compute_change_failure_rate(failed=failed, total=len(deployments))

    async def mean_time_to_recovery(self, date_range: DateRange) -> MeanTimeToRecovery:
        incidents = await self.store.list_resolved_incidents(
            date_range.start, date_range.end
        )
        minutes = [i.mttr_minutes for i in incidents if i.mttr_minutes is not None]
        return compute_mttr(recovery_minutes=minutes)

    async def calculate_metrics(self, date_range: DateRange) -> DoraMetrics:
        frequency = await self.deployment_frequency(date_range)
        lead_time = await self.lead_time_for_changes(date_range)
        failure_rate = await self.change_failure_rate(date_range)
        mttr = await self.mean_time_to_recovery(date_range)
        tier = overall_tier(
            [frequency.tier, lead_time.tier, failure_rate.tier, mttr.tier]
        )
        logger.info(
            "DORA %s..%s: %s (deploys=%d, cfr=%.1f%%)",
            date_range.start.date(),
            date_range.end.date(),
            tier.value,
            frequency.total_deployments,
            failure_rate.rate,
        )
        return DoraMetrics(
            start=date_range.start,
            end=date_range.end,
            deployment_frequency=frequency,
            lead_time=lead_time,
            change_failure_rate=failure_rate,
            mttr=mttr,
            overall_tier=tier,
        )
