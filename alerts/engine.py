import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from config import AlertThresholds
from errors import NotFoundError
from models.alerts import Alert, AlertSeverity, AlertType
from models.metrics import Metric, MetricType
from storage import SQLAlchemyStore

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(days=14)
CRITICAL_VELOCITY_DROP_PERCENT = 30.0
HIGH_AFTER_HOURS_PERCENT = 50.0


class AlertEngine:
    """
    Threshold evaluators and the alert lifecycle.

    Evaluators only read metrics and commits, then write new Alert rows.
    A failure to persist one alert is logged and does not stop the
    remaining evaluations of the same call.
    """

    def __init__(
        self, store: SQLAlchemyStore, thresholds: Optional[AlertThresholds] = None
    ) -> None:
        self.store = store
        self.thresholds = thresholds or AlertThresholds()

    async def create_alert(
        self,
        *,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        source: str,
        team_id: Optional[uuid.UUID] = None,
        metric_name: Optional[str] = None,
        metric_value: Optional[float] = None,
        threshold_value: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = Alert(
            team_id=team_id,
            type=alert_type,
            severity=severity,
            title=title,
            message=message,
            source=source,
            metric_name=metric_name,
            metric_value=metric_value,
            threshold_value=threshold_value,
            alert_metadata=metadata or {},
            acknowledged=False,
            resolved=False,
            created_at=datetime.now(timezone.utc),
        )
        await self.store.save(alert)
        logger.warning("Alert raised [%s/%s]: %s", alert_type.value, severity.value, message)
        return alert

    async def _fire(self, created: List[Alert], **kwargs: Any) -> None:
        try:
            created.append(await self.create_alert(**kwargs))
        except Exception as e:
            logger.error("Failed to persist %s alert: %s", kwargs.get("alert_type"), e)

    async def _require_alert(self, alert_id: uuid.UUID) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def acknowledge_alert(
        self, alert_id: uuid.UUID, actor: str = "system", now: Optional[datetime] = None
    ) -> Alert:
        """Mark an alert acknowledged. Repeated calls re-stamp actor and time."""
        alert = await self._require_alert(alert_id)
        alert.acknowledged = True
        alert.acknowledged_by = actor
        alert.acknowledged_at = now or datetime.now(timezone.utc)
        await self.store.save(alert)
        logger.info("Alert %s acknowledged by %s", alert_id, actor)
        return alert

    async def resolve_alert(
        self,
        alert_id: uuid.UUID,
        resolution: Optional[str] = None,
        actor: str = "system",
        now: Optional[datetime] = None,
    ) -> Alert:
        """Resolve an alert; acknowledgement is not required first. Repeated calls re-stamp."""
        alert = await self._require_alert(alert_id)
        alert.resolved = True
        alert.resolved_by = actor
        alert.resolved_at = now or datetime.now(timezone.utc)
        alert.resolution = resolution
        await self.store.save(alert)
        logger.info("Alert %s resolved by %s", alert_id, actor)
        return alert

    async def check_velocity_thresholds(
        self, team_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[Alert]:
        if await self.store.get_team(team_id) is None:
            raise NotFoundError("Team", team_id)

        now = now or datetime.now(timezone.utc)
        current = await self.store.average_metric_value(
            team_id, MetricType.VELOCITY, now - LOOKBACK, now
        )
        previous = await self.store.average_metric_value(
            team_id, MetricType.VELOCITY, now - 2 * LOOKBACK, now - LOOKBACK
        )
        created: List[Alert] = []
        # both windows need velocity rows, otherwise the drop is meaningless
        if current is None or previous is None or previous <= 0:
            return created

        drop = (previous - current) / previous * 100.0
        threshold = self.thresholds.velocity_drop_percent
        if drop >= threshold:
            severity = (
                AlertSeverity.CRITICAL
                if drop >= CRITICAL_VELOCITY_DROP_PERCENT
                else AlertSeverity.WARNING
            )
            await self._fire(
                created,
                alert_type=AlertType.VELOCITY_DROP,
                severity=severity,
                title="Velocity Drop Detected",
                message="Team velocity dropped by %.1f%% (from %.1f to %.1f points)"
                % (drop, previous, current),
                source="velocity-monitor",
                team_id=team_id,
                metric_name="velocity",
                metric_value=current,
                threshold_value=threshold,
                metadata={
                    "current_velocity": current,
                    "previous_velocity": previous,
                    "drop_percentage": drop,
                },
            )
        return created

    async def check_burnout_risk(
        self, developer_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[Alert]:
        """
        Raise after-hours and weekend-work alerts for one developer.

        Working hours are 09:00-20:00 UTC. Both checks always run.
        """
        developer = await self.store.get_developer(developer_id)
        if developer is None:
            raise NotFoundError("Developer", developer_id)

        now = now or datetime.now(timezone.utc)
        commits = await self.store.list_developer_commits(developer_id, now - LOOKBACK)
        total = len(commits)
        after_hours = sum(1 for c in commits if c.is_after_hours)
        weekend = sum(1 for c in commits if c.is_weekend)

        created: List[Alert] = []
        if total > 0:
            ratio = after_hours / float(total) * 100.0
            if ratio >= self.thresholds.after_hours_percent:
                severity = (
                    AlertSeverity.HIGH
                    if ratio >= HIGH_AFTER_HOURS_PERCENT
                    else AlertSeverity.MEDIUM
                )
                await self._fire(
                    created,
                    alert_type=AlertType.BURNOUT_RISK,
                    severity=severity,
                    title="Burnout Risk Detected",
                    message="Developer %s has %.1f%% of commits outside business hours"
                    % (developer.name, ratio),
                    source="burnout-monitor",
                    team_id=developer.team_id,
                    metric_name="after_hours_percentage",
                    metric_value=ratio,
                    threshold_value=self.thresholds.after_hours_percent,
                    metadata={
                        "developer_id": str(developer.id),
                        "developer_name": developer.name,
                        "after_hours_percentage": ratio,
                    },
                )

        if weekend >= self.thresholds.weekend_commits:
            await self._fire(
                created,
                alert_type=AlertType.WEEKEND_WORK,
                severity=AlertSeverity.MEDIUM,
                title="Frequent Weekend Work Detected",
                message="Developer %s has %d commits on weekends in the last 2 weeks"
                % (developer.name, weekend),
                source="burnout-monitor",
                team_id=developer.team_id,
                metric_name="weekend_commits",
                metric_value=float(weekend),
                threshold_value=float(self.thresholds.weekend_commits),
                metadata={
                    "developer_id": str(developer.id),
                    "developer_name": developer.name,
                    "weekend_commits": weekend,
                },
            )
        return created

    async def check_infrastructure_thresholds(
        self, team_id: Optional[uuid.UUID], metrics: Iterable[Metric]
    ) -> List[Alert]:
        """
        Compare cpu, memory and error metrics with their thresholds.

        Every breach creates a new alert, even when an open alert for the
        same metric already exists.
        """
        created: List[Alert] = []
        for metric in metrics:
            name = (metric.name or "").lower()
            value = float(metric.value)
            metadata = {
                "metric_name": metric.name,
                "metric_value": value,
                "metric_unit": metric.unit,
            }

            if "cpu" in name and value >= self.thresholds.cpu_percent:
                await self._fire(
                    created,
                    alert_type=AlertType.INFRASTRUCTURE,
                    severity=AlertSeverity.WARNING,
                    title="High CPU Utilization",
                    message="CPU utilization is at %.1f%%, exceeding threshold of %.1f%%"
                    % (value, self.thresholds.cpu_percent),
                    source="infrastructure-monitor",
                    team_id=team_id,
                    metric_name=metric.name,
                    metric_value=value,
                    threshold_value=self.thresholds.cpu_percent,
                    metadata=dict(metadata),
                )
            if "memory" in name and value >= self.thresholds.memory_percent:
                await self._fire(
                    created,
                    alert_type=AlertType.INFRASTRUCTURE,
                    severity=AlertSeverity.WARNING,
                    title="High Memory Utilization",
                    message="Memory utilization is at %.1f%%, exceeding threshold of %.1f%%"
                    % (value, self.thresholds.memory_percent),
                    source="infrastructure-monitor",
                    team_id=team_id,
                    metric_name=metric.name,
                    metric_value=value,
                    threshold_value=self.thresholds.memory_percent,
                    metadata=dict(metadata),
                )
            if "error" in name and value >= self.thresholds.error_rate_percent:
                await self._fire(
                    created,
                    alert_type=AlertType.INFRASTRUCTURE,
                    severity=AlertSeverity.CRITICAL,
                    title="High Error Rate",
                    message="Error rate is at %.2f%%, exceeding threshold of %.2f%%"
                    % (value, self.thresholds.error_rate_percent),
                    source="infrastructure-monitor",
                    team_id=team_id,
                    metric_name=metric.name,
                    metric_value=value,
                    threshold_value=self.thresholds.error_rate_percent,
                    metadata=dict(metadata),
                )
        return created
