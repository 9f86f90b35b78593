"""
Incident lifecycle and deployment bookkeeping.

Incidents move OPEN -> INVESTIGATING -> RESOLVED. ``mttr_minutes`` is fixed
the first time an incident is resolved and is not recomputed afterwards.
"""

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from errors import InvalidStateError, NotFoundError
from metrics.schemas import IncidentMetrics
from metrics.stats import mean
from models.git import Deployment, DeploymentStatus
from models.incidents import Incident, IncidentSeverity, IncidentStatus
from storage import SQLAlchemyStore
from utils import DateRange

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _stamp_resolution(incident: Incident, now: datetime) -> None:
    if incident.resolved_at is None:
        incident.resolved_at = now
    if incident.mttr_minutes is None and incident.started_at is not None:
        elapsed = incident.resolved_at - incident.started_at
        incident.mttr_minutes = int(elapsed.total_seconds() // 60)


class IncidentService:
    def __init__(self, store: SQLAlchemyStore) -> None:
        self.store = store

    async def get_incident(self, incident_id: uuid.UUID) -> Incident:
        incident = await self.store.get_incident(incident_id)
        if incident is None:
            raise NotFoundError("Incident", incident_id)
        return incident

    async def create_incident(
        self,
        *,
        title: str,
        severity: IncidentSeverity,
        description: Optional[str] = None,
        source: Optional[str] = None,
        team_id: Optional[uuid.UUID] = None,
        deployment_id: Optional[uuid.UUID] = None,
        started_at: Optional[datetime] = None,
    ) -> Incident:
        """
        Open a new incident.

        When ``deployment_id`` is given, that deployment is flagged as having
        caused an incident and counts as a failure for change failure rate.
        """
        if deployment_id is not None:
            deployment = await self.store.get_by_id(Deployment, deployment_id)
            if deployment is None:
                raise NotFoundError("Deployment", deployment_id)
            deployment.caused_incident = True
            await self.store.save(deployment)

        incident = Incident(
            team_id=team_id,
            deployment_id=deployment_id,
            title=title,
            description=description,
            severity=severity,
            status=IncidentStatus.OPEN,
            source=source,
            started_at=_now(started_at),
        )
        await self.store.save(incident)
        logger.info(
            "Created incident %s - %s (%s)", incident.id, title, severity.value
        )
        return incident

    async def update_incident_status(
        self,
        incident_id: uuid.UUID,
        status: IncidentStatus,
        now: Optional[datetime] = None,
    ) -> Incident:
        incident = await self.get_incident(incident_id)
        previous = incident.status
        if previous == IncidentStatus.RESOLVED and status != IncidentStatus.RESOLVED:
            raise InvalidStateError(
                f"Incident {incident_id} is resolved and cannot be reopened"
            )

        now = _now(now)
        incident.status = status
        if status == IncidentStatus.INVESTIGATING and previous == IncidentStatus.OPEN:
            incident.acknowledged_at = now
        elif status == IncidentStatus.RESOLVED:
            _stamp_resolution(incident, now)

        await self.store.save(incident)
        logger.info(
            "Updated incident %s status from %s to %s",
            incident_id,
            previous.value,
            status.value,
        )
        return incident

    async def resolve_incident(
        self,
        incident_id: uuid.UUID,
        resolution: Optional[str] = None,
        root_cause: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Incident:
        incident = await self.get_incident(incident_id)
        incident.status = IncidentStatus.RESOLVED
        incident.resolution = resolution
        incident.root_cause = root_cause
        _stamp_resolution(incident, _now(now))
        await self.store.save(incident)
        logger.info(
            "Resolved incident %s - MTTR: %s minutes", incident.id, incident.mttr_minutes
        )
        return incident

    async def add_timeline_entry(
        self, incident_id: uuid.UUID, entry: str, now: Optional[datetime] = None
    ) -> Incident:
        incident = await self.get_incident(incident_id)
        line = f"[{_now(now).isoformat()}] {entry}"
        incident.timeline = f"{incident.timeline}\n{line}" if incident.timeline else line
        await self.store.save(incident)
        return incident

    async def record_deployment(
        self,
        *,
        project_id: str,
        environment: str,
        status: DeploymentStatus,
        deployed_at: Optional[datetime] = None,
        sha: Optional[str] = None,
        version: Optional[str] = None,
        team_id: Optional[uuid.UUID] = None,
        merge_request_id: Optional[uuid.UUID] = None,
        external_id: Optional[str] = None,
    ) -> Deployment:
        """Record a deployment reported outside of GitLab (manual or pipeline hook)."""
        deployment = Deployment(
            external_id=external_id,
            project_id=str(project_id),
            team_id=team_id,
            merge_request_id=merge_request_id,
            environment=environment,
            version=version,
            sha=sha,
            status=status,
            caused_incident=False,
            deployed_at=_now(deployed_at),
        )
        await self.store.save(deployment)
        if status == DeploymentStatus.SUCCESS and sha:
            await self.store.mark_merge_requests_deployed(
                str(project_id), sha, deployment.deployed_at
            )
        logger.info(
            "Recorded %s deployment of %s to %s", status.value, project_id, environment
        )
        return deployment

    async def incident_metrics(
        self, date_range: DateRange, team_id: Optional[uuid.UUID] = None
    ) -> IncidentMetrics:
        incidents = await self.store.list_incidents(
            date_range.start, date_range.end, team_id=team_id
        )
        total = len(incidents)
        resolved = sum(1 for i in incidents if i.status == IncidentStatus.RESOLVED)
        counts = Counter(i.severity for i in incidents)
        return IncidentMetrics(
            total_incidents=total,
            resolved_incidents=resolved,
            open_incidents=total - resolved,
            average_mttr_minutes=mean(
                [i.mttr_minutes for i in incidents if i.mttr_minutes is not None]
            ),
            by_severity={sev.value: counts.get(sev, 0) for sev in IncidentSeverity},
        )
