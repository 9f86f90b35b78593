"""
Tests for the incident lifecycle and deployment recording.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from errors import NotFoundError
from incidents import IncidentService
from models import (Deployment, DeploymentStatus, IncidentSeverity,
                    IncidentStatus, MergeRequest, MergeRequestStatus)
from utils import DateRange

STARTED = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


async def _open(service, **kwargs):
    kwargs.setdefault("title", "API errors")
    kwargs.setdefault("severity", IncidentSeverity.HIGH)
    kwargs.setdefault("started_at", STARTED)
    return await service.create_incident(**kwargs)


class TestIncidentLifecycle:
    """Tests for status transitions and resolution."""

    @pytest.mark.asyncio
    async def test_resolution_fixes_mttr(self, store):
        service = IncidentService(store)
        incident = await _open(service)

        resolved = await service.resolve_incident(
            incident.id,
            resolution="rolled back",
            root_cause="bad config",
            now=STARTED + timedelta(minutes=90, seconds=40),
        )

        assert resolved.status == IncidentStatus.RESOLVED
        assert resolved.mttr_minutes == 90
        assert resolved.root_cause == "bad config"

        resolved.resolved_at = STARTED + timedelta(hours=5)
        await store.save(resolved)
        again = await service.resolve_incident(incident.id, now=STARTED + timedelta(days=1))

        assert again.mttr_minutes == 90
        assert again.resolved_at == STARTED + timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_investigating_sets_acknowledged_at(self, store):
        service = IncidentService(store)
        incident = await _open(service)
        ack_time = STARTED + timedelta(minutes=5)

        updated = await service.update_incident_status(
            incident.id, IncidentStatus.INVESTIGATING, now=ack_time
        )

        assert updated.status == IncidentStatus.INVESTIGATING
        assert updated.acknowledged_at == ack_time

    @pytest.mark.asyncio
    async def test_status_update_to_resolved_stamps_mttr(self, store):
        service = IncidentService(store)
        incident = await _open(service)

        updated = await service.update_incident_status(
            incident.id, IncidentStatus.RESOLVED, now=STARTED + timedelta(minutes=30)
        )

        assert updated.mttr_minutes == 30
        assert updated.acknowledged_at is None

    @pytest.mark.asyncio
    async def test_resolved_incident_cannot_reopen(self, store):
        service = IncidentService(store)
        incident = await _open(service)
        await service.resolve_incident(incident.id, now=STARTED + timedelta(minutes=10))

        with pytest.raises(ValueError, match="cannot be reopened"):
            await service.update_incident_status(incident.id, IncidentStatus.OPEN)

    @pytest.mark.asyncio
    async def test_timeline_entries_append(self, store):
        service = IncidentService(store)
        incident = await _open(service)

        await service.add_timeline_entry(incident.id, "paged on-call", now=STARTED)
        updated = await service.add_timeline_entry(
            incident.id, "rolled back", now=STARTED + timedelta(minutes=7)
        )

        assert updated.timeline.split("\n") == [
            "[2024-01-10T08:00:00+00:00] paged on-call",
            "[2024-01-10T08:07:00+00:00] rolled back",
        ]

    @pytest.mark.asyncio
    async def test_unknown_incident(self, store):
        service = IncidentService(store)
        with pytest.raises(NotFoundError, match="Incident"):
            await service.resolve_incident(uuid.uuid4())


class TestDeploymentLinkage:
    """Tests for incident-to-deployment linkage and deployment recording."""

    @pytest.mark.asyncio
    async def test_incident_flags_deployment(self, store):
        deployment = await store.save(
            Deployment(
                external_id="1",
                project_id="42",
                status=DeploymentStatus.SUCCESS,
                deployed_at=STARTED - timedelta(hours=1),
            )
        )
        service = IncidentService(store)

        incident = await _open(service, deployment_id=deployment.id)

        assert incident.deployment_id == deployment.id
        assert (await store.get_deployment("1", "42")).caused_incident is True

    @pytest.mark.asyncio
    async def test_unknown_deployment(self, store):
        with pytest.raises(NotFoundError, match="Deployment"):
            await _open(IncidentService(store), deployment_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_record_deployment_marks_merge_requests(self, store, team):
        await store.save(
            MergeRequest(
                external_id="3",
                project_id="42",
                status=MergeRequestStatus.MERGED,
                merge_commit_sha="beef",
                created_at=STARTED - timedelta(hours=6),
            )
        )

        deployment = await IncidentService(store).record_deployment(
            project_id=42,
            environment="production",
            status=DeploymentStatus.SUCCESS,
            sha="beef",
            team_id=team.id,
            deployed_at=STARTED,
        )

        assert deployment.project_id == "42"
        assert deployment.caused_incident is False
        mr = await store.get_merge_request("3", "42")
        assert mr.deployed_at == STARTED
        assert mr.lead_time_hours == 6

    @pytest.mark.asyncio
    async def test_failed_deployment_does_not_mark(self, store):
        await store.save(
            MergeRequest(external_id="3", project_id="42", merge_commit_sha="beef")
        )
        await IncidentService(store).record_deployment(
            project_id="42",
            environment="production",
            status=DeploymentStatus.FAILED,
            sha="beef",
            deployed_at=STARTED,
        )
        assert (await store.get_merge_request("3", "42")).deployed_at is None


class TestIncidentMetrics:
    """Tests for incident summaries."""

    @pytest.mark.asyncio
    async def test_incident_metrics(self, store, team):
        service = IncidentService(store)
        first = await _open(service, team_id=team.id)
        await _open(service, title="slow pages", severity=IncidentSeverity.LOW, team_id=team.id)
        await _open(service, title="other team", severity=IncidentSeverity.CRITICAL)
        await service.resolve_incident(first.id, now=STARTED + timedelta(minutes=40))
        date_range = DateRange(STARTED - timedelta(days=1), STARTED + timedelta(days=1))

        metrics = await service.incident_metrics(date_range, team_id=team.id)

        assert metrics.total_incidents == 2
        assert metrics.resolved_incidents == 1
        assert metrics.open_incidents == 1
        assert metrics.average_mttr_minutes == 40.0
        assert metrics.by_severity == {"critical": 0, "high": 1, "medium": 0, "low": 1}

        everything = await service.incident_metrics(date_range)
        assert everything.total_incidents == 3
