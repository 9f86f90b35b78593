"""
Tests for the alert evaluators and the alert lifecycle.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from alerts import AlertEngine
from config import AlertThresholds
from errors import NotFoundError
from models import (AlertSeverity, AlertType, Commit, Metric, MetricType)


def _at(day, hour):
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


async def _add_commits(store, developer, times):
    for n, committed_at in enumerate(times):
        await store.insert_commit(
            Commit(
                sha=f"sha-{committed_at.isoformat()}-{n}",
                author_email=developer.email,
                developer_id=developer.id,
                committed_at=committed_at,
            )
        )


def _metric(name, value, unit="Percent"):
    return Metric(type=MetricType.CUSTOM, name=name, value=value, unit=unit)


class TestBurnoutRisk:
    """Tests for after-hours and weekend-work evaluation."""

    @pytest.mark.asyncio
    async def test_after_hours_majority_is_high(self, store, developer, fixed_now):
        late = [_at(day, 21) for day in (8, 9, 10, 11, 12, 15)]
        daytime = [_at(day, 10) for day in (8, 9, 10, 11)]
        await _add_commits(store, developer, late + daytime)

        alerts = await AlertEngine(store).check_burnout_risk(developer.id, now=fixed_now)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == AlertType.BURNOUT_RISK
        assert alert.severity == AlertSeverity.HIGH
        assert alert.metric_value == pytest.approx(60.0)
        assert alert.team_id == developer.team_id
        assert alert.alert_metadata["developer_id"] == str(developer.id)
        assert alert.alert_metadata["developer_name"] == "Ada Lovelace"

    @pytest.mark.asyncio
    async def test_after_hours_below_half_is_medium(self, store, developer, fixed_now):
        late = [_at(day, 7) for day in (8, 9, 10, 11)]
        daytime = [_at(day, 14) for day in (8, 9, 10, 11, 12, 15)]
        await _add_commits(store, developer, late + daytime)

        alerts = await AlertEngine(store).check_burnout_risk(developer.id, now=fixed_now)

        assert [a.severity for a in alerts] == [AlertSeverity.MEDIUM]

    @pytest.mark.asyncio
    async def test_weekend_commits(self, store, developer, fixed_now):
        await _add_commits(store, developer, [_at(13, 12)] * 5)

        alerts = await AlertEngine(store).check_burnout_risk(developer.id, now=fixed_now)

        assert len(alerts) == 1
        assert alerts[0].type == AlertType.WEEKEND_WORK
        assert alerts[0].severity == AlertSeverity.MEDIUM
        assert alerts[0].metric_value == 5.0

    @pytest.mark.asyncio
    async def test_commits_outside_lookback_are_ignored(self, store, developer, fixed_now):
        await _add_commits(store, developer, [_at(1, 23)] * 6)
        alerts = await AlertEngine(store).check_burnout_risk(developer.id, now=fixed_now)
        assert alerts == []

    @pytest.mark.asyncio
    async def test_unknown_developer(self, store):
        with pytest.raises(NotFoundError, match="Developer"):
            await AlertEngine(store).check_burnout_risk(uuid.uuid4())


class TestVelocityThresholds:
    """Tests for the velocity drop evaluator."""

    async def _velocity(self, store, team, when, value):
        await store.insert_metrics(
            [Metric(team_id=team.id, type=MetricType.VELOCITY, name="sprint_velocity",
                    value=value, timestamp=when)]
        )

    @pytest.mark.parametrize(
        "current,severity",
        [(10.0, AlertSeverity.CRITICAL), (15.0, AlertSeverity.WARNING)],
    )
    @pytest.mark.asyncio
    async def test_drop_severity(self, store, team, fixed_now, current, severity):
        await self._velocity(store, team, fixed_now - timedelta(days=20), 20.0)
        await self._velocity(store, team, fixed_now - timedelta(days=3), current)

        alerts = await AlertEngine(store).check_velocity_thresholds(team.id, now=fixed_now)

        assert len(alerts) == 1
        assert alerts[0].type == AlertType.VELOCITY_DROP
        assert alerts[0].severity == severity
        assert alerts[0].alert_metadata["previous_velocity"] == 20.0
        assert alerts[0].alert_metadata["current_velocity"] == current

    @pytest.mark.asyncio
    async def test_small_drop_is_ignored(self, store, team, fixed_now):
        await self._velocity(store, team, fixed_now - timedelta(days=20), 20.0)
        await self._velocity(store, team, fixed_now - timedelta(days=3), 18.0)
        assert await AlertEngine(store).check_velocity_thresholds(team.id, now=fixed_now) == []

    @pytest.mark.asyncio
    async def test_no_previous_window(self, store, team, fixed_now):
        await self._velocity(store, team, fixed_now - timedelta(days=3), 5.0)
        assert await AlertEngine(store).check_velocity_thresholds(team.id, now=fixed_now) == []

    @pytest.mark.asyncio
    async def test_no_current_window(self, store, team, fixed_now):
        await self._velocity(store, team, fixed_now - timedelta(days=20), 20.0)

        assert await AlertEngine(store).check_velocity_thresholds(team.id, now=fixed_now) == []
        assert await store.list_alerts(team_id=team.id) == []

    @pytest.mark.asyncio
    async def test_unknown_team(self, store):
        with pytest.raises(NotFoundError, match="Team"):
            await AlertEngine(store).check_velocity_thresholds(uuid.uuid4())


class TestInfrastructureThresholds:
    """Tests for the infrastructure evaluator."""

    @pytest.mark.asyncio
    async def test_breaches_are_not_deduplicated(self, store, team):
        engine = AlertEngine(store)
        metrics = [_metric("cpuutilization", 92.0), _metric("memoryutilization", 50.0)]

        await engine.check_infrastructure_thresholds(team.id, metrics)
        await engine.check_infrastructure_thresholds(team.id, metrics)

        alerts = await store.list_alerts(team_id=team.id)
        assert len(alerts) == 2
        assert {a.title for a in alerts} == {"High CPU Utilization"}
        assert alerts[0].severity == AlertSeverity.WARNING

    @pytest.mark.asyncio
    async def test_error_rate_is_critical(self, store, team):
        alerts = await AlertEngine(store).check_infrastructure_thresholds(
            team.id, [_metric("errors", 5.0, unit="Count")]
        )
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[0].title == "High Error Rate"
        assert alerts[0].alert_metadata["metric_unit"] == "Count"

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, store, team):
        engine = AlertEngine(store, thresholds=AlertThresholds(memory_percent=40.0))
        alerts = await engine.check_infrastructure_thresholds(
            team.id, [_metric("memoryutilization", 50.0)]
        )
        assert [a.title for a in alerts] == ["High Memory Utilization"]
        assert alerts[0].threshold_value == 40.0

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_stop_evaluation(self, store, team):
        engine = AlertEngine(store)
        with patch.object(engine, "create_alert", side_effect=RuntimeError("db down")) as create:
            alerts = await engine.check_infrastructure_thresholds(
                team.id, [_metric("cpuutilization", 99.0), _metric("errors", 3.0)]
            )

        assert alerts == []
        assert create.await_count == 2


class TestAlertLifecycle:
    """Tests for acknowledging and resolving alerts."""

    async def _alert(self, store, team):
        return await AlertEngine(store).create_alert(
            alert_type=AlertType.CUSTOM,
            severity=AlertSeverity.INFO,
            title="Manual",
            message="raised by hand",
            source="test",
            team_id=team.id,
        )

    @pytest.mark.asyncio
    async def test_acknowledge_restamps(self, store, team, fixed_now):
        engine = AlertEngine(store)
        alert = await self._alert(store, team)

        await engine.acknowledge_alert(alert.id, actor="ada", now=fixed_now)
        acked = await engine.acknowledge_alert(
            alert.id, actor="bob", now=fixed_now + timedelta(hours=1)
        )

        assert acked.acknowledged is True
        assert acked.acknowledged_by == "bob"
        assert acked.acknowledged_at == fixed_now + timedelta(hours=1)
        assert acked.resolved is False

    @pytest.mark.asyncio
    async def test_resolve_without_acknowledging(self, store, team, fixed_now):
        engine = AlertEngine(store)
        alert = await self._alert(store, team)

        resolved = await engine.resolve_alert(alert.id, resolution="fixed", now=fixed_now)

        assert resolved.resolved is True
        assert resolved.resolved_by == "system"
        assert resolved.resolution == "fixed"
        assert resolved.acknowledged is False
        assert await store.list_alerts(unresolved_only=True) == []

    @pytest.mark.asyncio
    async def test_unknown_alert(self, store):
        engine = AlertEngine(store)
        with pytest.raises(NotFoundError):
            await engine.acknowledge_alert(uuid.uuid4())
        with pytest.raises(NotFoundError):
            await engine.resolve_alert(uuid.uuid4())
