"""
Tests for the Jira, GitLab and AWS collectors against an in-memory store.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select

from collectors import (CollectionResult, InfraCollector, IssueCollector,
                        SourceControlCollector)
from collectors.base import Ok, Skipped
from connectors import APIException, NotFoundException
from connectors.models import CostData, MetricDatapoint
from models import (Commit, Deployment, DeploymentStatus, MergeRequest,
                    MergeRequestStatus, Sprint, Team, TicketSource,
                    TicketStatus)

SINCE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _issue(key="PLAT-1", status="In Progress", category="indeterminate", **fields):
    payload = {
        "summary": f"Work on {key}",
        "status": {"name": status, "statusCategory": {"key": category}},
        "updated": "2024-01-10T10:00:00.000+0000",
    }
    payload.update(fields)
    return {"key": key, "fields": payload}


def _commit_payload(sha, **extra):
    payload = {
        "id": sha,
        "title": f"commit {sha}",
        "author_email": "ada@example.com",
        "committed_date": "2024-01-10T10:00:00Z",
    }
    payload.update(extra)
    return payload


def _mr_payload(iid, state="merged", **extra):
    payload = {
        "iid": iid,
        "title": f"MR {iid}",
        "state": state,
        "created_at": "2024-01-02T00:00:00Z",
        "merged_at": "2024-01-03T00:00:00Z" if state == "merged" else None,
        "author": {"email": "ada@example.com"},
    }
    payload.update(extra)
    return payload


class TestCollectionResult:
    """Tests for outcome aggregation."""

    def test_from_outcomes(self):
        result = CollectionResult.from_outcomes([Ok("a"), Skipped("b", "bad"), Ok("c")])
        assert result == CollectionResult(count=2, error_count=1)

    def test_add(self):
        total = CollectionResult(1, 0) + CollectionResult.failed()
        assert total == CollectionResult(count=1, error_count=1)


class TestIssueCollector:
    """Tests for Jira ticket and sprint collection."""

    @pytest.mark.asyncio
    async def test_started_at_is_stable_across_polls(self, store):
        connector = Mock()
        connector.get_updated_issues.return_value = [_issue()]
        collector = IssueCollector(connector, store)
        first = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)

        assert await collector.collect_tickets(SINCE, now=first) == CollectionResult(1, 0)
        await collector.collect_tickets(SINCE, now=first + timedelta(hours=2))

        ticket = await store.get_ticket("PLAT-1", TicketSource.JIRA)
        assert ticket.status == TicketStatus.IN_PROGRESS
        assert ticket.started_at == first
        assert ticket.completed_at is None

        connector.get_updated_issues.return_value = [
            _issue(status="Done", category="done")
        ]
        done_at = first + timedelta(days=2)
        await collector.collect_tickets(SINCE, now=done_at)

        ticket = await store.get_ticket("PLAT-1", TicketSource.JIRA)
        assert ticket.status == TicketStatus.DONE
        assert ticket.started_at == first
        assert ticket.completed_at == done_at
        assert ticket.cycle_time_hours == 48

    @pytest.mark.asyncio
    async def test_new_ticket_links_developer_and_sprint(self, store, developer):
        sprint = await store.save(Sprint(external_id="31", name="Sprint 31"))
        connector = Mock()
        connector.get_updated_issues.return_value = [
            _issue(
                assignee={"emailAddress": "ADA@example.com"},
                customfield_10020=[{"id": 31}],
            )
        ]

        await IssueCollector(connector, store).collect_tickets(SINCE)

        ticket = await store.get_ticket("PLAT-1", TicketSource.JIRA)
        assert ticket.developer_id == developer.id
        assert ticket.sprint_id == sprint.id

    @pytest.mark.asyncio
    async def test_sprint_link_filled_on_later_poll(self, store):
        connector = Mock()
        connector.get_updated_issues.return_value = [
            _issue(customfield_10020=[{"id": 40}])
        ]
        collector = IssueCollector(connector, store)
        await collector.collect_tickets(SINCE)
        assert (await store.get_ticket("PLAT-1", TicketSource.JIRA)).sprint_id is None

        sprint = await store.save(Sprint(external_id="40", name="Sprint 40"))
        await collector.collect_tickets(SINCE)

        assert (await store.get_ticket("PLAT-1", TicketSource.JIRA)).sprint_id == sprint.id

    @pytest.mark.asyncio
    async def test_malformed_issue_is_skipped(self, store):
        connector = Mock()
        connector.get_updated_issues.return_value = [
            _issue("PLAT-1"),
            {"fields": {"summary": "no key"}},
            _issue("PLAT-2", customfield_10016="not a number"),
        ]

        result = await IssueCollector(connector, store).collect_tickets(SINCE)

        assert result == CollectionResult(count=1, error_count=2)
        assert await store.get_ticket("PLAT-2", TicketSource.JIRA) is None

    @pytest.mark.asyncio
    async def test_fetch_failure_counts_one_error(self, store):
        connector = Mock()
        connector.get_updated_issues.side_effect = APIException("down", "jira")

        result = await IssueCollector(connector, store).collect_tickets(SINCE)

        assert result == CollectionResult(count=0, error_count=1)

    @pytest.mark.asyncio
    async def test_sprints_are_insert_only(self, store, team):
        connector = Mock()
        connector.get_all_sprints.return_value = [
            {"id": 1, "name": "Sprint 1", "state": "active", "endDate": "2024-01-14"},
            {"id": 2, "name": "Sprint 2", "state": "future"},
        ]
        collector = IssueCollector(connector, store, team_id=team.id)

        assert await collector.collect_sprints() == CollectionResult(2, 0)

        connector.get_all_sprints.return_value = [
            {"id": 1, "name": "Renamed", "state": "closed"},
            {"id": 3, "name": "Sprint 3", "state": "future"},
        ]
        assert await collector.collect_sprints() == CollectionResult(1, 0)

        sprint = await store.get_sprint_by_external_id("1")
        assert sprint.name == "Sprint 1"
        assert sprint.team_id == team.id
        assert await store.has_sprint("3")

    @pytest.mark.asyncio
    async def test_sprint_fetch_failure(self, store):
        connector = Mock()
        connector.get_all_sprints.side_effect = APIException("down", "jira")
        result = await IssueCollector(connector, store).collect_sprints()
        assert result == CollectionResult(0, 1)


class TestSourceControlCollector:
    """Tests for GitLab commit, merge request and deployment collection."""

    @pytest.mark.asyncio
    async def test_no_projects_is_noop(self, store):
        connector = Mock()
        collector = SourceControlCollector(connector, store, [])

        assert await collector.collect_commits(SINCE) == CollectionResult()
        assert await collector.collect_merge_requests(SINCE) == CollectionResult()
        assert await collector.collect_deployments(SINCE) == CollectionResult()
        connector.get_commits.assert_not_called()

    @pytest.mark.asyncio
    async def test_commits_are_collected_once(self, store, developer):
        connector = Mock()
        connector.get_commits.return_value = [_commit_payload("abc")]
        connector.get_commit_detail.return_value = _commit_payload(
            "abc", stats={"additions": 7, "deletions": 2}
        )
        collector = SourceControlCollector(connector, store, ["42"])

        assert await collector.collect_commits(SINCE) == CollectionResult(1, 0)
        assert await collector.collect_commits(SINCE) == CollectionResult(0, 0)

        rows = await store.session.execute(select(func.count()).select_from(Commit))
        assert rows.scalar() == 1
        connector.get_commit_detail.assert_called_once_with("42", "abc")
        commits = await store.list_developer_commits(developer.id, SINCE)
        assert [(c.sha, c.additions, c.deletions) for c in commits] == [("abc", 7, 2)]

    @pytest.mark.asyncio
    async def test_commit_detail_failure_falls_back_to_summary(self, store):
        connector = Mock()
        connector.get_commits.return_value = [_commit_payload("abc")]
        connector.get_commit_detail.side_effect = NotFoundException("gone", "gitlab")

        result = await SourceControlCollector(connector, store, ["42"]).collect_commits(SINCE)

        assert result == CollectionResult(1, 0)
        assert await store.has_commit("abc")

    @pytest.mark.asyncio
    async def test_failing_project_does_not_stop_others(self, store):
        def get_commits(project_id, since):
            if project_id == "1":
                raise APIException("boom", "gitlab")
            return [_commit_payload("def")]

        connector = Mock()
        connector.get_commits.side_effect = get_commits
        connector.get_commit_detail.side_effect = lambda pid, sha: _commit_payload(sha)

        result = await SourceControlCollector(connector, store, ["1", "2"]).collect_commits(SINCE)

        assert result == CollectionResult(count=1, error_count=1)
        assert await store.has_commit("def")

    @pytest.mark.asyncio
    async def test_merge_requests_are_upserted(self, store, developer):
        connector = Mock()
        connector.get_merged_merge_requests.return_value = [
            _mr_payload(5, merge_commit_sha="cafe", user_notes_count=2)
        ]
        connector.get_open_merge_requests.return_value = [
            _mr_payload(5, merge_commit_sha="cafe", user_notes_count=3),
            _mr_payload(6, state="opened"),
        ]
        collector = SourceControlCollector(connector, store, [42])

        result = await collector.collect_merge_requests(SINCE)

        assert result == CollectionResult(count=3, error_count=0)
        rows = await store.session.execute(select(func.count()).select_from(MergeRequest))
        assert rows.scalar() == 2
        mr = await store.get_merge_request("5", "42")
        assert mr.status == MergeRequestStatus.MERGED
        assert mr.comments_count == 3
        assert mr.developer_id == developer.id
        assert (await store.get_merge_request("6", "42")).status == MergeRequestStatus.OPEN

    @pytest.mark.asyncio
    async def test_successful_deployment_stamps_merge_requests(self, store, team):
        await store.save(
            MergeRequest(
                external_id="5",
                project_id="42",
                status=MergeRequestStatus.MERGED,
                merge_commit_sha="cafe",
                created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
                merged_at=datetime(2024, 1, 3, tzinfo=timezone.utc),
            )
        )
        connector = Mock()
        connector.get_deployments.return_value = [
            {
                "id": 77,
                "sha": "cafe",
                "status": "success",
                "environment": {"name": "production"},
                "created_at": "2024-01-04T12:00:00Z",
            }
        ]

        result = await SourceControlCollector(connector, store, ["42"]).collect_deployments(SINCE)

        assert result == CollectionResult(1, 0)
        deployment = await store.get_deployment("77", "42")
        assert deployment.team_id == team.id
        mr = await store.get_merge_request("5", "42")
        assert mr.deployed_at == datetime(2024, 1, 4, 12, tzinfo=timezone.utc)
        assert mr.lead_time_hours == 60

    @pytest.mark.asyncio
    async def test_known_deployment_keeps_incident_flag(self, store):
        await store.save(
            Deployment(
                external_id="77",
                project_id="42",
                status=DeploymentStatus.RUNNING,
                caused_incident=True,
                deployed_at=datetime(2024, 1, 4, tzinfo=timezone.utc),
            )
        )
        connector = Mock()
        connector.get_deployments.return_value = [
            {"id": 77, "status": "failed", "updated_at": "2024-01-04T01:00:00Z"}
        ]

        await SourceControlCollector(connector, store, ["42"]).collect_deployments(SINCE)

        deployment = await store.get_deployment("77", "42")
        assert deployment.status == DeploymentStatus.FAILED
        assert deployment.caused_incident is True
        assert deployment.is_failure


def _datapoint(value):
    return MetricDatapoint("2024-01-17T11:00:00Z", value, value + 10, value - 1, "Percent")


class TestInfraCollector:
    """Tests for CloudWatch and Cost Explorer collection."""

    @pytest.mark.asyncio
    async def test_team_metrics_isolate_failing_resources(self, store, fixed_now):
        team = await store.save(
            Team(
                name="Infra",
                aws_resources={"ec2_instances": "i-1, i-2", "ecs_services": "no-slash"},
            )
        )

        def get_resource_metrics(kind, resource, start, end):
            if resource == "i-2":
                raise APIException("throttled", "aws")
            return {"CPUUtilization": [_datapoint(40.0)], "NetworkIn": []}

        cloudwatch = Mock()
        cloudwatch.get_resource_metrics.side_effect = get_resource_metrics
        collector = InfraCollector(store, cloudwatch=cloudwatch)

        result = await collector.collect_team_metrics(
            team, fixed_now - timedelta(hours=1), now=fixed_now
        )

        assert result == CollectionResult(count=1, error_count=2)
        assert cloudwatch.get_resource_metrics.call_count == 2
        stored = await store.list_team_metrics_since(team.id, fixed_now - timedelta(days=1))
        assert len(stored) == 1
        assert stored[0].name == "cpuutilization"
        assert stored[0].tags["resource_id"] == "ec2:i-1"
        assert stored[0].tags["dimension_name"] == "InstanceId"

    @pytest.mark.asyncio
    async def test_store_failure_does_not_stop_other_resources(self, store, fixed_now):
        team = await store.save(Team(name="Infra", aws_resources={"ec2_instances": "i-1,i-2"}))
        cloudwatch = Mock()
        cloudwatch.get_resource_metrics.return_value = {"CPUUtilization": [_datapoint(40.0)]}
        real_insert = store.insert_metrics
        calls = []

        async def flaky_insert(metrics):
            calls.append(metrics)
            if len(calls) == 1:
                raise RuntimeError("db hiccup")
            return await real_insert(metrics)

        with patch.object(store, "insert_metrics", side_effect=flaky_insert):
            result = await InfraCollector(store, cloudwatch=cloudwatch).collect_team_metrics(
                team, fixed_now - timedelta(hours=1), now=fixed_now
            )

        assert result == CollectionResult(count=1, error_count=1)
        assert len(calls) == 2
        stored = await store.list_team_metrics_since(team.id, fixed_now - timedelta(days=1))
        assert [m.tags["resource_id"] for m in stored] == ["ec2:i-2"]

    @pytest.mark.asyncio
    async def test_ecs_metrics_use_service_dimension(self, store, fixed_now):
        cloudwatch = Mock()
        cloudwatch.get_resource_metrics.return_value = {"CPUUtilization": [_datapoint(5.0)]}

        metrics = await InfraCollector(store, cloudwatch=cloudwatch).collect_resource_metrics(
            "ecs", "prod/api", None, fixed_now - timedelta(hours=1), now=fixed_now
        )

        assert metrics[0].tags["dimension_name"] == "ServiceName"
        assert metrics[0].tags["dimension_value"] == "api"
        assert metrics[0].tags["resource_id"] == "ecs:prod/api"

    @pytest.mark.asyncio
    async def test_resource_metrics_require_cloudwatch(self, store, fixed_now):
        with pytest.raises(ValueError):
            await InfraCollector(store).collect_resource_metrics(
                "ec2", "i-1", None, fixed_now, now=fixed_now
            )

    @pytest.mark.asyncio
    async def test_cost_metrics(self, store, team):
        cost_explorer = Mock()
        cost_explorer.get_total_cost.return_value = CostData(7.5, "USD")
        cost_explorer.get_cost_by_service.return_value = {
            "Amazon EC2": CostData(5.0, "USD"),
            "Amazon RDS": CostData(2.5, "USD"),
        }
        collector = InfraCollector(store, cost_explorer=cost_explorer)

        result = await collector.collect_cost_metrics(
            team.id, date(2024, 1, 16), date(2024, 1, 17)
        )

        assert result == CollectionResult(count=3)
        cost_explorer.get_total_cost.assert_called_once_with(
            date(2024, 1, 16), date(2024, 1, 17)
        )

    @pytest.mark.asyncio
    async def test_cost_failure_and_missing_client(self, store):
        assert await InfraCollector(store).collect_cost_metrics(
            None, date(2024, 1, 16), date(2024, 1, 17)
        ) == CollectionResult()

        cost_explorer = Mock()
        cost_explorer.get_total_cost.side_effect = APIException("denied", "aws")
        result = await InfraCollector(store, cost_explorer=cost_explorer).collect_cost_metrics(
            None, date(2024, 1, 16), date(2024, 1, 17)
        )
        assert result == CollectionResult(0, 1)
