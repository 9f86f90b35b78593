#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from config import AppConfig, load_config
from errors import ConfigurationError, InvalidStateError, NotFoundError
from storage import create_store, detect_db_type
from utils import DateRange, _parse_since

REPO_ROOT = Path(__file__).resolve().parent

# Default look-back per source, matching the polling cadence of each collector.
JIRA_WINDOW = timedelta(minutes=20)
GITLAB_WINDOW = timedelta(minutes=15)
AWS_WINDOW = timedelta(minutes=10)


def _load_dotenv(path: Path) -> int:
    """
    Load a .env file into process environment (without overriding existing vars).
    """
    if not path.exists():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue
        if (len(value) >= 2) and ((value[0] == value[-1]) and value[0] in {"'", '"'}):
            value = value[1:-1]
        os.environ[key] = value
        loaded += 1
    return loaded


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}', expected YYYY-MM-DD"
        ) from exc


def _since(ns: argparse.Namespace, window: timedelta) -> datetime:
    if getattr(ns, "since", None):
        try:
            return _parse_since(ns.since)
        except ValueError as exc:
            raise SystemExit(f"Invalid --since '{ns.since}': {exc}") from exc
    return datetime.now(timezone.utc) - window


def _resolve_db(ns: argparse.Namespace, config: AppConfig) -> str:
    db_url = ns.db or config.database_url
    if not db_url:
        raise SystemExit("Database URL is required (pass --db or set DATABASE_URL).")
    try:
        detect_db_type(db_url)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    return db_url


async def _run_with_store(db_url: str, handler) -> None:
    store = create_store(db_url)
    async with store:
        await handler(store)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _print_result(value: Any) -> None:
    payload = dataclasses.asdict(value) if dataclasses.is_dataclass(value) else value
    print(json.dumps(payload, indent=2, default=_to_jsonable, sort_keys=True))


async def _require_team(store, name: str):
    team = await store.find_team_by_name(name)
    if team is None:
        raise SystemExit(f"Unknown team '{name}'.")
    return team


# ---- collect ----


def _cmd_collect_jira(ns: argparse.Namespace) -> int:
    from collectors import IssueCollector
    from connectors import JiraConnector

    config = load_config()
    if not config.jira.configured:
        raise SystemExit(
            "Jira is not configured (set JIRA_BASE_URL, JIRA_EMAIL and JIRA_API_TOKEN)."
        )
    db_url = _resolve_db(ns, config)
    since = _since(ns, JIRA_WINDOW)

    async def _handler(store):
        team_id = (await _require_team(store, ns.team)).id if ns.team else None
        connector = JiraConnector(
            base_url=config.jira.base_url,
            email=config.jira.email,
            api_token=config.jira.api_token,
            project_keys=config.jira.project_keys,
            board_id=config.jira.board_id,
        )
        collector = IssueCollector(connector, store, team_id=team_id)
        sprints = await collector.collect_sprints()
        tickets = await collector.collect_tickets(since)
        logging.info(
            "Jira collection done: %d sprints, %d tickets, %d errors",
            sprints.count,
            tickets.count,
            sprints.error_count + tickets.error_count,
        )

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_collect_gitlab(ns: argparse.Namespace) -> int:
    from collectors import SourceControlCollector
    from connectors import GitLabConnector

    config = load_config()
    if not config.gitlab.configured:
        raise SystemExit("Missing GitLab token (set GITLAB_TOKEN).")
    db_url = _resolve_db(ns, config)
    since = _since(ns, GITLAB_WINDOW)
    project_ids = ns.project_id or list(config.gitlab.project_ids)

    async def _handler(store):
        connector = GitLabConnector(
            url=config.gitlab.url, private_token=config.gitlab.private_token
        )
        collector = SourceControlCollector(connector, store, project_ids)
        commits = await collector.collect_commits(since)
        merge_requests = await collector.collect_merge_requests(since)
        deployments = await collector.collect_deployments(since)
        logging.info(
            "GitLab collection done: %d commits, %d merge requests, %d deployments",
            commits.count,
            merge_requests.count,
            deployments.count,
        )

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_collect_aws(ns: argparse.Namespace) -> int:
    from alerts import AlertEngine
    from collectors import InfraCollector
    from connectors import CloudWatchConnector

    config = load_config()
    db_url = _resolve_db(ns, config)
    since = _since(ns, AWS_WINDOW)

    async def _handler(store):
        collector = InfraCollector(
            store,
            cloudwatch=CloudWatchConnector(
                config.aws.region,
                access_key_id=config.aws.access_key_id,
                secret_access_key=config.aws.secret_access_key,
            ),
        )
        engine = AlertEngine(store, config.thresholds)
        now = datetime.now(timezone.utc)
        for team in await store.list_teams():
            if not team.has_aws_resources():
                continue
            result = await collector.collect_team_metrics(team, since, now)
            logging.info(
                "Team %s: %d metrics, %d failed resources",
                team.name,
                result.count,
                result.error_count,
            )
            if ns.check_alerts:
                metrics = await store.list_team_metrics_since(team.id, now)
                alerts = await engine.check_infrastructure_thresholds(team.id, metrics)
                logging.info("Team %s: %d infrastructure alerts", team.name, len(alerts))

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_collect_cost(ns: argparse.Namespace) -> int:
    from collectors import InfraCollector
    from connectors import CostExplorerConnector

    config = load_config()
    db_url = _resolve_db(ns, config)
    day = ns.date or (datetime.now(timezone.utc).date() - timedelta(days=1))

    async def _handler(store):
        team_id = (await _require_team(store, ns.team)).id if ns.team else None
        collector = InfraCollector(
            store,
            cost_explorer=CostExplorerConnector(
                access_key_id=config.aws.access_key_id,
                secret_access_key=config.aws.secret_access_key,
            ),
        )
        result = await collector.collect_cost_metrics(
            team_id, day, day + timedelta(days=1)
        )
        logging.info("Cost collection for %s: %d metrics", day, result.count)

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


# ---- alerts ----


def _cmd_alerts_velocity(ns: argparse.Namespace) -> int:
    from alerts import AlertEngine

    config = load_config()
    db_url = _resolve_db(ns, config)

    async def _handler(store):
        engine = AlertEngine(store, config.thresholds)
        teams = [await _require_team(store, ns.team)] if ns.team else await store.list_teams()
        for team in teams:
            alerts = await engine.check_velocity_thresholds(team.id)
            logging.info("Team %s: %d velocity alerts", team.name, len(alerts))

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_alerts_burnout(ns: argparse.Namespace) -> int:
    from alerts import AlertEngine

    config = load_config()
    db_url = _resolve_db(ns, config)

    async def _handler(store):
        engine = AlertEngine(store, config.thresholds)
        if ns.developer:
            developer = await store.find_developer_by_email(ns.developer)
            if developer is None:
                raise SystemExit(f"Unknown developer '{ns.developer}'.")
            developers = [developer]
        else:
            developers = await store.list_active_developers()
        for developer in developers:
            alerts = await engine.check_burnout_risk(developer.id)
            if alerts:
                logging.info("%s: %d burnout alerts", developer.email, len(alerts))

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


# ---- metrics ----


def _cmd_metrics_dora(ns: argparse.Namespace) -> int:
    from metrics.dora import DoraEngine

    config = load_config()
    db_url = _resolve_db(ns, config)
    end = ns.end or datetime.now(timezone.utc).date()
    start = ns.start or (end - timedelta(days=30))
    try:
        date_range = DateRange.of(start, end)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    async def _handler(store):
        _print_result(await DoraEngine(store).calculate_metrics(date_range))

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_metrics_velocity(ns: argparse.Namespace) -> int:
    from metrics.processor import MetricsProcessor

    config = load_config()
    db_url = _resolve_db(ns, config)

    async def _handler(store):
        team = await _require_team(store, ns.team)
        _print_result(await MetricsProcessor(store).team_velocity(team.id, ns.sprints))

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _cmd_metrics_sprint(ns: argparse.Namespace) -> int:
    from metrics.processor import MetricsProcessor

    config = load_config()
    db_url = _resolve_db(ns, config)

    async def _handler(store):
        processor = MetricsProcessor(store)
        _print_result(await processor.sprint_metrics(ns.sprint_id))
        if ns.record:
            await processor.record_sprint_velocity(ns.sprint_id)

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


# ---- cost ----


def _cost_explorer(config: AppConfig):
    from connectors import CostExplorerConnector

    return CostExplorerConnector(
        access_key_id=config.aws.access_key_id,
        secret_access_key=config.aws.secret_access_key,
    )


def _cmd_cost_forecast(ns: argparse.Namespace) -> int:
    start = ns.start or datetime.now(timezone.utc).date()
    end = ns.end or (start + timedelta(days=30))
    if end <= start:
        raise SystemExit("--end must be after --start.")
    _print_result(_cost_explorer(load_config()).get_cost_forecast(start, end))
    return 0


def _cmd_cost_top(ns: argparse.Namespace) -> int:
    end = ns.end or datetime.now(timezone.utc).date()
    start = ns.start or (end - timedelta(days=30))
    if end <= start:
        raise SystemExit("--end must be after --start.")
    resources = _cost_explorer(load_config()).get_top_cost_resources(start, end, ns.limit)
    _print_result([dataclasses.asdict(r) for r in resources])
    return 0


# ---- sprint ----


def _cmd_sprint(ns: argparse.Namespace) -> int:
    from metrics.processor import MetricsProcessor
    from sprints import SprintService

    config = load_config()
    db_url = _resolve_db(ns, config)

    async def _handler(store):
        service = SprintService(store)
        if ns.action == "start":
            sprint = await service.start_sprint(ns.sprint_id)
        elif ns.action == "complete":
            sprint = await service.complete_sprint(ns.sprint_id)
            if ns.record:
                await MetricsProcessor(store).record_sprint_velocity(ns.sprint_id)
        else:
            sprint = await service.update_sprint_points(ns.sprint_id)
        _print_result(
            {
                "sprint_id": sprint.external_id,
                "status": sprint.status,
                "start_date": sprint.start_date,
                "end_date": sprint.end_date,
                "committed_points": sprint.committed_points,
                "completed_points": sprint.completed_points,
            }
        )

    asyncio.run(_run_with_store(db_url, _handler))
    return 0


def _add_db_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        default=None,
        help="Database connection string. Defaults to env DATABASE_URL.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devpulse-syncs",
        description="Collect delivery signals and compute team health metrics.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING). Defaults to env LOG_LEVEL or INFO.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ---- collect ----
    collect = sub.add_parser("collect", help="Pull data from an external source.")
    collect_sub = collect.add_subparsers(dest="source", required=True)

    jira = collect_sub.add_parser("jira", help="Collect Jira sprints and tickets.")
    _add_db_arg(jira)
    jira.add_argument("--since", help="ISO timestamp lower bound (default: 20 min ago).")
    jira.add_argument("--team", help="Team name to attach new sprints to.")
    jira.set_defaults(func=_cmd_collect_jira)

    gl = collect_sub.add_parser(
        "gitlab", help="Collect GitLab commits, merge requests and deployments."
    )
    _add_db_arg(gl)
    gl.add_argument("--since", help="ISO timestamp lower bound (default: 15 min ago).")
    gl.add_argument(
        "--project-id",
        action="append",
        help="GitLab project id (repeatable). Defaults to env GITLAB_PROJECT_IDS.",
    )
    gl.set_defaults(func=_cmd_collect_gitlab)

    aws = collect_sub.add_parser("aws", help="Collect CloudWatch metrics per team.")
    _add_db_arg(aws)
    aws.add_argument("--since", help="ISO timestamp lower bound (default: 10 min ago).")
    aws.add_argument(
        "--check-alerts",
        action="store_true",
        help="Evaluate infrastructure thresholds on the freshly collected metrics.",
    )
    aws.set_defaults(func=_cmd_collect_aws)

    cost = collect_sub.add_parser("cost", help="Collect AWS cost for one day.")
    _add_db_arg(cost)
    cost.add_argument(
        "--date", type=_parse_date, help="Day to collect (YYYY-MM-DD, default: yesterday)."
    )
    cost.add_argument("--team", help="Team name to attribute the cost to.")
    cost.set_defaults(func=_cmd_collect_cost)

    # ---- alerts ----
    alerts = sub.add_parser("alerts", help="Run threshold evaluators.")
    alerts_sub = alerts.add_subparsers(dest="check", required=True)

    velocity = alerts_sub.add_parser("velocity", help="Check for velocity drops.")
    _add_db_arg(velocity)
    velocity.add_argument("--team", help="Team name (default: all teams).")
    velocity.set_defaults(func=_cmd_alerts_velocity)

    burnout = alerts_sub.add_parser("burnout", help="Check developers for burnout signals.")
    _add_db_arg(burnout)
    burnout.add_argument(
        "--developer", help="Developer email (default: all active developers)."
    )
    burnout.set_defaults(func=_cmd_alerts_burnout)

    # ---- metrics ----
    metrics = sub.add_parser("metrics", help="Compute derived metrics.")
    metrics_sub = metrics.add_subparsers(dest="metric", required=True)

    dora = metrics_sub.add_parser("dora", help="DORA metrics for a date range.")
    _add_db_arg(dora)
    dora.add_argument("--start", type=_parse_date, help="First day (default: end - 30 days).")
    dora.add_argument("--end", type=_parse_date, help="Last day (default: today).")
    dora.set_defaults(func=_cmd_metrics_dora)

    team_velocity = metrics_sub.add_parser("velocity", help="Team velocity over recent sprints.")
    _add_db_arg(team_velocity)
    team_velocity.add_argument("--team", required=True, help="Team name.")
    team_velocity.add_argument(
        "--sprints", type=int, default=6, help="Number of recent sprints (default: 6)."
    )
    team_velocity.set_defaults(func=_cmd_metrics_velocity)

    sprint = metrics_sub.add_parser("sprint", help="Progress metrics for one sprint.")
    _add_db_arg(sprint)
    sprint.add_argument("--sprint-id", required=True, help="Sprint id in Jira.")
    sprint.add_argument(
        "--record",
        action="store_true",
        help="Also append the sprint's completed points as a velocity metric.",
    )
    sprint.set_defaults(func=_cmd_metrics_sprint)

    # ---- cost ----
    cost_cmd = sub.add_parser("cost", help="Query AWS Cost Explorer without storing results.")
    cost_sub = cost_cmd.add_subparsers(dest="report", required=True)

    forecast = cost_sub.add_parser("forecast", help="Forecast spend for a future window.")
    forecast.add_argument("--start", type=_parse_date, help="First day (default: today).")
    forecast.add_argument(
        "--end", type=_parse_date, help="Day after the window (default: start + 30 days)."
    )
    forecast.set_defaults(func=_cmd_cost_forecast)

    top = cost_sub.add_parser("top", help="Most expensive service and usage type pairs.")
    top.add_argument("--start", type=_parse_date, help="First day (default: end - 30 days).")
    top.add_argument("--end", type=_parse_date, help="Day after the window (default: today).")
    top.add_argument("--limit", type=int, default=10, help="Rows to return (default: 10).")
    top.set_defaults(func=_cmd_cost_top)

    # ---- sprint ----
    sprint_cmd = sub.add_parser("sprint", help="Move a sprint through its lifecycle.")
    sprint_cmd.add_argument(
        "action",
        choices=["start", "complete", "refresh"],
        help="start (planned -> active), complete (active -> completed) or refresh points.",
    )
    _add_db_arg(sprint_cmd)
    sprint_cmd.add_argument("--sprint-id", required=True, help="Sprint id in Jira.")
    sprint_cmd.add_argument(
        "--record",
        action="store_true",
        help="On complete, also append the sprint's completed points as a velocity metric.",
    )
    sprint_cmd.set_defaults(func=_cmd_sprint)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }:
        _load_dotenv(REPO_ROOT / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    try:
        return int(func(ns))
    except (ConfigurationError, InvalidStateError, NotFoundError) as exc:
        logging.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
