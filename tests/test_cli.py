import asyncio
import json
from datetime import date
from unittest.mock import patch

import pytest

import cli
from connectors.models import ResourceCost
from models import Sprint
from storage import create_store


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DB_CONN_STRING", raising=False)


def test_parser_collect_gitlab_accepts_repeated_projects():
    ns = cli.build_parser().parse_args(
        ["collect", "gitlab", "--project-id", "42", "--project-id", "43", "--since", "2024-01-01"]
    )
    assert ns.project_id == ["42", "43"]
    assert ns.since == "2024-01-01"
    assert ns.func is cli._cmd_collect_gitlab


def test_parser_metrics_dora_parses_dates():
    ns = cli.build_parser().parse_args(
        ["metrics", "dora", "--start", "2024-01-01", "--end", "2024-01-30"]
    )
    assert ns.start == date(2024, 1, 1)
    assert ns.end == date(2024, 1, 30)


def test_parser_rejects_bad_date():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["collect", "cost", "--date", "01/02/2024"])


def test_parser_requires_subcommand():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["metrics"])


def test_load_dotenv_does_not_override(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "export DEVPULSE_A='quoted value'\n"
        "DEVPULSE_B=from-file\n"
        "not a pair\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("DEVPULSE_A", raising=False)
    monkeypatch.setenv("DEVPULSE_B", "from-env")

    loaded = cli._load_dotenv(env_file)

    assert loaded == 1
    assert cli.os.environ["DEVPULSE_A"] == "quoted value"
    assert cli.os.environ["DEVPULSE_B"] == "from-env"
    cli.os.environ.pop("DEVPULSE_A", None)


def test_load_dotenv_missing_file(tmp_path):
    assert cli._load_dotenv(tmp_path / "missing.env") == 0


def test_missing_database_exits():
    with pytest.raises(SystemExit):
        cli.main(["metrics", "dora"])


def test_metrics_dora_prints_json(tmp_path, capsys):
    db_url = f"sqlite:///{tmp_path / 'devpulse.db'}"

    code = cli.main(
        ["metrics", "dora", "--db", db_url, "--start", "2024-01-01", "--end", "2024-01-30"]
    )

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["overall_tier"] == "high"
    assert payload["deployment_frequency"]["total_deployments"] == 0
    assert payload["start"] == "2024-01-01T00:00:00+00:00"


def test_unknown_sprint_returns_error_code(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'devpulse.db'}"
    assert cli.main(["metrics", "sprint", "--db", db_url, "--sprint-id", "99"]) == 1


def _seed_sprint(db_url, external_id):
    async def _seed():
        async with create_store(db_url) as store:
            await store.save(Sprint(external_id=external_id, name="Sprint 5"))

    asyncio.run(_seed())


def test_sprint_start_prints_snapshot(tmp_path, capsys):
    db_url = f"sqlite:///{tmp_path / 'devpulse.db'}"
    _seed_sprint(db_url, "5")

    assert cli.main(["sprint", "start", "--db", db_url, "--sprint-id", "5"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "active"
    assert payload["committed_points"] == 0
    assert payload["start_date"] is not None


def test_sprint_complete_requires_active(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'devpulse.db'}"
    _seed_sprint(db_url, "5")
    assert cli.main(["sprint", "complete", "--db", db_url, "--sprint-id", "5"]) == 1


def test_cost_top_prints_rows(capsys):
    with patch("connectors.CostExplorerConnector") as connector_cls:
        report = connector_cls.return_value.get_top_cost_resources
        report.return_value = [ResourceCost("Amazon EC2", "BoxUsage", 7.0)]

        code = cli.main(
            ["cost", "top", "--start", "2024-01-01", "--end", "2024-02-01", "--limit", "1"]
        )

    assert code == 0
    report.assert_called_once_with(date(2024, 1, 1), date(2024, 2, 1), 1)
    assert json.loads(capsys.readouterr().out) == [
        {"service": "Amazon EC2", "usage_type": "BoxUsage", "amount": 7.0, "currency": "USD"}
    ]


def test_cost_forecast_rejects_reversed_window():
    with pytest.raises(SystemExit):
        cli.main(["cost", "forecast", "--start", "2024-02-01", "--end", "2024-01-01"])
