"""
Immutable runtime configuration.

Every component receives the slice of configuration it needs at
construction time; nothing reads the environment after ``load_config``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from errors import ConfigurationError


def _split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class JiraSettings:
    base_url: str = ""
    email: str = ""
    api_token: str = ""
    project_keys: Tuple[str, ...] = ()
    board_id: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)


@dataclass(frozen=True)
class GitLabSettings:
    url: str = "https://gitlab.com"
    private_token: str = ""
    project_ids: Tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.private_token)


@dataclass(frozen=True)
class AwsSettings:
    region: str = "us-east-1"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None


@dataclass(frozen=True)
class AlertThresholds:
    """Numeric thresholds used by the alert evaluators."""

    velocity_drop_percent: float = 20.0
    after_hours_percent: float = 30.0
    weekend_commits: int = 5
    cpu_percent: float = 80.0
    memory_percent: float = 85.0
    error_rate_percent: float = 1.0


@dataclass(frozen=True)
class AppConfig:
    database_url: str = ""
    jira: JiraSettings = field(default_factory=JiraSettings)
    gitlab: GitLabSettings = field(default_factory=GitLabSettings)
    aws: AwsSettings = field(default_factory=AwsSettings)
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError(
                "Database URL is required (pass --db or set DATABASE_URL)."
            )
        return self.database_url


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Build an AppConfig from environment variables.

    :param env: Mapping to read from; defaults to ``os.environ``.
    :return: Frozen configuration value.
    :raises ConfigurationError: If a numeric setting cannot be parsed.
    """
    env = os.environ if env is None else env

    jira = JiraSettings(
        base_url=(env.get("JIRA_BASE_URL") or "").rstrip("/"),
        email=env.get("JIRA_EMAIL") or "",
        api_token=env.get("JIRA_API_TOKEN") or "",
        project_keys=_split_csv(env.get("JIRA_PROJECT_KEYS")),
        board_id=env.get("JIRA_BOARD_ID") or None,
    )
    gitlab = GitLabSettings(
        url=(env.get("GITLAB_URL") or "https://gitlab.com").rstrip("/"),
        private_token=env.get("GITLAB_TOKEN") or "",
        project_ids=_split_csv(env.get("GITLAB_PROJECT_IDS")),
    )
    aws = AwsSettings(
        region=env.get("AWS_REGION") or "us-east-1",
        access_key_id=env.get("AWS_ACCESS_KEY_ID") or None,
        secret_access_key=env.get("AWS_SECRET_ACCESS_KEY") or None,
    )
    defaults = AlertThresholds()
    thresholds = AlertThresholds(
        velocity_drop_percent=_float(
            env, "ALERT_VELOCITY_DROP_PERCENT", defaults.velocity_drop_percent
        ),
        after_hours_percent=_float(
            env, "ALERT_AFTER_HOURS_PERCENT", defaults.after_hours_percent
        ),
        weekend_commits=_int(env, "ALERT_WEEKEND_COMMITS", defaults.weekend_commits),
        cpu_percent=_float(env, "ALERT_CPU_PERCENT", defaults.cpu_percent),
        memory_percent=_float(env, "ALERT_MEMORY_PERCENT", defaults.memory_percent),
        error_rate_percent=_float(
            env, "ALERT_ERROR_RATE_PERCENT", defaults.error_rate_percent
        ),
    )
    database_url = env.get("DATABASE_URL") or env.get("DB_CONN_STRING") or ""
    return AppConfig(
        database_url=database_url,
        jira=jira,
        gitlab=gitlab,
        aws=aws,
        thresholds=thresholds,
    )
