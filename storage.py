import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.inspection import inspect
from sqlalchemy.orm import sessionmaker

from models import (Alert, Commit, Deployment, Developer, Incident,
                    IncidentStatus, MergeRequest, MergeRequestStatus, Metric,
                    MetricType, Sprint, Team, Ticket, TicketSource)

logger = logging.getLogger(__name__)


def detect_db_type(conn_string: str) -> str:
    """
    Detect database type from connection string.

    :param conn_string: Database connection string.
    :return: Database type ('postgres' or 'sqlite').
    :raises ValueError: If database type cannot be determined.
    """
    if not conn_string:
        raise ValueError("Connection string is required")

    conn_lower = conn_string.lower()

    if conn_lower.startswith(("postgresql://", "postgres://", "postgresql+asyncpg://")):
        return "postgres"

    if conn_lower.startswith(("sqlite://", "sqlite+aiosqlite://")):
        return "sqlite"

    scheme = conn_string.split("://", 1)[0] if "://" in conn_string else "unknown"
    raise ValueError(
        f"Could not detect database type from connection string. "
        f"Supported: postgresql://, postgres://, sqlite://, or variations with "
        f"async drivers. Got scheme: '{scheme}'"
    )


def _async_url(conn_string: str) -> str:
    """Rewrite sync driver URLs to their async equivalents."""
    lower = conn_string.lower()
    if lower.startswith("postgres://"):
        return "postgresql+asyncpg://" + conn_string[len("postgres://"):]
    if lower.startswith("postgresql://"):
        return "postgresql+asyncpg://" + conn_string[len("postgresql://"):]
    if lower.startswith("sqlite://") and not lower.startswith("sqlite+"):
        return "sqlite+aiosqlite://" + conn_string[len("sqlite://"):]
    return conn_string


def create_store(
    conn_string: str,
    db_type: Optional[str] = None,
    echo: bool = False,
) -> "SQLAlchemyStore":
    """
    Create a storage backend based on the connection string.

    :param conn_string: Database connection string.
    :param db_type: Optional explicit database type ('postgres' or 'sqlite').
                   If not provided, it will be auto-detected from conn_string.
    :param echo: Whether to echo SQL statements.
    :return: SQLAlchemyStore instance.
    """
    if db_type is None:
        db_type = detect_db_type(conn_string)

    db_type = db_type.lower()

    if db_type in ("postgres", "postgresql", "sqlite"):
        return SQLAlchemyStore(_async_url(conn_string), echo=echo)
    raise ValueError(
        f"Unsupported database type: {db_type}. Supported types: postgres, sqlite"
    )


def model_to_dict(model: Any) -> Dict[str, Any]:
    """
    Convert a SQLAlchemy model instance to a plain dict of column values.

    Unset (None) values are dropped so column defaults apply on insert.
    """
    mapper = inspect(model.__class__)
    data: Dict[str, Any] = {}
    for column in mapper.columns:
        value = getattr(model, column.key)
        if value is not None:
            data[column.key] = value
    return data


class SQLAlchemyStore:
    """Async storage implementation backed by SQLAlchemy."""

    def __init__(self, conn_string: str, echo: bool = False) -> None:
        engine_kwargs: Dict[str, Any] = {"echo": echo}

        # Only add pooling parameters for databases that support them
        if "sqlite" not in conn_string.lower():
            engine_kwargs.update(
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_pre_ping": True,
                    "pool_recycle": 3600,
                }
            )

        self.engine = create_async_engine(conn_string, **engine_kwargs)
        self.session_factory = sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )
        self.session: Optional[AsyncSession] = None

    def _insert_for_dialect(self, model: Any):
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite_insert(model)
        if dialect in ("postgres", "postgresql"):
            return pg_insert(model)
        raise ValueError(f"Unsupported SQL dialect for upserts: {dialect}")

    async def _commit(self) -> None:
        assert self.session is not None
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def _upsert_many(
        self,
        model: Any,
        rows: List[Dict[str, Any]],
        conflict_columns: List[str],
        update_columns: List[str],
    ) -> None:
        if not rows:
            return
        assert self.session is not None

        stmt = self._insert_for_dialect(model)
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=[getattr(model, col) for col in conflict_columns],
                set_={col: getattr(stmt.excluded, col) for col in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[getattr(model, col) for col in conflict_columns],
            )
        try:
            for row in rows:
                await self.session.execute(stmt.values(**row))
        except Exception:
            await self.session.rollback()
            raise
        await self._commit()

    async def __aenter__(self) -> "SQLAlchemyStore":
        self.session = self.session_factory()

        # Create tables for SQLite automatically
        if "sqlite" in str(self.engine.url):
            from models import Base

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.session is not None:
            await self.session.close()
        await self.engine.dispose()

    async def _first(self, stmt) -> Any:
        assert self.session is not None
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _all(self, stmt) -> List[Any]:
        assert self.session is not None
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ---- generic writes ----

    async def save(self, obj: Any) -> Any:
        """Persist a new or modified ORM object."""
        assert self.session is not None
        self.session.add(obj)
        await self._commit()
        return obj

    async def save_all(self, objs: Iterable[Any]) -> List[Any]:
        assert self.session is not None
        items = list(objs)
        if not items:
            return items
        self.session.add_all(items)
        await self._commit()
        return items

    async def get_by_id(self, model: Any, pk: uuid.UUID) -> Any:
        assert self.session is not None
        return await self.session.get(model, pk)

    # ---- teams & developers ----

    async def get_team(self, team_id: uuid.UUID) -> Optional[Team]:
        assert self.session is not None
        return await self.session.get(Team, team_id)

    async def list_teams(self) -> List[Team]:
        return await self._all(select(Team).order_by(Team.name))

    async def find_team_by_name(self, name: str) -> Optional[Team]:
        return await self._first(select(Team).where(Team.name == name))

    async def find_team_by_gitlab_project(self, project_id: str) -> Optional[Team]:
        return await self._first(
            select(Team).where(Team.gitlab_project_id == str(project_id))
        )

    async def get_developer(self, developer_id: uuid.UUID) -> Optional[Developer]:
        assert self.session is not None
        return await self.session.get(Developer, developer_id)

    async def find_developer_by_email(self, email: Optional[str]) -> Optional[Developer]:
        if not email:
            return None
        return await self._first(
            select(Developer).where(func.lower(Developer.email) == email.strip().lower())
        )

    async def list_active_developers(self) -> List[Developer]:
        return await self._all(
            select(Developer).where(Developer.active.is_(True)).order_by(Developer.email)
        )

    # ---- tickets & sprints ----

    async def get_ticket(self, external_id: str, source: TicketSource) -> Optional[Ticket]:
        return await self._first(
            select(Ticket).where(
                Ticket.external_id == external_id, Ticket.source == source
            )
        )

    async def list_sprint_tickets(self, sprint_id: uuid.UUID) -> List[Ticket]:
        return await self._all(
            select(Ticket).where(Ticket.sprint_id == sprint_id).order_by(Ticket.external_id)
        )

    async def get_sprint_by_external_id(self, external_id: str) -> Optional[Sprint]:
        return await self._first(select(Sprint).where(Sprint.external_id == external_id))

    async def has_sprint(self, external_id: str) -> bool:
        assert self.session is not None
        result = await self.session.execute(
            select(func.count()).select_from(Sprint).where(Sprint.external_id == external_id)
        )
        return (result.scalar() or 0) > 0

    async def list_recent_sprints(self, team_id: uuid.UUID, count: int) -> List[Sprint]:
        """Most recent ``count`` sprints for a team, newest end date first."""
        return await self._all(
            select(Sprint)
            .where(Sprint.team_id == team_id, Sprint.end_date.is_not(None))
            .order_by(Sprint.end_date.desc())
            .limit(count)
        )

    async def list_tickets_for_sprints(self, sprint_ids: Sequence[uuid.UUID]) -> List[Ticket]:
        if not sprint_ids:
            return []
        return await self._all(select(Ticket).where(Ticket.sprint_id.in_(list(sprint_ids))))

    # ---- commits ----

    async def has_commit(self, sha: str) -> bool:
        assert self.session is not None
        result = await self.session.execute(
            select(func.count()).select_from(Commit).where(Commit.sha == sha)
        )
        return (result.scalar() or 0) > 0

    async def insert_commit(self, commit: Commit) -> None:
        """Insert a commit; a concurrent insert of the same sha is a no-op."""
        await self._upsert_many(
            Commit,
            [model_to_dict(commit)],
            conflict_columns=["sha"],
            update_columns=[],
        )

    async def list_developer_commits(
        self, developer_id: uuid.UUID, since: datetime
    ) -> List[Commit]:
        return await self._all(
            select(Commit)
            .where(Commit.developer_id == developer_id, Commit.committed_at >= since)
            .order_by(Commit.committed_at)
        )

    # ---- merge requests & deployments ----

    async def get_merge_request(
        self, external_id: str, project_id: str
    ) -> Optional[MergeRequest]:
        return await self._first(
            select(MergeRequest).where(
                MergeRequest.external_id == external_id,
                MergeRequest.project_id == project_id,
            )
        )

    async def insert_merge_request(self, merge_request: MergeRequest) -> None:
        """Insert keyed on (external_id, project_id), updating mutable fields on conflict."""
        await self._upsert_many(
            MergeRequest,
            [model_to_dict(merge_request)],
            conflict_columns=["external_id", "project_id"],
            update_columns=["status", "merged_at", "closed_at", "comments_count"],
        )

    async def list_merged_merge_requests(
        self, start: datetime, end: datetime
    ) -> List[MergeRequest]:
        return await self._all(
            select(MergeRequest).where(
                MergeRequest.status == MergeRequestStatus.MERGED,
                MergeRequest.merged_at >= start,
                MergeRequest.merged_at <= end,
            )
        )

    async def mark_merge_requests_deployed(
        self, project_id: str, sha: str, deployed_at: datetime
    ) -> int:
        """Stamp ``deployed_at`` once on merge requests whose merge commit was deployed."""
        assert self.session is not None
        result = await self.session.execute(
            update(MergeRequest)
            .where(
                MergeRequest.project_id == project_id,
                MergeRequest.merge_commit_sha == sha,
                MergeRequest.deployed_at.is_(None),
            )
            .values(deployed_at=deployed_at)
            .execution_options(synchronize_session="fetch")
        )
        await self._commit()
        return int(result.rowcount or 0)

    async def get_deployment(
        self, external_id: str, project_id: str
    ) -> Optional[Deployment]:
        return await self._first(
            select(Deployment).where(
                Deployment.external_id == external_id,
                Deployment.project_id == project_id,
            )
        )

    async def list_deployments(self, start: datetime, end: datetime) -> List[Deployment]:
        return await self._all(
            select(Deployment)
            .where(Deployment.deployed_at >= start, Deployment.deployed_at <= end)
            .order_by(Deployment.deployed_at)
        )

    # ---- incidents ----

    async def get_incident(self, incident_id: uuid.UUID) -> Optional[Incident]:
        assert self.session is not None
        return await self.session.get(Incident, incident_id)

    async def list_resolved_incidents(
        self, start: datetime, end: datetime
    ) -> List[Incident]:
        return await self._all(
            select(Incident).where(
                Incident.status == IncidentStatus.RESOLVED,
                Incident.resolved_at >= start,
                Incident.resolved_at <= end,
            )
        )

    async def list_incidents(
        self, start: datetime, end: datetime, team_id: Optional[uuid.UUID] = None
    ) -> List[Incident]:
        stmt = select(Incident).where(
            Incident.started_at >= start, Incident.started_at <= end
        )
        if team_id is not None:
            stmt = stmt.where(Incident.team_id == team_id)
        return await self._all(stmt.order_by(Incident.started_at.desc()))

    # ---- metrics ----

    async def insert_metrics(self, metrics: Iterable[Metric]) -> int:
        """Append metric rows. Metric rows have no natural key and are never deduplicated."""
        saved = await self.save_all(metrics)
        return len(saved)

    async def list_metrics(
        self,
        metric_type: MetricType,
        start: datetime,
        end: datetime,
        team_id: Optional[uuid.UUID] = None,
    ) -> List[Metric]:
        stmt = select(Metric).where(
            Metric.type == metric_type,
            Metric.timestamp >= start,
            Metric.timestamp <= end,
        )
        if team_id is not None:
            stmt = stmt.where(Metric.team_id == team_id)
        return await self._all(stmt.order_by(Metric.timestamp))

    async def list_team_metrics_since(
        self, team_id: uuid.UUID, since: datetime
    ) -> List[Metric]:
        return await self._all(
            select(Metric)
            .where(Metric.team_id == team_id, Metric.timestamp >= since)
            .order_by(Metric.timestamp)
        )

    async def average_metric_value(
        self,
        team_id: uuid.UUID,
        metric_type: MetricType,
        start: datetime,
        end: datetime,
    ) -> Optional[float]:
        """Mean value over ``[start, end)``, or None when no rows exist."""
        assert self.session is not None
        result = await self.session.execute(
            select(func.avg(Metric.value)).where(
                Metric.team_id == team_id,
                Metric.type == metric_type,
                Metric.timestamp >= start,
                Metric.timestamp < end,
            )
        )
        value = result.scalar()
        return float(value) if value is not None else None

    # ---- alerts ----

    async def get_alert(self, alert_id: uuid.UUID) -> Optional[Alert]:
        assert self.session is not None
        return await self.session.get(Alert, alert_id)

    async def list_alerts(
        self, team_id: Optional[uuid.UUID] = None, unresolved_only: bool = False
    ) -> List[Alert]:
        stmt = select(Alert)
        if team_id is not None:
            stmt = stmt.where(Alert.team_id == team_id)
        if unresolved_only:
            stmt = stmt.where(Alert.resolved.is_(False))
        return await self._all(stmt.order_by(Alert.created_at))
