import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, Enum, ForeignKey, Integer,
                        Text, UniqueConstraint)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always stores and returns UTC.

    SQLite drops offsets on the way in, so naive values coming back out are
    re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def enum_column(enum_cls, **kwargs) -> Column:
    return Column(Enum(enum_cls, native_enum=False, length=32), **kwargs)


class MergeRequestStatus(str, enum.Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"
    LOCKED = "locked"


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


class Commit(Base):
    __tablename__ = "commits"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the commit",
    )
    sha = Column(Text, nullable=False, unique=True, comment="hash of the commit")
    message = Column(Text, comment="message of the commit")
    author_name = Column(Text, comment="name of the author of the commit")
    author_email = Column(Text, comment="email of the author of the commit")
    additions = Column(
        Integer, nullable=False, default=0, comment="lines added by the commit"
    )
    deletions = Column(
        Integer, nullable=False, default=0, comment="lines deleted by the commit"
    )
    project_id = Column(Text, comment="source-control project the commit belongs to")
    branch = Column(Text, comment="branch the commit was collected from")
    developer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("developers.id", ondelete="SET NULL"),
        comment="foreign key for developers.id, resolved by author email",
    )
    committed_at = Column(
        UTCDateTime(), nullable=False, comment="timestamp of when the commit was made"
    )
    synced_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp when record was synced into the database",
    )

    @property
    def is_after_hours(self) -> bool:
        hour = self.committed_at.hour
        return hour < 9 or hour >= 20

    @property
    def is_weekend(self) -> bool:
        return self.committed_at.weekday() >= 5


class MergeRequest(Base):
    __tablename__ = "merge_requests"
    __table_args__ = (
        UniqueConstraint(
            "external_id", "project_id", name="uq_merge_requests_external_project"
        ),
    )
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the merge request",
    )
    external_id = Column(
        Text, nullable=False, comment="project-scoped merge request number (iid)"
    )
    project_id = Column(Text, nullable=False, comment="source-control project id")
    title = Column(Text, comment="title of the merge request")
    description = Column(Text, comment="description of the merge request")
    source_branch = Column(Text, comment="branch being merged")
    target_branch = Column(Text, comment="branch being merged into")
    status = enum_column(
        MergeRequestStatus,
        nullable=False,
        default=MergeRequestStatus.OPEN,
        comment="open, merged, closed or locked",
    )
    comments_count = Column(
        Integer, nullable=False, default=0, comment="number of user notes"
    )
    author_email = Column(Text, comment="email of the merge request author")
    merge_commit_sha = Column(Text, comment="sha of the merge commit once merged")
    developer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("developers.id", ondelete="SET NULL"),
        comment="foreign key for developers.id, resolved by author email",
    )
    created_at = Column(UTCDateTime(), comment="timestamp the merge request was opened")
    merged_at = Column(UTCDateTime(), comment="timestamp the merge request was merged")
    closed_at = Column(UTCDateTime(), comment="timestamp the merge request was closed")
    deployed_at = Column(
        UTCDateTime(), comment="timestamp the merged change first reached a deployment"
    )
    synced_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp when record was last synced into the database",
    )

    @property
    def lead_time_hours(self):
        if self.created_at is None or self.deployed_at is None:
            return None
        return int((self.deployed_at - self.created_at).total_seconds() // 3600)


class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (
        UniqueConstraint(
            "external_id", "project_id", name="uq_deployments_external_project"
        ),
    )
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the deployment",
    )
    external_id = Column(Text, comment="deployment id in the source system")
    project_id = Column(Text, comment="source-control project id")
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    merge_request_id = Column(
        UUID(as_uuid=True),
        ForeignKey("merge_requests.id", ondelete="SET NULL"),
        comment="foreign key for merge_requests.id",
    )
    environment = Column(Text, comment="target environment name")
    version = Column(Text, comment="deployed ref or version")
    sha = Column(Text, comment="sha that was deployed")
    status = enum_column(
        DeploymentStatus,
        nullable=False,
        default=DeploymentStatus.PENDING,
        comment="deployment outcome",
    )
    caused_incident = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="whether the deployment was linked to a production incident",
    )
    deployed_at = Column(
        UTCDateTime(), nullable=False, comment="timestamp the deployment ran"
    )

    @property
    def is_failure(self) -> bool:
        """A deployment fails for change failure rate only when it caused an incident."""
        return bool(self.caused_incident)
