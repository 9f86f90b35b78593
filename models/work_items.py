import enum
import uuid
from datetime import date

from sqlalchemy import (JSON, Column, Date, ForeignKey, Integer, Text,
                        UniqueConstraint)
from sqlalchemy.dialects.postgresql import UUID

from models.git import Base, UTCDateTime, _utcnow, enum_column


class TicketSource(str, enum.Enum):
    JIRA = "jira"
    GITLAB = "gitlab"


class TicketStatus(str, enum.Enum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    TESTING = "testing"
    BLOCKED = "blocked"
    DONE = "done"
    CLOSED = "closed"
    CANCELLED = "cancelled"


COMPLETED_STATUSES = frozenset({TicketStatus.DONE, TicketStatus.CLOSED})
TODO_STATUSES = frozenset({TicketStatus.TODO, TicketStatus.BACKLOG})


class SprintStatus(str, enum.Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("external_id", "source", name="uq_tickets_external_source"),
    )
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the ticket",
    )
    external_id = Column(Text, nullable=False, comment="issue key in the tracker")
    source = enum_column(TicketSource, nullable=False, comment="issue tracker")
    title = Column(Text, comment="summary of the ticket")
    description = Column(Text, comment="description of the ticket")
    status = enum_column(
        TicketStatus,
        nullable=False,
        default=TicketStatus.BACKLOG,
        comment="normalized workflow status",
    )
    priority = Column(Text, comment="priority name from the tracker")
    ticket_type = Column(Text, comment="issue type name from the tracker")
    story_points = Column(Integer, comment="estimate in story points")
    labels = Column(JSON, nullable=False, default=list, comment="array of labels")
    developer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("developers.id", ondelete="SET NULL"),
        comment="foreign key for developers.id, resolved by assignee email",
    )
    sprint_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sprints.id", ondelete="SET NULL"),
        comment="foreign key for sprints.id",
    )
    created_at = Column(UTCDateTime(), comment="timestamp the ticket was created")
    started_at = Column(
        UTCDateTime(), comment="first time the ticket was seen in progress"
    )
    completed_at = Column(UTCDateTime(), comment="first time the ticket was seen done")
    external_updated_at = Column(
        UTCDateTime(), comment="last update timestamp reported by the tracker"
    )
    synced_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="timestamp when record was last synced into the database",
    )

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def cycle_time_hours(self):
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() // 3600)


class Sprint(Base):
    __tablename__ = "sprints"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the sprint",
    )
    external_id = Column(
        Text, nullable=False, unique=True, comment="sprint id in the tracker"
    )
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    name = Column(Text, comment="name of the sprint")
    goal = Column(Text, comment="sprint goal")
    start_date = Column(Date, comment="first day of the sprint")
    end_date = Column(Date, comment="last day of the sprint")
    status = enum_column(
        SprintStatus,
        nullable=False,
        default=SprintStatus.PLANNED,
        comment="planned, active or completed",
    )
    committed_points = Column(
        Integer, comment="snapshot of story points committed to the sprint"
    )
    completed_points = Column(
        Integer, comment="snapshot of story points completed in the sprint"
    )

    def days_remaining(self, today: date) -> int:
        if self.end_date is None or today > self.end_date:
            return 0
        return (self.end_date - today).days
