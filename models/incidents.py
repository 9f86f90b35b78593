import enum
import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID

from models.git import Base, UTCDateTime, enum_column


class IncidentSeverity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IncidentStatus(str, enum.Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class Incident(Base):
    __tablename__ = "incidents"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the incident",
    )
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    deployment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("deployments.id", ondelete="SET NULL"),
        comment="foreign key for deployments.id when a change caused the incident",
    )
    title = Column(Text, nullable=False, comment="short summary")
    description = Column(Text, comment="longer description")
    severity = enum_column(IncidentSeverity, nullable=False, comment="impact level")
    status = enum_column(
        IncidentStatus,
        nullable=False,
        default=IncidentStatus.OPEN,
        comment="open, investigating or resolved",
    )
    source = Column(Text, comment="system or person that raised the incident")
    started_at = Column(UTCDateTime(), nullable=False, comment="impact start")
    acknowledged_at = Column(
        UTCDateTime(), comment="first transition from open to investigating"
    )
    resolved_at = Column(UTCDateTime(), comment="timestamp of resolution")
    mttr_minutes = Column(
        Integer, comment="minutes from start to resolution, fixed at resolution"
    )
    resolution = Column(Text, comment="how the incident was resolved")
    root_cause = Column(Text, comment="root cause summary")
    timeline = Column(Text, comment="newline separated timeline entries")
