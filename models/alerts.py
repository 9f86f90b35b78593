import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, Float, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID

from models.git import Base, UTCDateTime, _utcnow, enum_column


class AlertType(str, enum.Enum):
    VELOCITY_DROP = "velocity_drop"
    BURNOUT_RISK = "burnout_risk"
    WEEKEND_WORK = "weekend_work"
    INFRASTRUCTURE = "infrastructure"
    DEPLOYMENT_FAILURE = "deployment_failure"
    SPRINT_AT_RISK = "sprint_at_risk"
    COST = "cost"
    CUSTOM = "custom"


class AlertSeverity(str, enum.Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the alert",
    )
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    type = enum_column(AlertType, nullable=False, comment="alert category")
    severity = enum_column(AlertSeverity, nullable=False, comment="alert severity")
    title = Column(Text, nullable=False, comment="short summary")
    message = Column(Text, comment="human readable detail")
    source = Column(Text, comment="evaluator that raised the alert")
    metric_name = Column(Text, comment="name of the metric that breached")
    metric_value = Column(Float, comment="observed value at evaluation time")
    threshold_value = Column(Float, comment="configured threshold that was crossed")
    alert_metadata = Column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
        comment="evaluator specific context",
    )
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_by = Column(Text, comment="actor that acknowledged the alert")
    acknowledged_at = Column(UTCDateTime(), comment="last acknowledgement timestamp")
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_by = Column(Text, comment="actor that resolved the alert")
    resolved_at = Column(UTCDateTime(), comment="last resolution timestamp")
    resolution = Column(Text, comment="resolution note")
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp of when the alert was raised",
    )
