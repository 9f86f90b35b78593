import enum
import uuid

from sqlalchemy import JSON, Column, Float, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import UUID

from models.git import Base, UTCDateTime, _utcnow, enum_column


class MetricType(str, enum.Enum):
    CPU_UTILIZATION = "cpu_utilization"
    MEMORY_UTILIZATION = "memory_utilization"
    NETWORK_THROUGHPUT = "network_throughput"
    ERROR_RATE = "error_rate"
    LATENCY = "latency"
    REQUEST_COUNT = "request_count"
    DATABASE_CONNECTIONS = "database_connections"
    COST = "cost"
    VELOCITY = "velocity"
    DEPLOYMENT_FREQUENCY = "deployment_frequency"
    LEAD_TIME_FOR_CHANGES = "lead_time_for_changes"
    CHANGE_FAILURE_RATE = "change_failure_rate"
    MEAN_TIME_TO_RECOVERY = "mean_time_to_recovery"
    CUSTOM = "custom"


class Metric(Base):
    """Append-only time series row. Rows are inserted, never updated."""

    __tablename__ = "metrics"
    __table_args__ = (
        Index("ix_metrics_type_timestamp", "type", "timestamp"),
        Index("ix_metrics_team_type_timestamp", "team_id", "type", "timestamp"),
    )
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the metric row",
    )
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    type = enum_column(MetricType, nullable=False, comment="metric category")
    name = Column(Text, nullable=False, comment="metric name, lower-cased")
    value = Column(Float, nullable=False, comment="observed value")
    unit = Column(Text, comment="unit reported by the source")
    source = Column(Text, comment="system that produced the value")
    timestamp = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp of the observation",
    )
    tags = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="free-form metadata such as namespace and resource id",
    )
