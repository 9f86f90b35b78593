import uuid
from typing import List

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID

from models.git import Base, UTCDateTime, _utcnow

AWS_RESOURCE_KEYS = (
    "ec2_instances",
    "rds_instances",
    "ecs_services",
    "lambda_functions",
    "load_balancers",
)


class Team(Base):
    __tablename__ = "teams"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the team",
    )
    name = Column(Text, nullable=False, unique=True, comment="name of the team")
    jira_project_key = Column(Text, comment="Jira project owned by the team")
    gitlab_project_id = Column(Text, comment="GitLab project owned by the team")
    aws_resources = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="comma separated resource ids keyed by resource kind",
    )
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp of when the team was created",
    )

    def resource_ids(self, key: str) -> List[str]:
        """Split one ``aws_resources`` entry into trimmed identifiers."""
        raw = (self.aws_resources or {}).get(key) or ""
        if isinstance(raw, (list, tuple)):
            return [str(v).strip() for v in raw if str(v).strip()]
        return [part.strip() for part in str(raw).split(",") if part.strip()]

    def has_aws_resources(self) -> bool:
        return any(self.resource_ids(key) for key in AWS_RESOURCE_KEYS)


class Developer(Base):
    __tablename__ = "developers"
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="internal identifier for the developer",
    )
    team_id = Column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        comment="foreign key for teams.id",
    )
    name = Column(Text, nullable=False, comment="display name")
    email = Column(
        Text, nullable=False, unique=True, comment="primary email used for linkage"
    )
    active = Column(Boolean, nullable=False, default=True)
    external_ids = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="per-source account identifiers",
    )
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        comment="timestamp of when the developer was created",
    )

