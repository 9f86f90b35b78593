from .alerts import Alert, AlertSeverity, AlertType  # noqa: F401
from .git import (Base, Commit, Deployment, DeploymentStatus,  # noqa: F401
                  MergeRequest, MergeRequestStatus)
from .incidents import Incident, IncidentSeverity, IncidentStatus  # noqa: F401
from .metrics import Metric, MetricType  # noqa: F401
from .teams import Developer, Team  # noqa: F401
from .work_items import (Sprint, SprintStatus, Ticket,  # noqa: F401
                         TicketSource, TicketStatus)

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertType",
    "Base",
    "Commit",
    "Deployment",
    "DeploymentStatus",
    "Developer",
    "Incident",
    "IncidentSeverity",
    "IncidentStatus",
    "MergeRequest",
    "MergeRequestStatus",
    "Metric",
    "MetricType",
    "Sprint",
    "SprintStatus",
    "Team",
    "Ticket",
    "TicketSource",
    "TicketStatus",
]
