from .base import CollectionResult, Ok, Outcome, Skipped  # noqa: F401
from .infra import InfraCollector  # noqa: F401
from .issues import IssueCollector  # noqa: F401
from .source_control import SourceControlCollector  # noqa: F401

__all__ = [
    "CollectionResult",
    "InfraCollector",
    "IssueCollector",
    "Ok",
    "Outcome",
    "Skipped",
    "SourceControlCollector",
]
