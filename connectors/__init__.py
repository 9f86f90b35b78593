"""
Source clients for Jira, GitLab and AWS.

Each connector is a thin synchronous wrapper around one external API that
returns source-native records and raises ConnectorException subclasses
when a request cannot be completed.
"""

from .aws import CloudWatchConnector, CostExplorerConnector, RESOURCE_KINDS
from .exceptions import (APIException, AuthenticationException,
                         ConnectorException, NotFoundException,
                         PaginationException, RateLimitException)
from .gitlab import GitLabConnector
from .jira import JiraConnector
from .models import CostData, MetricDatapoint, ResourceKind

__all__ = [
    # Connectors
    "JiraConnector",
    "GitLabConnector",
    "CloudWatchConnector",
    "CostExplorerConnector",
    "RESOURCE_KINDS",
    # Models
    "CostData",
    "MetricDatapoint",
    "ResourceKind",
    # Exceptions
    "ConnectorException",
    "RateLimitException",
    "AuthenticationException",
    "NotFoundException",
    "PaginationException",
    "APIException",
]
