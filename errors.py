"""
Domain error types shared by the metrics, alert and incident services.
"""

from typing import Any


class NotFoundError(LookupError):
    """Raised when a referenced team, developer, sprint, alert or incident does not exist."""

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or malformed."""

    pass


class InvalidStateError(ValueError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    pass
