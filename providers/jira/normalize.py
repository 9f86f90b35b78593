from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from models.work_items import (Sprint, SprintStatus, Ticket, TicketSource,
                               TicketStatus)
from utils import _parse_date_value, _parse_datetime_value

STORY_POINTS_FIELD = "customfield_10016"
SPRINT_FIELD = "customfield_10020"

_LEGACY_SPRINT_ID = re.compile(r"\bid=(\d+)")


def map_ticket_status(status: Optional[Dict[str, Any]]) -> TicketStatus:
    """
    Map a Jira status object to a normalized TicketStatus.

    The status category decides the coarse bucket; inside the
    "indeterminate" category the status name refines it.
    """
    if not status or not status.get("statusCategory"):
        return TicketStatus.BACKLOG

    category = (status["statusCategory"].get("key") or "").lower()
    name = (status.get("name") or "").lower()

    if category == "done":
        return TicketStatus.DONE
    if category == "indeterminate":
        if "review" in name:
            return TicketStatus.IN_REVIEW
        if "testing" in name or "qa" in name:
            return TicketStatus.TESTING
        if "blocked" in name:
            return TicketStatus.BLOCKED
        return TicketStatus.IN_PROGRESS
    if "todo" in name or "to do" in name:
        return TicketStatus.TODO
    return TicketStatus.BACKLOG


def map_sprint_status(state: Optional[str]) -> SprintStatus:
    normalized = (state or "").lower()
    if normalized == "active":
        return SprintStatus.ACTIVE
    if normalized == "closed":
        return SprintStatus.COMPLETED
    return SprintStatus.PLANNED


def _adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node to plain text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(_adf_to_text(child) for child in node)
    if not isinstance(node, dict):
        return str(node)
    if node.get("type") == "text":
        return node.get("text") or ""
    text = _adf_to_text(node.get("content"))
    if node.get("type") in {"paragraph", "heading", "listItem", "codeBlock"}:
        return text + "\n"
    return text


def _story_points(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return int(float(raw))


def assignee_email(issue: Dict[str, Any]) -> Optional[str]:
    assignee = (issue.get("fields") or {}).get("assignee") or {}
    email = assignee.get("emailAddress")
    return email.strip().lower() if email else None


def sprint_external_id(issue: Dict[str, Any]) -> Optional[str]:
    """
    Return the id of the most recent sprint the issue belongs to.

    Jira Cloud returns a list of sprint objects; older servers return
    serialized strings such as ``com.atlassian.greenhopper...[id=12,...]``.
    """
    sprints = (issue.get("fields") or {}).get(SPRINT_FIELD)
    if not sprints:
        return None
    latest = sprints[-1] if isinstance(sprints, list) else sprints
    if isinstance(latest, dict):
        sprint_id = latest.get("id")
        return str(sprint_id) if sprint_id is not None else None
    match = _LEGACY_SPRINT_ID.search(str(latest))
    return match.group(1) if match else None


def jira_issue_to_ticket(issue: Dict[str, Any]) -> Ticket:
    """
    Map a Jira issue payload to an unsaved Ticket.

    :raises ValueError: If the payload has no key or a malformed field.
    """
    key = issue.get("key")
    if not key:
        raise ValueError("Jira issue payload has no key")
    fields = issue.get("fields") or {}

    labels: List[str] = sorted({str(label) for label in fields.get("labels") or []})
    description = fields.get("description")
    if not isinstance(description, str):
        description = _adf_to_text(description).strip() or None

    return Ticket(
        external_id=key,
        source=TicketSource.JIRA,
        title=fields.get("summary"),
        description=description,
        status=map_ticket_status(fields.get("status")),
        priority=(fields.get("priority") or {}).get("name"),
        ticket_type=(fields.get("issuetype") or {}).get("name"),
        story_points=_story_points(fields.get(STORY_POINTS_FIELD)),
        labels=labels,
        created_at=_parse_datetime_value(fields.get("created")),
        external_updated_at=_parse_datetime_value(fields.get("updated")),
    )


def jira_sprint_to_model(payload: Dict[str, Any]) -> Sprint:
    if payload.get("id") is None:
        raise ValueError("Jira sprint payload has no id")
    return Sprint(
        external_id=str(payload["id"]),
        name=payload.get("name"),
        goal=payload.get("goal") or None,
        start_date=_parse_date_value(payload.get("startDate")),
        end_date=_parse_date_value(payload.get("endDate")),
        status=map_sprint_status(payload.get("state")),
    )
