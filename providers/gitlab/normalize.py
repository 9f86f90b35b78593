from __future__ import annotations

from typing import Any, Dict, Optional

from models.git import (Commit, Deployment, DeploymentStatus, MergeRequest,
                        MergeRequestStatus)
from utils import _parse_datetime_value

_DEPLOYMENT_STATUS = {
    "success": DeploymentStatus.SUCCESS,
    "failed": DeploymentStatus.FAILED,
    "canceled": DeploymentStatus.CANCELLED,
    "cancelled": DeploymentStatus.CANCELLED,
    "running": DeploymentStatus.RUNNING,
    "created": DeploymentStatus.PENDING,
    "blocked": DeploymentStatus.PENDING,
}


def map_merge_request_status(state: Optional[str]) -> MergeRequestStatus:
    normalized = (state or "").lower()
    if normalized == "merged":
        return MergeRequestStatus.MERGED
    if normalized == "closed":
        return MergeRequestStatus.CLOSED
    if normalized == "locked":
        return MergeRequestStatus.LOCKED
    return MergeRequestStatus.OPEN


def map_deployment_status(status: Optional[str]) -> DeploymentStatus:
    return _DEPLOYMENT_STATUS.get((status or "").lower(), DeploymentStatus.PENDING)


def _email(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if value else None


def gitlab_commit_to_model(payload: Dict[str, Any], project_id: str) -> Commit:
    """
    Map a GitLab commit (summary or detail) to an unsaved Commit.

    Summaries carry no ``stats`` block; line counts then default to 0.

    :raises ValueError: If the payload has no sha or commit date.
    """
    sha = payload.get("id")
    if not sha:
        raise ValueError("GitLab commit payload has no id")
    committed_at = _parse_datetime_value(
        payload.get("committed_date")
        or payload.get("authored_date")
        or payload.get("created_at")
    )
    if committed_at is None:
        raise ValueError(f"GitLab commit {sha} has no commit date")

    stats = payload.get("stats") or {}
    return Commit(
        sha=sha,
        message=payload.get("message") or payload.get("title"),
        author_name=payload.get("author_name"),
        author_email=_email(payload.get("author_email")),
        additions=int(stats.get("additions") or 0),
        deletions=int(stats.get("deletions") or 0),
        project_id=str(project_id),
        committed_at=committed_at,
    )


def merge_request_author_email(payload: Dict[str, Any]) -> Optional[str]:
    author = payload.get("author") or {}
    return _email(author.get("email") or author.get("public_email"))


def gitlab_merge_request_to_model(
    payload: Dict[str, Any], project_id: str
) -> MergeRequest:
    """
    Map a GitLab merge request to an unsaved MergeRequest.

    :raises ValueError: If the payload has no iid.
    """
    iid = payload.get("iid")
    if iid is None:
        raise ValueError("GitLab merge request payload has no iid")
    return MergeRequest(
        external_id=str(iid),
        project_id=str(project_id),
        title=payload.get("title"),
        description=payload.get("description"),
        source_branch=payload.get("source_branch"),
        target_branch=payload.get("target_branch"),
        status=map_merge_request_status(payload.get("state")),
        comments_count=int(payload.get("user_notes_count") or 0),
        author_email=merge_request_author_email(payload),
        merge_commit_sha=payload.get("merge_commit_sha")
        or payload.get("squash_commit_sha"),
        created_at=_parse_datetime_value(payload.get("created_at")),
        merged_at=_parse_datetime_value(payload.get("merged_at")),
        closed_at=_parse_datetime_value(payload.get("closed_at")),
    )


def gitlab_deployment_to_model(payload: Dict[str, Any], project_id: str) -> Deployment:
    """
    Map a GitLab deployment to an unsaved Deployment.

    The deploy time is the job finish time when GitLab reports it, falling
    back to the deployment's own timestamps.

    :raises ValueError: If the payload has no id or timestamp.
    """
    if payload.get("id") is None:
        raise ValueError("GitLab deployment payload has no id")
    deployable = payload.get("deployable") or {}
    deployed_at = _parse_datetime_value(
        deployable.get("finished_at")
        or payload.get("updated_at")
        or payload.get("created_at")
    )
    if deployed_at is None:
        raise ValueError(f"GitLab deployment {payload['id']} has no timestamp")
    environment = payload.get("environment") or {}
    return Deployment(
        external_id=str(payload["id"]),
        project_id=str(project_id),
        environment=environment.get("name") if isinstance(environment, dict) else environment,
        version=payload.get("ref"),
        sha=payload.get("sha"),
        status=map_deployment_status(payload.get("status")),
        caused_incident=False,
        deployed_at=deployed_at,
    )
