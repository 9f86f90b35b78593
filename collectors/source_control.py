import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence

from collectors.base import CollectionResult, Ok, Outcome, Skipped, run_sync
from connectors import ConnectorException, GitLabConnector
from models.git import DeploymentStatus
from providers.gitlab.normalize import (gitlab_commit_to_model,
                                        gitlab_deployment_to_model,
                                        gitlab_merge_request_to_model)
from storage import SQLAlchemyStore

logger = logging.getLogger(__name__)


class SourceControlCollector:
    """Pull GitLab commits, merge requests and deployments into the store."""

    def __init__(
        self,
        connector: GitLabConnector,
        store: SQLAlchemyStore,
        project_ids: Sequence[str],
    ) -> None:
        self.connector = connector
        self.store = store
        self.project_ids = [str(pid) for pid in project_ids]

    async def collect_commits(self, since: datetime) -> CollectionResult:
        if not self.project_ids:
            logger.info("No GitLab projects configured; skipping commit collection")
            return CollectionResult()

        result = CollectionResult()
        for project_id in self.project_ids:
            try:
                summaries = await run_sync(
                    self.connector.get_commits, project_id, since
                )
            except ConnectorException as e:
                logger.error("Commit fetch failed for project %s: %s", project_id, e)
                result += CollectionResult.failed()
                continue

            outcomes: List[Outcome] = []
            for summary in summaries:
                sha = summary.get("id")
                if sha and await self.store.has_commit(sha):
                    continue
                outcomes.append(await self._store_commit(project_id, summary))
            project_result = CollectionResult.from_outcomes(outcomes)
            logger.info(
                "Project %s: stored %d new commits (%d skipped)",
                project_id,
                project_result.count,
                project_result.error_count,
            )
            result += project_result
        return result

    async def _store_commit(self, project_id: str, summary: Dict[str, Any]) -> Outcome:
        sha = summary.get("id")
        payload = summary
        if sha:
            try:
                payload = await run_sync(
                    self.connector.get_commit_detail, project_id, sha
                )
            except ConnectorException as e:
                logger.warning(
                    "Commit detail unavailable for %s, using summary: %s", sha, e
                )
        try:
            commit = gitlab_commit_to_model(payload, project_id)
            developer = await self.store.find_developer_by_email(commit.author_email)
            if developer is not None:
                commit.developer_id = developer.id
            await self.store.insert_commit(commit)
            return Ok(commit.sha)
        except Exception as e:
            logger.warning("Skipping commit %s in project %s: %s", sha, project_id, e)
            return Skipped(sha, str(e))

    async def collect_merge_requests(self, since: datetime) -> CollectionResult:
        if not self.project_ids:
            logger.info("No GitLab projects configured; skipping merge request collection")
            return CollectionResult()

        result = CollectionResult()
        for project_id in self.project_ids:
            try:
                merged = await run_sync(
                    self.connector.get_merged_merge_requests, project_id, since
                )
                opened = await run_sync(
                    self.connector.get_open_merge_requests, project_id
                )
            except ConnectorException as e:
                logger.error(
                    "Merge request fetch failed for project %s: %s", project_id, e
                )
                result += CollectionResult.failed()
                continue

            project_result = await self._upsert_merge_requests(
                project_id, [*merged, *opened]
            )
            logger.info(
                "Project %s: processed %d merge requests (%d skipped)",
                project_id,
                project_result.count,
                project_result.error_count,
            )
            result += project_result
        return result

    async def _upsert_merge_requests(
        self, project_id: str, payloads: Iterable[Dict[str, Any]]
    ) -> CollectionResult:
        outcomes: List[Outcome] = []
        for payload in payloads:
            iid = payload.get("iid")
            try:
                mapped = gitlab_merge_request_to_model(payload, project_id)
                existing = await self.store.get_merge_request(
                    mapped.external_id, project_id
                )
                if existing is not None:
                    existing.status = mapped.status
                    existing.merged_at = mapped.merged_at
                    existing.closed_at = mapped.closed_at
                    existing.comments_count = mapped.comments_count
                    if mapped.merge_commit_sha:
                        existing.merge_commit_sha = mapped.merge_commit_sha
                    await self.store.save(existing)
                else:
                    developer = await self.store.find_developer_by_email(
                        mapped.author_email
                    )
                    if developer is not None:
                        mapped.developer_id = developer.id
                    await self.store.insert_merge_request(mapped)
                outcomes.append(Ok(mapped.external_id))
            except Exception as e:
                logger.warning(
                    "Skipping merge request !%s in project %s: %s", iid, project_id, e
                )
                outcomes.append(Skipped(str(iid), str(e)))
        return CollectionResult.from_outcomes(outcomes)

    async def collect_deployments(self, since: datetime) -> CollectionResult:
        """
        Store deployments and stamp ``deployed_at`` on the merge requests they shipped.

        Known deployments only have their status refreshed; ``caused_incident``
        is owned by incident handling and never overwritten here.
        """
        if not self.project_ids:
            logger.info("No GitLab projects configured; skipping deployment collection")
            return CollectionResult()

        result = CollectionResult()
        for project_id in self.project_ids:
            try:
                payloads = await run_sync(
                    self.connector.get_deployments, project_id, since
                )
            except ConnectorException as e:
                logger.error(
                    "Deployment fetch failed for project %s: %s", project_id, e
                )
                result += CollectionResult.failed()
                continue

            team = await self.store.find_team_by_gitlab_project(project_id)
            outcomes: List[Outcome] = []
            for payload in payloads:
                deployment_id = payload.get("id")
                try:
                    mapped = gitlab_deployment_to_model(payload, project_id)
                    existing = await self.store.get_deployment(
                        mapped.external_id, project_id
                    )
                    if existing is not None:
                        existing.status = mapped.status
                        existing.deployed_at = mapped.deployed_at
                        await self.store.save(existing)
                    else:
                        mapped.team_id = team.id if team is not None else None
                        await self.store.save(mapped)
                    if mapped.status == DeploymentStatus.SUCCESS and mapped.sha:
                        linked = await self.store.mark_merge_requests_deployed(
                            project_id, mapped.sha, mapped.deployed_at
                        )
                        if linked:
                            logger.debug(
                                "Deployment %s shipped %d merge requests",
                                deployment_id,
                                linked,
                            )
                    outcomes.append(Ok(mapped.external_id))
                except Exception as e:
                    logger.warning(
                        "Skipping deployment %s in project %s: %s",
                        deployment_id,
                        project_id,
                        e,
                    )
                    outcomes.append(Skipped(str(deployment_id), str(e)))
            result += CollectionResult.from_outcomes(outcomes)
        return result
