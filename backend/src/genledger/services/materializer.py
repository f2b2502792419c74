"""Artifact materializer: copies ephemeral provider outputs into durable storage."""
from dataclasses import dataclass

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.storage import S3Storage, classify_content_type, extension_for
from genledger.errors import MaterializationPartialFailure
from genledger.metrics import artifacts_materialized_total
from genledger.models.job import Job, JobStatus
from genledger.services.job_store import JobStore

logger = structlog.get_logger(__name__)


@dataclass
class ArtifactRepairResult:
    repaired: int = 0
    unrecoverable: int = 0
    still_failing: int = 0


class ArtifactMaterializer:
    """
    Service that materializes a succeeded job's outputs once.

    A slot that cannot be fetched or stored keeps its ephemeral URL as a
    placeholder; the job still counts that slot as an output.
    """

    def __init__(self, db: AsyncSession, storage: S3Storage, http_client: httpx.AsyncClient):
        """Initialize materializer with database session, storage and HTTP client."""
        self.db = db
        self.storage = storage
        self.http = http_client
        self.jobs = JobStore(db)

    @staticmethod
    def object_path(job: Job, index: int, extension: str) -> str:
        """Owner-scoped key, stable per job slot so concurrent copies overwrite each other."""
        owner = job.owner_id or "anonymous"
        return f"{owner}/{job.id}-{index}.{extension}"

    async def _store_one(self, job: Job, index: int, url: str) -> str:
        """
        Copy one artifact.

        Raises:
            MaterializationPartialFailure: If fetching or storing fails
        """
        try:
            response = await self.http.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MaterializationPartialFailure(index, url, f"fetch failed: {e}") from e

        content_type = classify_content_type(response.headers.get("content-type"), url)
        path = self.object_path(job, index, extension_for(content_type, url))
        try:
            return await self.storage.put(path, response.content, content_type)
        except Exception as e:
            raise MaterializationPartialFailure(index, url, f"store failed: {e}") from e

    async def _copy_all(self, job: Job, urls: list[str]) -> tuple[list[str], int]:
        refs: list[str] = []
        placeholders = 0
        for index, url in enumerate(urls):
            try:
                refs.append(await self._store_one(job, index, url))
                artifacts_materialized_total.labels(result="stored").inc()
            except MaterializationPartialFailure as e:
                refs.append(url)
                placeholders += 1
                artifacts_materialized_total.labels(result="placeholder").inc()
                logger.warning(
                    "artifact_materialization_failed",
                    job_id=str(job.id),
                    index=e.index,
                    url=e.url,
                    reason=e.reason,
                )
        return refs, placeholders

    async def materialize(self, job: Job) -> Job:
        """
        Populate ``output_refs`` for a succeeded job.

        No-op when the job is not succeeded or already materialized.

        Args:
            job: Succeeded job with staged ``raw_output_urls``

        Returns:
            The job as stored afterwards
        """
        if job.status != JobStatus.SUCCEEDED or job.materialized_at is not None or job.output_refs:
            return job

        urls = list(job.raw_output_urls or [])
        refs, placeholders = await self._copy_all(job, urls)

        written = await self.jobs.write_output_refs(job, refs, placeholders)
        if written:
            logger.info(
                "job_outputs_materialized",
                job_id=str(job.id),
                outputs=len(refs),
                placeholders=placeholders,
            )
        else:
            logger.info("job_outputs_already_materialized", job_id=str(job.id))
        return job

    async def repair(self, job: Job) -> ArtifactRepairResult:
        """
        Retry the slots of an already materialized job that are not durable.

        A slot needs repair when it still holds a placeholder, or when its durable
        object has gone missing from storage. The source is the provider URL for
        that slot; if it no longer answers a HEAD request the slot is counted as
        unrecoverable and left as is.
        """
        result = ArtifactRepairResult()
        if job.materialized_at is None:
            return result

        expected_stamp = job.materialized_at
        raw_urls = list(job.raw_output_urls or [])
        refs = list(job.output_refs or [])
        changed = False

        for index, ref in enumerate(refs):
            if self.storage.is_durable(ref):
                if await self.storage.head(ref):
                    continue
                logger.warning("artifact_missing_from_storage", job_id=str(job.id), index=index, url=ref)
            source = raw_urls[index] if index < len(raw_urls) else ref
            if not await self._is_reachable(source):
                result.unrecoverable += 1
                artifacts_materialized_total.labels(result="unrecoverable").inc()
                continue
            try:
                refs[index] = await self._store_one(job, index, source)
            except MaterializationPartialFailure as e:
                result.still_failing += 1
                logger.warning("artifact_repair_failed", job_id=str(job.id), index=index, reason=e.reason)
                continue
            result.repaired += 1
            changed = True
            artifacts_materialized_total.labels(result="repaired").inc()

        if changed:
            placeholders = sum(1 for ref in refs if not self.storage.is_durable(ref))
            if not await self.jobs.replace_output_refs(job, refs, placeholders, expected_stamp):
                logger.info("artifact_repair_superseded", job_id=str(job.id))
                return ArtifactRepairResult()
        return result

    async def _is_reachable(self, url: str) -> bool:
        try:
            response = await self.http.head(url, follow_redirects=True)
        except httpx.HTTPError:
            return False
        return response.status_code < 400

    async def repair_batch(self, limit: int) -> dict[str, int]:
        """
        Repair artifacts for up to ``limit`` jobs, committing per job.

        Returns:
            Dict with counts of checked jobs and repaired/unrecoverable slots
        """
        job_ids = [job.id for job in await self.jobs.list_with_placeholders(limit)]
        await self.db.commit()

        totals = ArtifactRepairResult()
        errors = 0
        for job_id in job_ids:
            try:
                job = await self.jobs.get(job_id)
                await self.db.commit()
                outcome = await self.repair(job)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                errors += 1
                logger.exception("artifact_repair_job_failed", job_id=str(job_id), exc_info=e)
                continue
            totals.repaired += outcome.repaired
            totals.unrecoverable += outcome.unrecoverable
            totals.still_failing += outcome.still_failing

        logger.info(
            "artifact_repair_completed",
            jobs_checked=len(job_ids),
            repaired=totals.repaired,
            unrecoverable=totals.unrecoverable,
            still_failing=totals.still_failing,
            errors=errors,
        )
        return {
            "jobs_checked": len(job_ids),
            "repaired": totals.repaired,
            "unrecoverable": totals.unrecoverable,
            "still_failing": totals.still_failing,
            "errors": errors,
        }
