"""Completion resolver: maps provider state onto the job state machine."""
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ProviderStatus, ReplicateProvider
from genledger.errors import ProviderError, ProviderQueryError
from genledger.metrics import provider_query_errors_total
from genledger.models.job import Job, JobStatus
from genledger.services.job_store import JobStore

logger = structlog.get_logger(__name__)

NO_OUTPUT_ERROR = "no output produced"


class CompletionResolver:
    """
    Service that updates a job's status from the provider.

    Only ``status``, ``error``, ``completed_at`` and the staged
    ``raw_output_urls`` are written here; balances and transactions are never
    touched. Terminal jobs are returned as stored without asking the provider.
    """

    def __init__(self, db: AsyncSession, provider: ReplicateProvider):
        """Initialize resolver with database session and provider adapter."""
        self.db = db
        self.provider = provider
        self.jobs = JobStore(db)

    async def resolve(self, job: Job, reported: Optional[ProviderStatus] = None) -> Job:
        """
        Bring a job's status up to date.

        Args:
            job: Job to resolve
            reported: Status already delivered by the provider (webhook payload);
                when omitted the provider is queried

        Returns:
            The job as stored after the update

        Raises:
            ProviderQueryError: If the provider could not be queried; the job is unchanged
        """
        if job.is_terminal:
            return job

        if reported is None:
            if not job.provider_ref:
                # Dispatch has not been acknowledged yet
                return job
            try:
                reported = await self.provider.get_status(job.provider_ref)
            except ProviderError as e:
                provider_query_errors_total.inc()
                logger.warning(
                    "provider_query_failed",
                    job_id=str(job.id),
                    provider_ref=job.provider_ref,
                    error=str(e),
                )
                raise ProviderQueryError(str(e)) from e

        target = reported.status
        if target == JobStatus.SUCCEEDED and not reported.output_urls:
            logger.warning("provider_succeeded_without_output", job_id=str(job.id), provider_ref=job.provider_ref)
            await self.jobs.transition(job, JobStatus.FAILED, error=NO_OUTPUT_ERROR)
            return job

        await self.jobs.transition(
            job,
            target,
            error=reported.error,
            raw_output_urls=reported.output_urls,
        )
        return job
