"""Shared completion flow used by the webhook, client poll and background sweep."""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ProviderStatus, ReplicateProvider
from genledger.adapters.storage import S3Storage
from genledger.errors import ProviderQueryError
from genledger.models.job import Job, JobStatus
from genledger.services.job_store import JobStore
from genledger.services.materializer import ArtifactMaterializer
from genledger.services.reconciler import BillingReconciler, ReconcileResult
from genledger.services.resolver import CompletionResolver
from genledger.tracing import get_tracer, job_span

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

TRIGGER_WEBHOOK = "webhook"
TRIGGER_POLL = "poll"
TRIGGER_SWEEP = "sweep"


@dataclass
class CompletionResult:
    job: Job
    billing: Optional[ReconcileResult] = None
    provider_error: Optional[str] = None


class CompletionService:
    """
    Resolve, materialize and reconcile a job.

    Each step commits on its own, so a failure late in the chain never undoes
    an earlier step; whatever is left undone is picked up by the next trigger.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: ReplicateProvider,
        storage: S3Storage,
        http_client: httpx.AsyncClient,
    ):
        """Initialize completion service with its collaborators."""
        self.db = db
        self.jobs = JobStore(db)
        self.resolver = CompletionResolver(db, provider)
        self.materializer = ArtifactMaterializer(db, storage, http_client)
        self.reconciler = BillingReconciler(db)

    async def process(
        self,
        job_id: UUID,
        trigger: str,
        reported: Optional[ProviderStatus] = None,
    ) -> CompletionResult:
        """
        Run the completion steps for one job.

        Args:
            job_id: Job to process
            trigger: Calling trigger name, recorded as ``billed_via`` if this call charges
            reported: Provider status delivered with a webhook

        Returns:
            CompletionResult with the stored job and the billing outcome, if any
        """
        with job_span(tracer, "job.complete", job_id, trigger) as span:
            result = await self._process(job_id, trigger, reported)
            span.set_attribute("job.status", result.job.status.value)
            return result

    async def _process(self, job_id: UUID, trigger: str, reported: Optional[ProviderStatus]) -> CompletionResult:
        job = await self.jobs.get(job_id)

        try:
            job = await self.resolver.resolve(job, reported=reported)
            await self.db.commit()
        except ProviderQueryError as e:
            await self.db.rollback()
            return CompletionResult(job=await self.jobs.get(job_id), provider_error=str(e))

        if job.status != JobStatus.SUCCEEDED:
            return CompletionResult(job=job)

        if job.materialized_at is None:
            job = await self.materializer.materialize(job)
            await self.db.commit()

        billing = await self.reconciler.reconcile(job_id, trigger)
        job = await self.jobs.get(job_id)
        if billing.error:
            logger.warning("job_billing_deferred", job_id=str(job_id), trigger=trigger, error=billing.error)
        return CompletionResult(job=job, billing=billing)
