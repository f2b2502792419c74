"""Job submitter: affordability check, job creation and provider dispatch."""
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ReplicateProvider
from genledger.cache import SettingsCache
from genledger.config import settings
from genledger.errors import (
    CapabilityNotFound,
    GenerationDisabled,
    InsufficientFunds,
    ProviderError,
    SubmissionError,
)
from genledger.metrics import jobs_submitted_total
from genledger.models.job import Job, JobStatus
from genledger.services.job_store import JobStore
from genledger.services.ledger_service import LedgerService
from genledger.schemas.platform import PlatformSettings
from genledger.services.pricing import PricingService, quote_cost

logger = structlog.get_logger(__name__)


def webhook_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/webhooks/provider"


class JobSubmitter:
    """
    Service that creates jobs and dispatches them to the provider.

    The job row is committed in ``starting`` before dispatch so a fast webhook
    can find it, and again once ``provider_ref`` is recorded. Submission never
    waits for the job to finish.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: ReplicateProvider,
        settings_cache: SettingsCache[PlatformSettings],
    ):
        """Initialize submitter with database session, provider and settings cache."""
        self.db = db
        self.provider = provider
        self.settings_cache = settings_cache
        self.jobs = JobStore(db)
        self.ledger = LedgerService(db)
        self.pricing = PricingService(db)

    async def submit(
        self,
        owner_id: str,
        capability_slug: str,
        prompt: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Job:
        """
        Submit a generation job.

        Args:
            owner_id: Paying identity
            capability_slug: Requested capability
            prompt: User prompt
            params: Capability-specific parameters

        Returns:
            The job, in ``starting`` with ``provider_ref`` set

        Raises:
            GenerationDisabled: If generation is switched off
            CapabilityNotFound: If the capability is unknown or inactive
            ValueError: If the parameters cannot be priced
            InsufficientFunds: If the owner cannot afford the quote (no job is created)
            SubmissionError: If the provider rejects dispatch (the job is marked failed)
        """
        params = dict(params or {})

        # Settings first: the loader uses its own session
        platform = await self.settings_cache.get()
        if not platform.generation_enabled:
            raise GenerationDisabled(platform.maintenance_message)

        capability = await self.pricing.get_capability(capability_slug)
        if capability is None:
            raise CapabilityNotFound(capability_slug)

        cost_basis = quote_cost(capability, params)

        balance = await self.ledger.get_balance(owner_id)
        unlimited = balance is not None and balance.unlimited_access
        available = balance.balance_cents if balance is not None else 0
        if not unlimited and cost_basis > 0 and available < cost_basis:
            jobs_submitted_total.labels(capability=capability.slug, result="insufficient_funds").inc()
            logger.info(
                "job_submission_insufficient_funds",
                owner_id=owner_id,
                capability=capability.slug,
                required_cents=cost_basis,
                available_cents=available,
            )
            raise InsufficientFunds(required_cents=cost_basis, available_cents=available)

        provider_input = {"prompt": prompt, **(capability.default_parameters or {}), **params}

        job = await self.jobs.create(
            owner_id=owner_id,
            capability=capability.slug,
            cost_basis_cents=cost_basis,
            params=provider_input,
        )
        await self.db.commit()
        job_id = job.id

        try:
            provider_ref = await self.provider.submit(capability.provider_model, provider_input, webhook_url())
        except ProviderError as e:
            job = await self.jobs.get(job_id)
            await self.jobs.transition(job, JobStatus.FAILED, error=f"dispatch failed: {e}")
            await self.db.commit()
            jobs_submitted_total.labels(capability=capability.slug, result="rejected").inc()
            logger.error("job_dispatch_failed", job_id=str(job_id), capability=capability.slug, error=str(e))
            raise SubmissionError(str(e), job_id=job_id) from e

        job = await self.jobs.get(job_id)
        await self.jobs.set_provider_ref(job, provider_ref)
        await self.db.commit()

        jobs_submitted_total.labels(capability=capability.slug, result="dispatched").inc()
        logger.info(
            "job_submitted",
            job_id=str(job.id),
            owner_id=owner_id,
            capability=capability.slug,
            provider_ref=provider_ref,
            cost_basis_cents=cost_basis,
        )
        return job
