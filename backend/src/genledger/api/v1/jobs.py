"""Generation job endpoints: submission and client polling."""
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ReplicateProvider
from genledger.api.deps import get_completion_service, get_db, get_owner_id, get_provider, get_settings_cache
from genledger.cache import SettingsCache
from genledger.errors import CapabilityNotFound, GenerationDisabled, InsufficientFunds, JobNotFound, SubmissionError
from genledger.models.job import BillingState, JobStatus
from genledger.schemas.error import ErrorCode, REMEDIATION_HINTS
from genledger.schemas.job import Job, JobCreate, JobList
from genledger.schemas.platform import PlatformSettings
from genledger.services.completion import TRIGGER_POLL, CompletionService
from genledger.services.job_store import JobStore
from genledger.services.submitter import JobSubmitter

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("", response_model=Job, status_code=status.HTTP_201_CREATED)
async def submit_job(
    job_data: JobCreate,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
    provider: ReplicateProvider = Depends(get_provider),
    settings_cache: SettingsCache[PlatformSettings] = Depends(get_settings_cache),
) -> Job:
    """
    Submit a generation job.

    Returns as soon as the provider has accepted the job; poll
    ``GET /v1/jobs/{id}`` (or rely on the provider webhook) for completion.

    - **402**: balance below the quoted cost; no job is created
    - **502**: provider rejected dispatch; the job exists and is marked failed
    """
    submitter = JobSubmitter(db, provider, settings_cache)
    try:
        return await submitter.submit(owner_id, job_data.capability, job_data.prompt, job_data.params)
    except InsufficientFunds as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "error": "Insufficient balance",
                "code": ErrorCode.INSUFFICIENT_BALANCE,
                "required": e.required_cents,
                "available": e.available_cents,
                "remediation": REMEDIATION_HINTS[ErrorCode.INSUFFICIENT_BALANCE],
            },
        ) from e
    except CapabilityNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except GenerationDisabled as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "Generation disabled",
                "code": ErrorCode.GENERATION_DISABLED,
                "message": str(e),
                "remediation": REMEDIATION_HINTS[ErrorCode.GENERATION_DISABLED],
            },
        ) from e
    except SubmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "Provider rejected the job",
                "code": ErrorCode.PROVIDER_ERROR,
                "job_id": str(e.job_id) if e.job_id else None,
                "message": str(e),
            },
        ) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.get("/{job_id}", response_model=Job)
async def poll_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
    completion: CompletionService = Depends(get_completion_service),
) -> Job:
    """
    Get a job, advancing it if it is still in flight.

    Polling a job in ``starting``/``processing`` asks the provider for its
    status; a succeeded job that is not yet materialized or billed is finished
    here as well. Provider failures are not surfaced: the job is returned as
    stored and the next poll, webhook or sweep retries.
    """
    try:
        job = await JobStore(db).get(job_id, owner_id=owner_id)
    except JobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    needs_work = job.status in (JobStatus.STARTING, JobStatus.PROCESSING) or (
        job.status == JobStatus.SUCCEEDED and job.billing_state == BillingState.PENDING
    )
    if not needs_work:
        return job

    await db.commit()
    result = await completion.process(job.id, TRIGGER_POLL)
    if result.provider_error:
        logger.info("job_poll_provider_unavailable", job_id=str(job_id), error=result.provider_error)
    return result.job


@router.get("", response_model=JobList)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
) -> JobList:
    """List the caller's most recent jobs without advancing them."""
    jobs = await JobStore(db).list_for_owner(owner_id, limit=limit)
    return JobList(items=[Job.model_validate(job) for job in jobs], total=len(jobs))
