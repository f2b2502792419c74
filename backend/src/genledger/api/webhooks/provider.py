"""Inference provider webhook handler for job completion events."""
import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ReplicateProvider
from genledger.api.deps import get_completion_service, get_db
from genledger.config import settings
from genledger.models.job import Job
from genledger.services.completion import TRIGGER_WEBHOOK, CompletionService
from genledger.services.job_store import JobStore
from genledger.utils.signatures import parse_json_object, verify_webhook_signature

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/provider", tags=["webhooks"])

SIGNATURE_HEADERS = ("webhook-id", "webhook-timestamp", "webhook-signature")


def _verify(request: Request, body: bytes) -> None:
    """
    Authenticate the callback.

    Raises:
        HTTPException: 401 on a bad signature, 503 if unsigned callbacks are not allowed
    """
    secret = settings.provider_webhook_secret
    if not secret:
        if settings.is_production:
            logger.error("provider_webhook_secret_missing")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Webhook secret not configured")
        logger.warning("provider_webhook_unverified")
        return

    headers = {name: request.headers.get(name) for name in SIGNATURE_HEADERS}
    verified = verify_webhook_signature(secret, headers, body, tolerance_seconds=settings.webhook_tolerance_seconds)
    if not verified.ok:
        logger.warning("provider_webhook_rejected", reason=verified.reason, webhook_id=headers["webhook-id"])
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


async def _find_job(db: AsyncSession, provider_ref: str) -> Optional[Job]:
    """
    Look up the job for a prediction, retrying briefly.

    A fast provider can call back before the submitter has stored
    ``provider_ref``.
    """
    store = JobStore(db)
    attempts = max(1, settings.webhook_lookup_attempts)
    for attempt in range(attempts):
        job = await store.find_by_provider_ref(provider_ref)
        if job is not None:
            return job
        # End the read transaction so the next attempt sees new commits
        await db.rollback()
        if attempt < attempts - 1:
            logger.debug("provider_webhook_job_not_found_retrying", provider_ref=provider_ref, attempt=attempt + 1)
            await asyncio.sleep(settings.webhook_lookup_delay_seconds)
    return None


@router.post("")
async def handle_provider_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    completion: CompletionService = Depends(get_completion_service),
):
    """
    Handle a provider completion callback.

    Verifies the signature, finds the job by its provider reference and runs
    the same resolve/materialize/reconcile flow as polling, using the status
    carried in the payload. Unknown predictions are acknowledged and ignored
    so the provider stops redelivering them.

    Returns:
        Processing summary
    """
    body = await request.body()
    _verify(request, body)

    parsed = parse_json_object(body)
    if not parsed.ok:
        logger.warning("provider_webhook_invalid_body", reason=parsed.reason)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=parsed.reason)

    payload = parsed.value
    provider_ref = payload.get("id")
    if not provider_ref:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing prediction id")

    logger.info("provider_webhook_received", provider_ref=provider_ref, provider_status=payload.get("status"))

    job = await _find_job(db, provider_ref)
    if job is None:
        logger.info("provider_webhook_no_matching_job", provider_ref=provider_ref)
        return {"status": "ignored", "detail": "no matching job"}

    job_id = job.id
    await db.commit()

    reported = ReplicateProvider.parse_prediction(payload)
    result = await completion.process(job_id, TRIGGER_WEBHOOK, reported=reported)

    return {
        "status": "ok",
        "job_id": str(job_id),
        "job_status": result.job.status.value,
        "billing": result.billing.outcome.value if result.billing else None,
    }
