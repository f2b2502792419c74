"""
Background sweeps for jobs whose completion triggers never fired.

Runs on a fixed interval:
- resolve jobs stuck in starting/processing past the grace period
- finish succeeded jobs whose materialization or billing is still pending
- replay unapplied ledger entries and audit balance drift
- retry placeholder artifacts

Dispatched jobs are never forced into a terminal state here; the provider's own
answer decides. Only jobs whose dispatch was never acknowledged are failed
after a timeout. Each run handles a bounded batch and commits per job.

Usage (with ARQ):
    arq genledger.workers.sweep.WorkerSettings
"""
from datetime import datetime, timedelta
from typing import Any

import httpx
import structlog
from arq import cron
from arq.connections import RedisSettings

from genledger.adapters.provider import ReplicateProvider
from genledger.adapters.storage import S3Storage
from genledger.config import settings
from genledger.database import AsyncSessionLocal
from genledger.metrics import sweep_jobs_total
from genledger.middleware.logging import setup_logging
from genledger.services.completion import TRIGGER_SWEEP, CompletionService
from genledger.services.job_store import JobStore
from genledger.services.materializer import ArtifactMaterializer
from genledger.services.reconciler import ReconcileOutcome
from genledger.services.repair_service import LedgerRepairService

logger = structlog.get_logger(__name__)


def _collaborators(ctx: dict[str, Any]):
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    http_client = ctx["http_client"]
    provider = ctx.get("provider") or ReplicateProvider(client=http_client)
    storage = ctx["storage"]
    return session_factory, provider, storage, http_client


async def _process_batch(ctx: dict[str, Any], sweep: str, select_ids) -> dict[str, int]:
    session_factory, provider, storage, http_client = _collaborators(ctx)
    counts = {"checked": 0, "advanced": 0, "billed": 0, "provider_errors": 0, "errors": 0}

    async with session_factory() as db:
        job_ids = await select_ids(JobStore(db))
        await db.commit()

        service = CompletionService(db, provider, storage, http_client)
        for job_id in job_ids:
            counts["checked"] += 1
            try:
                before = await JobStore(db).get(job_id)
                status_before = before.status
                await db.commit()

                result = await service.process(job_id, TRIGGER_SWEEP)
            except Exception as e:
                await db.rollback()
                counts["errors"] += 1
                sweep_jobs_total.labels(sweep=sweep, result="error").inc()
                logger.exception("sweep_job_failed", sweep=sweep, job_id=str(job_id), exc_info=e)
                continue

            if result.provider_error:
                counts["provider_errors"] += 1
                sweep_jobs_total.labels(sweep=sweep, result="provider_error").inc()
                continue
            if result.job.status != status_before:
                counts["advanced"] += 1
            if result.billing and result.billing.outcome == ReconcileOutcome.CHARGED:
                counts["billed"] += 1
            sweep_jobs_total.labels(sweep=sweep, result="ok").inc()

    logger.info("sweep_completed", sweep=sweep, **counts)
    return counts


async def sweep_stale_jobs(ctx: dict[str, Any]) -> dict[str, int]:
    """
    Resolve dispatched jobs still in starting/processing after the grace period.

    Jobs that never received a provider reference cannot be resolved; once
    older than ``dispatch_timeout_seconds`` they are failed instead.

    Returns:
        Dict with counts of checked, advanced, billed and undispatched jobs
    """
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    dispatch_cutoff = datetime.utcnow() - timedelta(seconds=settings.dispatch_timeout_seconds)
    async with session_factory() as db:
        undispatched = await JobStore(db).fail_undispatched(dispatch_cutoff, settings.sweep_batch_size)
        await db.commit()
    if undispatched:
        sweep_jobs_total.labels(sweep="stale_jobs", result="undispatched").inc(len(undispatched))

    cutoff = datetime.utcnow() - timedelta(seconds=settings.sweep_grace_period_seconds)

    async def select_ids(store: JobStore):
        return [job.id for job in await store.list_stale_active(cutoff, settings.sweep_batch_size)]

    counts = await _process_batch(ctx, "stale_jobs", select_ids)
    counts["undispatched_failed"] = len(undispatched)
    return counts


async def sweep_unbilled_jobs(ctx: dict[str, Any]) -> dict[str, int]:
    """
    Finish succeeded jobs whose billing is still pending.

    Returns:
        Dict with counts of checked and billed jobs
    """
    cutoff = datetime.utcnow() - timedelta(seconds=settings.sweep_grace_period_seconds)

    async def select_ids(store: JobStore):
        return [job.id for job in await store.list_unbilled_succeeded(cutoff, settings.sweep_batch_size)]

    return await _process_batch(ctx, "unbilled_jobs", select_ids)


async def repair_ledger(ctx: dict[str, Any]) -> dict[str, int]:
    """Replay unapplied transactions, sync billing flags and audit drift."""
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    async with session_factory() as db:
        summary = await LedgerRepairService(db).run(settings.billing_repair_batch_size)
    return summary.as_dict()


async def repair_artifacts(ctx: dict[str, Any]) -> dict[str, int]:
    """Retry placeholder artifacts of succeeded jobs."""
    session_factory, _, storage, http_client = _collaborators(ctx)
    async with session_factory() as db:
        return await ArtifactMaterializer(db, storage, http_client).repair_batch(settings.artifact_repair_batch_size)


async def startup(ctx: dict[str, Any]) -> None:
    setup_logging()
    ctx["http_client"] = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_seconds, read=settings.artifact_fetch_timeout_seconds),
    )
    ctx["storage"] = S3Storage()
    logger.info("sweep_worker_started")


async def shutdown(ctx: dict[str, Any]) -> None:
    await ctx["http_client"].aclose()
    logger.info("sweep_worker_stopped")


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, minutes)))


class WorkerSettings:
    """
    ARQ worker settings for the completion sweeps.

    Usage:
        arq genledger.workers.sweep.WorkerSettings
    """

    functions = [sweep_stale_jobs, sweep_unbilled_jobs, repair_ledger, repair_artifacts]

    cron_jobs = [
        cron(sweep_stale_jobs, minute=_every(settings.sweep_interval_minutes), run_at_startup=True),
        cron(sweep_unbilled_jobs, minute=_every(settings.sweep_interval_minutes)),
        cron(repair_ledger, minute={7, 37}),
        cron(repair_artifacts, minute={15}),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))

    max_jobs = 10
    job_timeout = 600


if __name__ == "__main__":
    """
    Run one stale-job sweep manually.

    Usage:
        python -m genledger.workers.sweep
    """
    import asyncio

    async def main():
        ctx: dict[str, Any] = {}
        await startup(ctx)
        try:
            print(await sweep_stale_jobs(ctx))
        finally:
            await shutdown(ctx)

    asyncio.run(main())
