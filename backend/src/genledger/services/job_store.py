"""Job store: persistence and the job status state machine.

Status changes are compare-and-set updates guarded by the statuses a change is
allowed from, so redundant or concurrent resolvers cannot regress a job or
overwrite a terminal state.
"""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.errors import InvalidTransition, JobNotFound
from genledger.metrics import job_transitions_total
from genledger.models.job import ACTIVE_STATUSES, BillingState, Job, JobStatus

logger = structlog.get_logger(__name__)

DISPATCH_NOT_ACKNOWLEDGED = "dispatch not acknowledged by provider"

# target status -> statuses it may be entered from
ALLOWED_SOURCES: dict[JobStatus, tuple[JobStatus, ...]] = {
    JobStatus.STARTING: (),
    JobStatus.PROCESSING: (JobStatus.STARTING,),
    JobStatus.SUCCEEDED: ACTIVE_STATUSES,
    JobStatus.FAILED: ACTIVE_STATUSES,
    JobStatus.CANCELED: ACTIVE_STATUSES,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Whether ``current -> target`` is a real (non no-op) transition."""
    return current in ALLOWED_SOURCES[target]


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
    """
    Validate a transition.

    ``starting -> starting`` and ``processing -> processing`` are accepted as
    no-ops. Anything out of a terminal state is rejected.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    if current == target and current in ACTIVE_STATUSES:
        return
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot move job from {current.value} to {target.value}")


class JobStore:
    """Service for reading and conditionally updating job rows."""

    def __init__(self, db: AsyncSession):
        """Initialize job store with database session."""
        self.db = db

    async def create(
        self,
        owner_id: str,
        capability: str,
        cost_basis_cents: int,
        params: Optional[dict[str, Any]] = None,
    ) -> Job:
        """Insert a new job in ``starting``."""
        job = Job(
            owner_id=owner_id,
            capability=capability,
            cost_basis_cents=cost_basis_cents,
            params=params or {},
            status=JobStatus.STARTING,
            billing_state=BillingState.PENDING,
            raw_output_urls=[],
            output_refs=[],
        )
        self.db.add(job)
        await self.db.flush()
        await self.db.refresh(job)
        return job

    async def get(self, job_id: UUID, owner_id: Optional[str] = None) -> Job:
        """
        Load a job, bypassing any stale copy held by the session.

        Args:
            job_id: Job UUID
            owner_id: When given, the job must belong to this owner

        Returns:
            Job

        Raises:
            JobNotFound: If the job does not exist or belongs to someone else
        """
        query = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        if owner_id is not None:
            query = query.where(Job.owner_id == owner_id)
        result = await self.db.execute(query)
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    async def find_by_provider_ref(self, provider_ref: str) -> Optional[Job]:
        result = await self.db.execute(
            select(Job).where(Job.provider_ref == provider_ref).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Job]:
        result = await self.db.execute(
            select(Job).where(Job.owner_id == owner_id).order_by(Job.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def set_provider_ref(self, job: Job, provider_ref: str) -> None:
        """Record the provider handle. Written once."""
        await self.db.execute(
            update(Job)
            .where(Job.id == job.id, Job.provider_ref.is_(None))
            .values(provider_ref=provider_ref)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)

    async def transition(
        self,
        job: Job,
        target: JobStatus,
        error: Optional[str] = None,
        raw_output_urls: Optional[list[str]] = None,
    ) -> bool:
        """
        Move a job to ``target`` if its stored status still allows it.

        Args:
            job: Job to update (refreshed in place afterwards)
            target: New status
            error: Error text for failed/canceled jobs
            raw_output_urls: Ephemeral outputs staged for the materializer on success

        Returns:
            True if this call changed the row, False if it was a no-op or another
            writer got there first
        """
        try:
            ensure_transition(job.status, target)
        except InvalidTransition as e:
            logger.debug("job_transition_ignored", job_id=str(job.id), reason=str(e))
            return False

        if job.status == target:
            return False

        values: dict[str, Any] = {"status": target}
        if target in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED):
            values["completed_at"] = datetime.utcnow()
        if target in (JobStatus.FAILED, JobStatus.CANCELED):
            values["error"] = error or target.value
        if target == JobStatus.SUCCEEDED:
            values["raw_output_urls"] = list(raw_output_urls or [])

        result = await self.db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status.in_(ALLOWED_SOURCES[target]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)

        changed = result.rowcount == 1
        if changed:
            job_transitions_total.labels(status=target.value).inc()
            logger.info("job_status_changed", job_id=str(job.id), status=target.value)
        return changed

    async def write_output_refs(self, job: Job, output_refs: list[str], placeholder_count: int) -> bool:
        """
        Store durable output references once.

        Returns:
            True if written, False if another materializer already wrote them
        """
        result = await self.db.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.SUCCEEDED,
                Job.materialized_at.is_(None),
            )
            .values(
                output_refs=list(output_refs),
                placeholder_count=placeholder_count,
                materialized_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)
        return result.rowcount == 1

    async def replace_output_refs(
        self,
        job: Job,
        output_refs: list[str],
        placeholder_count: int,
        expected_materialized_at: datetime,
    ) -> bool:
        """Swap repaired slots in, provided nobody else rewrote them meanwhile."""
        result = await self.db.execute(
            update(Job)
            .where(Job.id == job.id, Job.materialized_at == expected_materialized_at)
            .values(
                output_refs=list(output_refs),
                placeholder_count=placeholder_count,
                materialized_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)
        return result.rowcount == 1

    async def mark_billed(
        self,
        job: Job,
        billed_amount_cents: int,
        billed_via: Optional[str],
        settled_cost_cents: Optional[int] = None,
    ) -> bool:
        """Flip ``billing_state`` to complete. Only a succeeded, unbilled job is touched."""
        values: dict[str, Any] = {
            "billing_state": BillingState.COMPLETE,
            "billed_amount_cents": billed_amount_cents,
            "billed_via": billed_via,
        }
        if settled_cost_cents is not None:
            values["settled_cost_cents"] = settled_cost_cents

        result = await self.db.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.SUCCEEDED,
                Job.billing_state == BillingState.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)
        return result.rowcount == 1

    async def list_stale_active(self, older_than: datetime, limit: int) -> list[Job]:
        """
        Dispatched jobs still starting/processing created before ``older_than``, oldest first.

        Jobs without a ``provider_ref`` cannot be resolved and are handled by
        :meth:`fail_undispatched` instead.
        """
        result = await self.db.execute(
            select(Job)
            .where(
                Job.status.in_(ACTIVE_STATUSES),
                Job.provider_ref.is_not(None),
                Job.created_at < older_than,
            )
            .order_by(Job.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def fail_undispatched(self, older_than: datetime, limit: int) -> list[UUID]:
        """
        Fail jobs whose dispatch was never acknowledged.

        Only rows still ``starting`` with no ``provider_ref`` are touched, so a
        submitter recording the ref concurrently wins.

        Returns:
            Ids of the jobs this call failed
        """
        result = await self.db.execute(
            select(Job.id)
            .where(
                Job.status == JobStatus.STARTING,
                Job.provider_ref.is_(None),
                Job.created_at < older_than,
            )
            .order_by(Job.created_at.asc())
            .limit(limit)
        )
        failed: list[UUID] = []
        for job_id in result.scalars().all():
            updated = await self.db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.STARTING, Job.provider_ref.is_(None))
                .values(status=JobStatus.FAILED, error=DISPATCH_NOT_ACKNOWLEDGED, completed_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 1:
                failed.append(job_id)
                job_transitions_total.labels(status=JobStatus.FAILED.value).inc()
                logger.warning("job_dispatch_not_acknowledged", job_id=str(job_id))
        return failed

    async def list_unbilled_succeeded(self, older_than: datetime, limit: int) -> list[Job]:
        result = await self.db.execute(
            select(Job)
            .where(
                Job.status == JobStatus.SUCCEEDED,
                Job.billing_state == BillingState.PENDING,
                Job.created_at < older_than,
            )
            .order_by(Job.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_with_placeholders(self, limit: int) -> list[Job]:
        result = await self.db.execute(
            select(Job)
            .where(
                Job.status == JobStatus.SUCCEEDED,
                Job.materialized_at.is_not(None),
                Job.placeholder_count > 0,
            )
            .order_by(Job.completed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
