"""Billing reconciler: charges a succeeded job exactly once.

Any number of completion triggers may call :meth:`BillingReconciler.reconcile`
for the same job, concurrently and in any order. The single point of
serialization is the conditional insert of the job's usage Transaction
(``transactions.job_id`` is unique): whoever inserts it charges, everyone else
syncs the job's billing columns from the winning row.
"""
import enum
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.metrics import (
    billing_amount_cents_total,
    billing_charges_total,
    billing_errors_total,
    billing_inconsistencies_total,
    billing_race_losses_total,
)
from genledger.models.job import BillingState, JobStatus
from genledger.models.transaction import Transaction, TransactionKind
from genledger.services.job_store import JobStore
from genledger.services.ledger_service import LedgerService
from genledger.services.pricing import PricingService, settle_cost
from genledger.tracing import get_tracer, job_span
from genledger.utils.db import insert_if_absent

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class ReconcileOutcome(enum.Enum):
    """What a reconciliation attempt did."""

    CHARGED = "charged"
    ALREADY_BILLED = "already_billed"
    RACE_LOST = "race_lost"  # another trigger inserted the transaction first
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass
class ReconcileResult:
    job_id: UUID
    outcome: ReconcileOutcome
    billed_via: Optional[str] = None
    billed_amount_cents: Optional[int] = None
    error: Optional[str] = None


class BillingReconciler:
    """Service for idempotent job billing."""

    def __init__(self, db: AsyncSession):
        """Initialize reconciler with database session."""
        self.db = db
        self.jobs = JobStore(db)
        self.ledger = LedgerService(db)
        self.pricing = PricingService(db)

    async def reconcile(self, job_id: UUID, trigger: str) -> ReconcileResult:
        """
        Charge the owner for a succeeded job unless it has already been charged.

        Errors are logged and returned in the result; they never change the
        job's status. The next trigger to observe the job retries.

        Args:
            job_id: Job to bill
            trigger: Name of the calling trigger (webhook, poll, sweep)

        Returns:
            ReconcileResult describing what happened
        """
        with job_span(tracer, "billing.reconcile", job_id, trigger) as span:
            try:
                result = await self._reconcile(job_id, trigger)
            except Exception as e:
                await self.db.rollback()
                billing_errors_total.inc()
                logger.exception("billing_reconcile_failed", job_id=str(job_id), trigger=trigger, exc_info=e)
                result = ReconcileResult(job_id=job_id, outcome=ReconcileOutcome.FAILED, error=str(e))
            span.set_attribute("billing.outcome", result.outcome.value)
            return result

    async def _reconcile(self, job_id: UUID, trigger: str) -> ReconcileResult:
        job = await self.jobs.get(job_id)

        if job.billing_state == BillingState.COMPLETE:
            logger.debug("billing_already_complete", job_id=str(job.id), billed_via=job.billed_via, trigger=trigger)
            return ReconcileResult(
                job_id=job.id,
                outcome=ReconcileOutcome.ALREADY_BILLED,
                billed_via=job.billed_via,
                billed_amount_cents=job.billed_amount_cents,
            )

        if job.status != JobStatus.SUCCEEDED or not job.output_refs:
            return ReconcileResult(job_id=job.id, outcome=ReconcileOutcome.NOT_READY)

        capability = await self.pricing.get_capability(job.capability, active_only=False)
        rule = capability.settlement_rule if capability is not None else None
        settled_cost = settle_cost(job.cost_basis_cents, rule, len(job.output_refs))

        balance = await self.ledger.get_or_create_balance(job.owner_id)
        charge = 0 if balance.unlimited_access else settled_cost

        transaction_id = await insert_if_absent(
            self.db,
            Transaction,
            {
                "owner_id": job.owner_id,
                "job_id": job.id,
                "amount_cents": -charge,
                "kind": TransactionKind.USAGE,
                "trigger": trigger,
                "description": f"Generation: {job.capability}",
                "extra_metadata": {
                    "capability": job.capability,
                    "settled_cost_cents": settled_cost,
                    "output_count": len(job.output_refs),
                    "unlimited_access": balance.unlimited_access,
                },
            },
            Transaction.job_id,
        )

        if transaction_id is None:
            return await self._sync_from_winner(job, trigger)

        transaction = await self.db.get(Transaction, transaction_id)
        try:
            async with self.db.begin_nested():
                await self.ledger.apply_transaction(transaction)
        except Exception as e:
            # Transaction row stays with balance_applied_at NULL for the repair pass
            billing_inconsistencies_total.labels(kind="unapplied_transaction").inc()
            logger.error(
                "billing_balance_update_failed",
                job_id=str(job.id),
                transaction_id=str(transaction_id),
                owner_id=job.owner_id,
                error=str(e),
            )

        await self.jobs.mark_billed(job, charge, trigger, settled_cost)
        await self.db.commit()

        billing_charges_total.labels(trigger=trigger).inc()
        billing_amount_cents_total.inc(charge)
        logger.info(
            "job_billed",
            job_id=str(job.id),
            owner_id=job.owner_id,
            trigger=trigger,
            amount_cents=charge,
            settled_cost_cents=settled_cost,
            unlimited_access=balance.unlimited_access,
        )

        if charge:
            balance = await self.ledger.get_balance(job.owner_id)
            if balance is not None and balance.balance_cents < 0:
                logger.warning("balance_overdrawn", owner_id=job.owner_id, balance_cents=balance.balance_cents)

        return ReconcileResult(
            job_id=job.id,
            outcome=ReconcileOutcome.CHARGED,
            billed_via=trigger,
            billed_amount_cents=charge,
        )

    async def _sync_from_winner(self, job, trigger: str) -> ReconcileResult:
        existing = await self.ledger.get_job_transaction(job.id)
        if existing is None:
            raise RuntimeError(f"Conflicting transaction for job {job.id} is not visible")

        await self.jobs.mark_billed(job, -existing.amount_cents, existing.trigger, existing.settled_cost_cents)
        await self.db.commit()

        billing_race_losses_total.labels(trigger=trigger).inc()
        logger.info(
            "billing_race_lost",
            job_id=str(job.id),
            trigger=trigger,
            winner=existing.trigger,
        )
        return ReconcileResult(
            job_id=job.id,
            outcome=ReconcileOutcome.RACE_LOST,
            billed_via=existing.trigger,
            billed_amount_cents=-existing.amount_cents,
        )
