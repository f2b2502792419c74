"""Ledger repair: replays unapplied transactions and audits balance drift.

The transaction log is the source of truth. A Balance is a cached sum of the
applied entries and can be brought back in line; the log itself is never
rewritten here.
"""
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.metrics import balances_with_drift_gauge, billing_inconsistencies_total
from genledger.models.balance import Balance
from genledger.models.job import BillingState, Job, JobStatus
from genledger.models.transaction import Transaction
from genledger.services.job_store import JobStore
from genledger.services.ledger_service import LedgerService

logger = structlog.get_logger(__name__)


@dataclass
class BalanceDrift:
    owner_id: str
    balance_cents: int
    ledger_sum_cents: int

    @property
    def drift_cents(self) -> int:
        return self.balance_cents - self.ledger_sum_cents


@dataclass
class RepairSummary:
    replayed: int = 0
    jobs_synced: int = 0
    drifts: list[BalanceDrift] = field(default_factory=list)
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "replayed": self.replayed,
            "jobs_synced": self.jobs_synced,
            "drifted_balances": len(self.drifts),
            "errors": self.errors,
        }


class LedgerRepairService:
    """Service for detecting and repairing ledger/balance inconsistencies."""

    def __init__(self, db: AsyncSession):
        """Initialize repair service with database session."""
        self.db = db
        self.ledger = LedgerService(db)
        self.jobs = JobStore(db)

    async def replay_unapplied(self, limit: int = 100) -> tuple[int, int]:
        """
        Apply transactions whose amount never reached the balance.

        Returns:
            (replayed, errors)
        """
        result = await self.db.execute(
            select(Transaction.id)
            .where(Transaction.balance_applied_at.is_(None))
            .order_by(Transaction.created_at.asc())
            .limit(limit)
        )
        transaction_ids = list(result.scalars().all())

        replayed = 0
        errors = 0
        for transaction_id in transaction_ids:
            billing_inconsistencies_total.labels(kind="unapplied_transaction").inc()
            try:
                transaction = await self.db.get(Transaction, transaction_id)
                await self.ledger.get_or_create_balance(transaction.owner_id)
                if await self.ledger.apply_transaction(transaction):
                    replayed += 1
                    logger.warning(
                        "ledger_transaction_replayed",
                        transaction_id=str(transaction_id),
                        owner_id=transaction.owner_id,
                        job_id=str(transaction.job_id) if transaction.job_id else None,
                        amount_cents=transaction.amount_cents,
                    )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                errors += 1
                logger.exception("ledger_replay_failed", transaction_id=str(transaction_id), exc_info=e)
        return replayed, errors

    async def sync_billing_states(self, limit: int = 100) -> int:
        """
        Mark succeeded jobs complete when their usage transaction already exists.

        Returns:
            Number of jobs synced
        """
        result = await self.db.execute(
            select(Job, Transaction)
            .join(Transaction, Transaction.job_id == Job.id)
            .where(Job.status == JobStatus.SUCCEEDED, Job.billing_state == BillingState.PENDING)
            .limit(limit)
        )
        synced = 0
        for job, transaction in result.all():
            if await self.jobs.mark_billed(
                job, -transaction.amount_cents, transaction.trigger, transaction.settled_cost_cents
            ):
                synced += 1
                logger.warning("job_billing_state_synced", job_id=str(job.id), billed_via=transaction.trigger)
        await self.db.commit()
        return synced

    async def find_drift(self, limit: int = 100) -> list[BalanceDrift]:
        """
        Balances that disagree with the sum of their applied transactions.

        Drift is reported, not corrected: it means the balance was written
        outside the ledger and needs a human decision.
        """
        applied = (
            select(
                Transaction.owner_id.label("owner_id"),
                func.sum(Transaction.amount_cents).label("ledger_sum"),
            )
            .where(Transaction.balance_applied_at.is_not(None))
            .group_by(Transaction.owner_id)
            .subquery()
        )
        ledger_sum = func.coalesce(applied.c.ledger_sum, 0)
        result = await self.db.execute(
            select(Balance.owner_id, Balance.balance_cents, ledger_sum)
            .outerjoin(applied, applied.c.owner_id == Balance.owner_id)
            .where(Balance.balance_cents != ledger_sum)
            .limit(limit)
        )
        drifts = [
            BalanceDrift(owner_id=owner_id, balance_cents=balance_cents, ledger_sum_cents=int(total))
            for owner_id, balance_cents, total in result.all()
        ]

        balances_with_drift_gauge.set(len(drifts))
        for drift in drifts:
            billing_inconsistencies_total.labels(kind="balance_drift").inc()
            logger.error(
                "balance_drift_detected",
                owner_id=drift.owner_id,
                balance_cents=drift.balance_cents,
                ledger_sum_cents=drift.ledger_sum_cents,
                drift_cents=drift.drift_cents,
            )
        return drifts

    async def run(self, limit: int = 100) -> RepairSummary:
        """Replay, sync and audit in one pass."""
        summary = RepairSummary()
        summary.replayed, summary.errors = await self.replay_unapplied(limit)
        summary.jobs_synced = await self.sync_billing_states(limit)
        summary.drifts = await self.find_drift(limit)
        logger.info("ledger_repair_completed", **summary.as_dict())
        return summary
