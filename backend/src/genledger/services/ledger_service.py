"""Balance ledger: per-owner balances and the append-only transaction log."""
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.errors import BillingInconsistency
from genledger.models.balance import Balance
from genledger.models.transaction import Transaction, TransactionKind
from genledger.utils.db import insert_if_absent

logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Service for balances and ledger entries.

    Balances are never written directly: every change is a Transaction row that
    is then applied with :meth:`apply_transaction`.
    """

    def __init__(self, db: AsyncSession):
        """Initialize ledger service with database session."""
        self.db = db

    async def get_balance(self, owner_id: str) -> Optional[Balance]:
        result = await self.db.execute(
            select(Balance).where(Balance.owner_id == owner_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_balance(self, owner_id: str) -> Balance:
        """Return the owner's balance row, creating an empty one if needed."""
        balance = await self.get_balance(owner_id)
        if balance is not None:
            return balance

        await insert_if_absent(
            self.db,
            Balance,
            {"owner_id": owner_id, "balance_cents": 0, "unlimited_access": False},
            Balance.owner_id,
        )
        balance = await self.get_balance(owner_id)
        logger.info("balance_created", owner_id=owner_id)
        return balance

    async def get_job_transaction(self, job_id: UUID) -> Optional[Transaction]:
        result = await self.db.execute(select(Transaction).where(Transaction.job_id == job_id))
        return result.scalar_one_or_none()

    async def apply_transaction(self, transaction: Transaction) -> bool:
        """
        Apply a ledger entry to the owner's balance exactly once.

        The ``balance_applied_at`` stamp is set with a compare-and-set, so
        replaying an already-applied entry is a no-op.

        Args:
            transaction: Ledger entry to apply

        Returns:
            True if this call applied it, False if it was already applied

        Raises:
            BillingInconsistency: If the owner has no balance row to apply it to
        """
        stamped = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == transaction.id, Transaction.balance_applied_at.is_(None))
            .values(balance_applied_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if stamped.rowcount != 1:
            return False

        if transaction.amount_cents != 0:
            applied = await self.db.execute(
                update(Balance)
                .where(Balance.owner_id == transaction.owner_id)
                .values(balance_cents=Balance.balance_cents + transaction.amount_cents)
                .execution_options(synchronize_session=False)
            )
            if applied.rowcount != 1:
                raise BillingInconsistency(f"No balance row for owner {transaction.owner_id}")

        await self.db.refresh(transaction)
        return True

    async def record_credit(
        self,
        owner_id: str,
        amount_cents: int,
        kind: TransactionKind = TransactionKind.TOPUP,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Record a non-job ledger entry (top-up or manual adjustment) and apply it.

        Args:
            owner_id: Owner whose balance changes
            amount_cents: Positive to add funds, negative for a debit adjustment
            kind: ``topup`` or ``adjustment``
            description: Free-form reason

        Returns:
            Applied transaction

        Raises:
            ValueError: For usage entries or a zero top-up
        """
        if kind == TransactionKind.USAGE:
            raise ValueError("Usage transactions are created by the billing reconciler")
        if kind == TransactionKind.TOPUP and amount_cents <= 0:
            raise ValueError("Top-up amount must be positive")

        await self.get_or_create_balance(owner_id)

        transaction = Transaction(
            owner_id=owner_id,
            amount_cents=amount_cents,
            kind=kind,
            description=description,
            extra_metadata={},
        )
        self.db.add(transaction)
        await self.db.flush()
        await self.apply_transaction(transaction)

        logger.info(
            "ledger_credit_recorded",
            owner_id=owner_id,
            transaction_id=str(transaction.id),
            amount_cents=amount_cents,
            kind=kind.value,
        )
        return transaction

    async def list_transactions(self, owner_id: str, limit: int = 50) -> list[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.owner_id == owner_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ledger_sum(self, owner_id: str) -> int:
        """Sum of all applied entries for an owner (what the balance should equal)."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.owner_id == owner_id,
                Transaction.balance_applied_at.is_not(None),
            )
        )
        return int(result.scalar() or 0)
