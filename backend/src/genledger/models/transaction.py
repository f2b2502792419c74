"""Append-only ledger entry."""
import enum
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Uuid, Enum as SQLEnum

from genledger.models.base import Base, JSONType


class TransactionKind(enum.Enum):
    """Ledger entry kind."""

    USAGE = "usage"
    TOPUP = "topup"
    ADJUSTMENT = "adjustment"


class Transaction(Base):
    """
    Ledger entry mutating an owner's balance.

    ``job_id`` is unique where present: a job is charged by at most one row.
    ``balance_applied_at`` stays NULL until the amount has been applied to the
    owner's Balance, which lets the repair pass find and replay it.
    """

    __tablename__ = "transactions"

    owner_id = Column(String(255), nullable=False, index=True)
    job_id = Column(Uuid(as_uuid=True), nullable=True, unique=True)
    amount_cents = Column(Integer, nullable=False)  # Negative for charges
    kind = Column(SQLEnum(TransactionKind), nullable=False)
    trigger = Column(String(20), nullable=True)  # webhook, poll, sweep for usage rows
    description = Column(String, nullable=True)
    extra_metadata = Column(JSONType, nullable=False, default=dict)
    balance_applied_at = Column(DateTime, nullable=True, index=True)

    @property
    def settled_cost_cents(self) -> Optional[int]:
        """Cost settled for the job, recorded even when unlimited access charged nothing."""
        value = (self.extra_metadata or {}).get("settled_cost_cents")
        return int(value) if value is not None else None

    def __repr__(self) -> str:
        """String representation."""
        return f"<Transaction(id={self.id}, owner_id={self.owner_id}, job_id={self.job_id}, amount={self.amount_cents})>"
