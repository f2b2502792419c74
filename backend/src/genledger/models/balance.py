"""Per-owner spendable balance."""
from sqlalchemy import Boolean, Column, Integer, String

from genledger.models.base import Base


class Balance(Base):
    """
    Current spendable balance of an owner.

    Only changed by applying a Transaction through the ledger service.
    """

    __tablename__ = "balances"

    owner_id = Column(String(255), nullable=False, unique=True, index=True)
    balance_cents = Column(Integer, nullable=False, default=0)
    unlimited_access = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Balance(owner_id={self.owner_id}, balance={self.balance_cents}, unlimited={self.unlimited_access})>"
