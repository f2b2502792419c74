"""Pydantic schemas for balances and ledger transactions."""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from genledger.models.transaction import TransactionKind


class Balance(BaseModel):
    """Schema for returning an owner's balance."""

    owner_id: str
    balance_cents: int
    unlimited_access: bool

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    """Schema for returning a ledger entry."""

    id: UUID
    owner_id: str
    job_id: Optional[UUID] = None
    amount_cents: int
    kind: TransactionKind
    trigger: Optional[str] = None
    description: Optional[str] = None
    balance_applied_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionList(BaseModel):
    """Schema for a list of ledger entries."""

    items: list[Transaction]
    total: int


class CreditCreate(BaseModel):
    """Schema for recording a top-up or manual adjustment."""

    owner_id: str = Field(..., min_length=1, description="Owner whose balance changes")
    amount_cents: int = Field(..., description="Positive adds funds; adjustments may be negative")
    kind: Literal["topup", "adjustment"] = Field(default="topup", description="Ledger entry kind")
    description: Optional[str] = Field(default=None, description="Reason shown in the ledger")
