"""SQLAlchemy ORM models for the generation engine."""
# Import all models here to ensure they are registered with Alembic

from genledger.models.base import Base
from genledger.models.balance import Balance
from genledger.models.capability import Capability, QuoteMode, SettlementRule
from genledger.models.job import ACTIVE_STATUSES, TERMINAL_STATUSES, BillingState, Job, JobStatus
from genledger.models.platform_setting import PlatformSetting
from genledger.models.transaction import Transaction, TransactionKind

__all__ = [
    "Base",
    "Balance",
    "Capability",
    "QuoteMode",
    "SettlementRule",
    "Job",
    "JobStatus",
    "BillingState",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "PlatformSetting",
    "Transaction",
    "TransactionKind",
]
