"""Pydantic schemas for API request/response validation."""

from genledger.schemas.balance import Balance, CreditCreate, Transaction, TransactionList
from genledger.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from genledger.schemas.job import Job, JobCreate, JobList
from genledger.schemas.platform import PlatformSettings

__all__ = [
    "Balance",
    "CreditCreate",
    "Transaction",
    "TransactionList",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "Job",
    "JobCreate",
    "JobList",
    "PlatformSettings",
]
