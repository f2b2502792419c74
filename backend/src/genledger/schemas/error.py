"""Error envelope returned by the API's exception handlers."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Dotted location of the offending input")
    value: Any | None = Field(default=None, description="Offending scalar value, when safe to echo")


class ErrorResponse(BaseModel):
    """Body of every 422, 503 and 500 produced outside the route handlers."""

    error: str = Field(..., description="Error class, e.g. 'ValidationError'")
    message: str
    details: list[ErrorDetail] = Field(default_factory=list)
    remediation: str | None = None
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorCode:
    """Error codes shared by the handlers and the job routes."""

    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_UUID = "invalid_uuid"
    INVALID_ENUM_VALUE = "invalid_enum_value"
    VALIDATION_ERROR = "validation_error"

    # Submission
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    GENERATION_DISABLED = "generation_disabled"
    PROVIDER_ERROR = "provider_error"

    DATABASE_ERROR = "database_error"
    INTERNAL_ERROR = "internal_error"


# Pydantic error types mapped onto the codes above
VALIDATION_CODES = {
    "missing": ErrorCode.MISSING_REQUIRED_FIELD,
    "uuid_parsing": ErrorCode.INVALID_UUID,
    "uuid_type": ErrorCode.INVALID_UUID,
    "enum": ErrorCode.INVALID_ENUM_VALUE,
    "literal_error": ErrorCode.INVALID_ENUM_VALUE,
}

REMEDIATION_HINTS = {
    ErrorCode.VALIDATION_ERROR: "Compare the request body with the schema published at /docs",
    ErrorCode.INSUFFICIENT_BALANCE: "Top up your balance and submit again",
    ErrorCode.GENERATION_DISABLED: "Generation is paused by the operator; try again later",
    ErrorCode.DATABASE_ERROR: "The service is temporarily unavailable; retry after the indicated delay",
    ErrorCode.PROVIDER_ERROR: "The inference provider rejected the request; submit again to create a new job",
    ErrorCode.INTERNAL_ERROR: "Contact support and quote the request id",
}
