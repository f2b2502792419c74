"""Pydantic schemas for Job model."""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from genledger.models.job import BillingState, JobStatus


class JobCreate(BaseModel):
    """Schema for submitting a generation job."""

    capability: str = Field(..., min_length=1, description="Capability slug (e.g. flux-schnell, seedance-video)")
    prompt: str = Field(..., min_length=1, description="Generation prompt")
    params: dict[str, Any] = Field(default_factory=dict, description="Capability-specific parameters")


class Job(BaseModel):
    """Schema for returning job data."""

    id: UUID
    owner_id: str
    capability: str
    status: JobStatus
    cost_basis_cents: int
    settled_cost_cents: Optional[int] = None
    output_refs: list[str] = Field(default_factory=list)
    billing_state: BillingState
    billed_amount_cents: Optional[int] = None
    billed_via: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class JobList(BaseModel):
    """Schema for a list of jobs."""

    items: list[Job]
    total: int
