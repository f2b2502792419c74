"""Generation job model and its state vocabulary."""
from sqlalchemy import Column, DateTime, Index, Integer, String, Text, Enum as SQLEnum
import enum

from genledger.models.base import Base, JSONType


class JobStatus(enum.Enum):
    """Lifecycle status of a generation job."""

    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


ACTIVE_STATUSES = (JobStatus.STARTING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED)


class BillingState(enum.Enum):
    """Whether the job has been charged."""

    PENDING = "pending"
    COMPLETE = "complete"


class Job(Base):
    """
    One asynchronous generation request submitted to the inference provider.

    Rows are never deleted. ``status`` is written by the completion resolver,
    ``output_refs`` by the artifact materializer and the billing columns by the
    billing reconciler.
    """

    __tablename__ = "jobs"

    owner_id = Column(String(255), nullable=False, index=True)
    capability = Column(String(100), nullable=False)
    provider_ref = Column(String(255), nullable=True, unique=True, index=True)
    status = Column(SQLEnum(JobStatus), nullable=False, default=JobStatus.STARTING)
    params = Column(JSONType, nullable=False, default=dict)

    cost_basis_cents = Column(Integer, nullable=False)
    settled_cost_cents = Column(Integer, nullable=True)

    # Ephemeral provider URLs staged by the resolver, durable refs written once by the materializer
    raw_output_urls = Column(JSONType, nullable=False, default=list)
    output_refs = Column(JSONType, nullable=False, default=list)
    materialized_at = Column(DateTime, nullable=True)
    placeholder_count = Column(Integer, nullable=False, default=0)  # slots still holding an ephemeral URL

    billing_state = Column(SQLEnum(BillingState), nullable=False, default=BillingState.PENDING, index=True)
    billed_amount_cents = Column(Integer, nullable=True)
    billed_via = Column(String(20), nullable=True)

    error = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_jobs_status_created_at", "status", "created_at"),)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        """String representation."""
        return f"<Job(id={self.id}, owner_id={self.owner_id}, status={self.status}, billing={self.billing_state})>"
