"""Domain errors raised by the generation engine."""
from typing import Optional


class GenledgerError(Exception):
    """Base class for engine errors."""


class CapabilityNotFound(GenledgerError):
    """Requested capability does not exist or is inactive."""

    def __init__(self, slug: str):
        super().__init__(f"Capability '{slug}' not found")
        self.slug = slug


class JobNotFound(GenledgerError):
    """No job with the given id (visible to the caller)."""


class GenerationDisabled(GenledgerError):
    """Generation is switched off in the platform settings."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Generation is temporarily disabled")


class InsufficientFunds(GenledgerError):
    """Owner cannot afford the quoted cost. Raised before any job row exists."""

    def __init__(self, required_cents: int, available_cents: int):
        super().__init__(f"Insufficient balance: required {required_cents}, available {available_cents}")
        self.required_cents = required_cents
        self.available_cents = available_cents


class ProviderError(GenledgerError):
    """The inference provider API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SubmissionError(GenledgerError):
    """Provider rejected dispatch. The job has been marked failed."""

    def __init__(self, message: str, job_id=None):
        super().__init__(message)
        self.job_id = job_id


class ProviderQueryError(GenledgerError):
    """Transient failure resolving a job's status. Job state is unchanged."""


class InvalidTransition(GenledgerError):
    """A status change that the job state machine does not allow."""


class MaterializationPartialFailure(GenledgerError):
    """One artifact could not be copied to durable storage."""

    def __init__(self, index: int, url: str, reason: str):
        super().__init__(f"artifact {index} not materialized: {reason}")
        self.index = index
        self.url = url
        self.reason = reason


class BillingInconsistency(GenledgerError):
    """Ledger and balance disagree: a transaction not reflected in the balance."""
