"""Test data factories using Faker for generating realistic test data."""
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from faker import Faker

from genledger.models.capability import QuoteMode, SettlementRule
from genledger.models.job import BillingState, JobStatus

fake = Faker()

ARTIFACT_HOST = "https://replicate.delivery"


def artifact_url(name: str | None = None) -> str:
    """Ephemeral provider output URL served by the fake provider API."""
    return f"{ARTIFACT_HOST}/pbxt/{name or fake.uuid4()}.png"


class CapabilityFactory:
    """Factory for creating test capability data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create capability test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Capability data (per-run, flat settlement)
        """
        slug = f"{fake.word()}-{fake.random_int(min=100, max=999)}"
        data = {
            "id": uuid4(),
            "slug": slug,
            "name": slug.replace("-", " ").title(),
            "provider_model": f"black-forest-labs/{slug}",
            "quote_mode": QuoteMode.PER_RUN,
            "cost_per_run_cents": fake.random_element([5, 10, 25, 150]),
            "rate_cents_per_second": None,
            "audio_rate_cents_per_second": None,
            "default_duration_seconds": None,
            "resolution_multipliers": {},
            "settlement_rule": SettlementRule.FLAT,
            "default_parameters": {"output_format": "webp"},
            "is_active": True,
        }
        if overrides:
            data.update(overrides)
        return data

    @staticmethod
    def video(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Per-second video capability with audio pricing and resolution tiers."""
        data = CapabilityFactory.create(
            {
                "provider_model": "bytedance/seedance-1-pro",
                "quote_mode": QuoteMode.PER_SECOND,
                "cost_per_run_cents": 0,
                "rate_cents_per_second": 10,
                "audio_rate_cents_per_second": 15,
                "default_duration_seconds": 5,
                "resolution_multipliers": {"480p": 0.5, "1080p": 1.5},
                "default_parameters": {},
            }
        )
        if overrides:
            data.update(overrides)
        return data


class JobFactory:
    """Factory for creating test job data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create job test data.

        Defaults to a job in ``processing`` dispatched ten minutes ago, so the
        background sweep considers it stale.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Job data
        """
        created_at = datetime.utcnow() - timedelta(minutes=10)
        data = {
            "id": uuid4(),
            "owner_id": f"user_{fake.uuid4()[:8]}",
            "capability": "flux-schnell",
            "provider_ref": f"pred_{fake.uuid4().replace('-', '')[:20]}",
            "status": JobStatus.PROCESSING,
            "params": {"prompt": fake.sentence()},
            "cost_basis_cents": 10,
            "raw_output_urls": [],
            "output_refs": [],
            "placeholder_count": 0,
            "billing_state": BillingState.PENDING,
            "created_at": created_at,
            "updated_at": created_at,
        }
        if overrides:
            data.update(overrides)
        return data

    @staticmethod
    def succeeded(overrides: dict[str, Any] | None = None, outputs: int = 1) -> dict[str, Any]:
        """Succeeded job with staged provider outputs, not yet materialized."""
        data = JobFactory.create(
            {
                "status": JobStatus.SUCCEEDED,
                "raw_output_urls": [artifact_url() for _ in range(outputs)],
                "completed_at": datetime.utcnow() - timedelta(minutes=5),
            }
        )
        if overrides:
            data.update(overrides)
        return data
