"""Integration tests for the cron-triggered maintenance endpoints."""
from datetime import datetime

import pytest
from httpx import AsyncClient

from genledger.config import settings
from genledger.models.job import JobStatus
from utils.factories import artifact_url

CRON_SECRET = "cron-secret-value"


@pytest.fixture
def cron_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    return CRON_SECRET


@pytest.mark.asyncio
async def test_unconfigured_secret_disables_endpoints(async_client: AsyncClient, monkeypatch) -> None:
    """Test that maintenance endpoints are unavailable without a configured secret."""
    monkeypatch.setattr(settings, "cron_secret", "")

    response = await async_client.post("/v1/maintenance/billing/repair", headers={"Authorization": "Bearer anything"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_wrong_or_missing_secret(async_client: AsyncClient, cron_secret: str) -> None:
    """Test that callers must present the cron secret."""
    response = await async_client.post("/v1/maintenance/billing/repair")
    assert response.status_code == 401

    response = await async_client.post(
        "/v1/maintenance/artifacts/repair", headers={"Authorization": "Bearer guessed"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_billing_repair(async_client: AsyncClient, cron_secret: str, fund) -> None:
    """Test that the billing repair endpoint reports its summary."""
    await fund("user_1", 500)

    response = await async_client.post(
        "/v1/maintenance/billing/repair", headers={"Authorization": f"Bearer {cron_secret}"}
    )

    assert response.status_code == 200
    assert response.json() == {"replayed": 0, "jobs_synced": 0, "drifted_balances": 0, "errors": 0}


@pytest.mark.asyncio
async def test_artifact_repair(async_client: AsyncClient, cron_secret: str, make_job, fetch, storage) -> None:
    """Test that the artifact repair endpoint copies placeholder outputs to storage."""
    source = artifact_url("late")
    job = await make_job(
        {
            "status": JobStatus.SUCCEEDED,
            "raw_output_urls": [source],
            "output_refs": [source],
            "placeholder_count": 1,
            "materialized_at": datetime.utcnow(),
            "completed_at": datetime.utcnow(),
        }
    )

    response = await async_client.post(
        "/v1/maintenance/artifacts/repair", headers={"Authorization": f"Bearer {cron_secret}"}
    )

    assert response.status_code == 200
    assert response.json() == {"jobs_checked": 1, "repaired": 1, "unrecoverable": 0, "still_failing": 0, "errors": 0}
    stored = await fetch.job(job.id)
    assert storage.is_durable(stored.output_refs[0])
    assert stored.placeholder_count == 0
