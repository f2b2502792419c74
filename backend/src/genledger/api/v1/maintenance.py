"""Maintenance endpoints for external schedulers (cron)."""
import hmac

import httpx
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.storage import S3Storage
from genledger.api.deps import get_db, get_http_client, get_storage
from genledger.config import settings
from genledger.services.materializer import ArtifactMaterializer
from genledger.services.repair_service import LedgerRepairService
from genledger.utils.signatures import parse_bearer_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


async def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Accept only ``Authorization: Bearer <cron_secret>``."""
    if not settings.cron_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Maintenance endpoints are not configured")

    token = parse_bearer_token(authorization)
    if not token.ok or not hmac.compare_digest(token.value, settings.cron_secret):
        logger.warning("maintenance_unauthorized", reason=getattr(token, "reason", "secret mismatch"))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/artifacts/repair", dependencies=[Depends(require_cron_secret)])
async def repair_artifacts(
    db: AsyncSession = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> dict[str, int]:
    """Retry placeholder artifacts of succeeded jobs."""
    materializer = ArtifactMaterializer(db, storage, http_client)
    return await materializer.repair_batch(settings.artifact_repair_batch_size)


@router.post("/billing/repair", dependencies=[Depends(require_cron_secret)])
async def repair_billing(db: AsyncSession = Depends(get_db)) -> dict[str, int]:
    """Replay unapplied ledger entries, sync billing flags and audit balances."""
    summary = await LedgerRepairService(db).run(settings.billing_repair_batch_size)
    return summary.as_dict()
