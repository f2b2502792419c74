"""Capability lookup, submission quotes and settlement."""
import math
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.models.capability import Capability, QuoteMode, SettlementRule


def quote_cost(capability: Capability, params: dict[str, Any]) -> int:
    """
    Price quoted at submission time, in cents.

    ``per_run`` capabilities cost ``cost_per_run_cents``. ``per_second``
    capabilities cost ``ceil(rate * duration * resolution_multiplier)``, using
    the audio rate when ``generate_audio`` is requested and one is defined.

    Raises:
        ValueError: If duration is not a positive number
    """
    if capability.quote_mode == QuoteMode.PER_RUN:
        return capability.cost_per_run_cents

    duration = params.get("duration", capability.default_duration_seconds)
    try:
        duration = float(duration)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid duration for {capability.slug}: {duration!r}")
    if duration <= 0:
        raise ValueError(f"Duration must be positive for {capability.slug}")

    rate = capability.rate_cents_per_second or 0
    if params.get("generate_audio") and capability.audio_rate_cents_per_second is not None:
        rate = capability.audio_rate_cents_per_second

    multipliers = capability.resolution_multipliers or {}
    multiplier = float(multipliers.get(str(params.get("resolution")), 1.0))

    return math.ceil(rate * duration * multiplier)


def settle_cost(cost_basis_cents: int, rule: Optional[SettlementRule], output_count: int) -> int:
    """
    Final chargeable amount for a completed job.

    Args:
        cost_basis_cents: Amount quoted at submission
        rule: Capability settlement rule (``None`` settles flat)
        output_count: Number of outputs produced

    Returns:
        Settled cost in cents
    """
    if rule == SettlementRule.PER_UNIT:
        return cost_basis_cents * output_count
    return cost_basis_cents


class PricingService:
    """Service for capability definitions."""

    def __init__(self, db: AsyncSession):
        """Initialize pricing service with database session."""
        self.db = db

    async def get_capability(self, slug: str, active_only: bool = True) -> Optional[Capability]:
        query = select(Capability).where(Capability.slug == slug)
        if active_only:
            query = query.where(Capability.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
