"""Capability (model) definitions and their pricing rules."""
from sqlalchemy import Boolean, Column, Integer, String, Enum as SQLEnum
import enum

from genledger.models.base import Base, JSONType


class QuoteMode(enum.Enum):
    """How the submission-time price is computed."""

    PER_RUN = "per_run"
    PER_SECOND = "per_second"


class SettlementRule(enum.Enum):
    """How the charged amount is derived once outputs exist."""

    FLAT = "flat"
    PER_UNIT = "per_unit"  # cost basis x number of outputs


class Capability(Base):
    """A unit of work users can request, mapped to a provider model."""

    __tablename__ = "capabilities"

    slug = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    provider_model = Column(String, nullable=False)  # owner/name or owner/name:version
    quote_mode = Column(SQLEnum(QuoteMode), nullable=False, default=QuoteMode.PER_RUN)
    cost_per_run_cents = Column(Integer, nullable=False, default=0)
    rate_cents_per_second = Column(Integer, nullable=True)
    audio_rate_cents_per_second = Column(Integer, nullable=True)
    default_duration_seconds = Column(Integer, nullable=True)
    resolution_multipliers = Column(JSONType, nullable=False, default=dict)  # {"1080p": 1.5}
    settlement_rule = Column(SQLEnum(SettlementRule), nullable=False, default=SettlementRule.FLAT)
    default_parameters = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Capability(slug={self.slug}, quote_mode={self.quote_mode}, settlement={self.settlement_rule})>"
