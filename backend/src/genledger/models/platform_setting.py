"""Key/value platform configuration editable at runtime."""
from sqlalchemy import Column, String

from genledger.models.base import Base, JSONType


class PlatformSetting(Base):
    """Runtime platform setting stored as JSON under a unique key."""

    __tablename__ = "platform_settings"

    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        """String representation."""
        return f"<PlatformSetting(key={self.key})>"
