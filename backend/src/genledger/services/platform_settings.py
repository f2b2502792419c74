"""Runtime platform settings stored in the database."""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from genledger.cache import SettingsCache
from genledger.config import settings
from genledger.models.platform_setting import PlatformSetting
from genledger.schemas.platform import PlatformSettings

logger = structlog.get_logger(__name__)

GENERATION_SETTINGS_KEY = "generation"


class PlatformSettingsService:
    """Service for reading and writing platform settings."""

    def __init__(self, db: AsyncSession):
        """Initialize platform settings service with database session."""
        self.db = db

    async def load(self) -> PlatformSettings:
        result = await self.db.execute(
            select(PlatformSetting).where(PlatformSetting.key == GENERATION_SETTINGS_KEY)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return PlatformSettings()
        return PlatformSettings.model_validate(row.value or {})

    async def save(self, platform_settings: PlatformSettings) -> PlatformSettings:
        result = await self.db.execute(
            select(PlatformSetting).where(PlatformSetting.key == GENERATION_SETTINGS_KEY)
        )
        row = result.scalar_one_or_none()
        value = platform_settings.model_dump()
        if row is None:
            row = PlatformSetting(key=GENERATION_SETTINGS_KEY, value=value)
            self.db.add(row)
        else:
            row.value = value
        await self.db.flush()
        logger.info("platform_settings_updated", **value)
        return platform_settings


def build_settings_cache(session_factory: async_sessionmaker, **kwargs) -> SettingsCache[PlatformSettings]:
    """Create a platform settings cache that loads through its own sessions."""

    async def _load() -> PlatformSettings:
        async with session_factory() as db:
            return await PlatformSettingsService(db).load()

    kwargs.setdefault("ttl_seconds", settings.settings_cache_ttl_seconds)
    return SettingsCache(loader=_load, default=PlatformSettings(), **kwargs)
