"""Platform status and runtime settings endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.api.deps import get_db, get_settings_cache, require_admin
from genledger.cache import SettingsCache
from genledger.schemas.platform import PlatformSettings
from genledger.services.platform_settings import PlatformSettingsService

router = APIRouter(prefix="/platform", tags=["Platform"])


@router.get("/status", response_model=PlatformSettings)
async def platform_status(
    settings_cache: SettingsCache[PlatformSettings] = Depends(get_settings_cache),
) -> PlatformSettings:
    """Whether generation is currently accepted. Served from the settings cache."""
    return await settings_cache.get()


@router.put("/settings", response_model=PlatformSettings)
async def update_platform_settings(
    platform_settings: PlatformSettings,
    db: AsyncSession = Depends(get_db),
    settings_cache: SettingsCache[PlatformSettings] = Depends(get_settings_cache),
    current_user: dict = Depends(require_admin),
) -> PlatformSettings:
    """Update platform settings (admin only) and drop this process's cached copy."""
    saved = await PlatformSettingsService(db).save(platform_settings)
    await db.commit()
    settings_cache.invalidate()
    return saved
