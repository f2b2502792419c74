"""Unit tests for the platform settings TTL cache."""
import pytest

from genledger.cache import SettingsCache
from genledger.schemas.platform import PlatformSettings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class Loader:
    def __init__(self):
        self.calls = 0
        self.value = PlatformSettings()
        self.error: Exception | None = None

    async def __call__(self) -> PlatformSettings:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def loader() -> Loader:
    return Loader()


@pytest.fixture
def cache(loader: Loader, clock: FakeClock) -> SettingsCache[PlatformSettings]:
    return SettingsCache(loader=loader, default=PlatformSettings(), ttl_seconds=30, clock=clock)


@pytest.mark.asyncio
async def test_value_is_reused_within_ttl(cache, loader, clock) -> None:
    await cache.get()
    clock.now += 29
    await cache.get()

    assert loader.calls == 1


@pytest.mark.asyncio
async def test_value_is_reloaded_after_ttl(cache, loader, clock) -> None:
    await cache.get()
    loader.value = PlatformSettings(generation_enabled=False)
    clock.now += 30

    value = await cache.get()

    assert loader.calls == 2
    assert value.generation_enabled is False


@pytest.mark.asyncio
async def test_invalidate_forces_reload(cache, loader) -> None:
    await cache.get()
    loader.value = PlatformSettings(generation_enabled=False, maintenance_message="Upgrading GPUs")

    cache.invalidate()
    value = await cache.get()

    assert loader.calls == 2
    assert value.maintenance_message == "Upgrading GPUs"


@pytest.mark.asyncio
async def test_failed_reload_serves_last_good_value(cache, loader, clock) -> None:
    loader.value = PlatformSettings(generation_enabled=False)
    await cache.get()
    loader.error = ConnectionError("database unavailable")
    clock.now += 60

    value = await cache.get()

    assert value.generation_enabled is False
    # The failure is not cached: the next call tries again
    await cache.get()
    assert loader.calls == 3


@pytest.mark.asyncio
async def test_failure_before_any_load_serves_default(cache, loader) -> None:
    loader.error = ConnectionError("database unavailable")

    value = await cache.get()

    assert value == PlatformSettings()
    assert value.generation_enabled is True
