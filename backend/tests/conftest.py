"""Pytest configuration and fixtures for async testing.

Tests run against a per-test SQLite file so several sessions can work on the
same data concurrently, as the webhook, poll and sweep triggers do in
production. Every transaction starts with ``BEGIN IMMEDIATE``, which
serializes writers: a test must commit (or close) its own session before
calling a service or route that opens another one.
"""
import json
from typing import Any, AsyncGenerator, Optional
from uuid import UUID

import httpx
import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from genledger.adapters.provider import ReplicateProvider
from genledger.adapters.storage import S3Storage
from genledger.cache import SettingsCache
from genledger.database import Base
from genledger.models import Balance, Capability, Job, Transaction
from genledger.schemas.platform import PlatformSettings
from utils.factories import ARTIFACT_HOST, CapabilityFactory, JobFactory

TEST_OWNER_ID = "user_test_123"
PROVIDER_BASE_URL = "https://api.replicate.test"


class FakeProviderAPI:
    """
    In-memory stand-in for the provider HTTP API and its artifact CDN.

    Served through ``httpx.MockTransport`` so the real provider adapter and
    materializer code paths run unchanged.
    """

    def __init__(self):
        self.predictions: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.status_calls = 0
        self.fail_create = False
        self.fail_status = False
        self.html_responses = False
        self.broken_artifacts: set[str] = set()
        self.expired_artifacts: set[str] = set()
        self._counter = 0

    def set_prediction(self, ref: str, status: str, output: Any = None, error: Optional[str] = None) -> None:
        self.predictions[ref] = {"id": ref, "status": status, "output": output, "error": error}

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(ARTIFACT_HOST):
            if url in self.broken_artifacts:
                raise httpx.ConnectError("connection reset by peer", request=request)
            if url in self.expired_artifacts:
                return httpx.Response(404, text="gone")
            content_type = "video/mp4" if url.endswith(".mp4") else "image/png"
            return httpx.Response(200, content=b"\x89PNG artifact", headers={"content-type": content_type})

        path = request.url.path
        if self.html_responses:
            # Proxy error page served with a success status
            return httpx.Response(200, text="<html><body>Bad gateway</body></html>", headers={"content-type": "text/html"})

        if request.method == "POST" and path.endswith("/predictions"):
            if self.fail_create:
                return httpx.Response(422, json={"detail": "input.prompt is required"})
            self._counter += 1
            ref = f"pred_{self._counter}"
            self.created.append({"path": path, "body": json.loads(request.content)})
            self.set_prediction(ref, "starting")
            return httpx.Response(201, json=self.predictions[ref])

        if request.method == "GET" and path.startswith("/v1/predictions/"):
            self.status_calls += 1
            if self.fail_status:
                return httpx.Response(503, text="service unavailable")
            ref = path.rsplit("/", 1)[1]
            if ref not in self.predictions:
                return httpx.Response(404, json={"detail": "Not found"})
            return httpx.Response(200, json=self.predictions[ref])

        return httpx.Response(404, json={"detail": "Not found"})


class FakeS3Client:
    """Minimal boto3 S3 client keeping objects in a dict."""

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.fail_puts = False

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> dict:  # noqa: N803
        if self.fail_puts:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "We encountered an internal error"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)
        return {"ETag": '"etag"'}

    def head_object(self, Bucket: str, Key: str) -> dict:  # noqa: N803
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentType": self.objects[(Bucket, Key)][1]}


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """
    Create a fresh SQLite database for each test.

    Yields:
        AsyncEngine bound to a temporary database file
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'genledger_test.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for test setup and direct service calls.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def provider_api() -> FakeProviderAPI:
    return FakeProviderAPI()


@pytest_asyncio.fixture(scope="function")
async def http_client(provider_api: FakeProviderAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_api.handler)) as client:
        yield client


@pytest.fixture(scope="function")
def provider(http_client: httpx.AsyncClient) -> ReplicateProvider:
    return ReplicateProvider(client=http_client, api_token="r8_test_token", base_url=PROVIDER_BASE_URL)


@pytest.fixture(scope="function")
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture(scope="function")
def storage(s3_client: FakeS3Client) -> S3Storage:
    return S3Storage(client=s3_client)


@pytest.fixture(scope="function")
def platform_settings() -> PlatformSettings:
    """Mutable settings served by ``settings_cache``; flip fields to change behavior."""
    return PlatformSettings()


@pytest.fixture(scope="function")
def settings_cache(platform_settings: PlatformSettings) -> SettingsCache[PlatformSettings]:
    async def _load() -> PlatformSettings:
        return platform_settings

    return SettingsCache(loader=_load, default=PlatformSettings(), ttl_seconds=0)


@pytest.fixture(scope="function")
def current_user() -> dict:
    """Claims returned by the overridden auth dependency. Set ``role`` to ``admin`` where needed."""
    return {"sub": TEST_OWNER_ID, "role": "user"}


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker,
    http_client: httpx.AsyncClient,
    provider: ReplicateProvider,
    storage: S3Storage,
    settings_cache: SettingsCache[PlatformSettings],
    current_user: dict,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client with collaborators and auth overridden.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from genledger.api.deps import (
        get_current_user,
        get_db,
        get_http_client,
        get_provider,
        get_settings_cache,
        get_storage,
    )
    from genledger.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Override database dependency to use the test database."""
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_settings_cache] = lambda: settings_cache

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_capability(session_factory: async_sessionmaker):
    """Insert a capability and return it."""

    async def _make(overrides: Optional[dict[str, Any]] = None, video: bool = False) -> Capability:
        data = CapabilityFactory.video(overrides) if video else CapabilityFactory.create(overrides)
        async with session_factory() as session:
            capability = Capability(**data)
            session.add(capability)
            await session.commit()
            return capability

    return _make


@pytest.fixture(scope="function")
def make_job(session_factory: async_sessionmaker):
    """Insert a job and return it. ``outputs`` builds a succeeded, unmaterialized job."""

    async def _make(overrides: Optional[dict[str, Any]] = None, outputs: Optional[int] = None) -> Job:
        data = JobFactory.succeeded(overrides, outputs=outputs) if outputs else JobFactory.create(overrides)
        async with session_factory() as session:
            job = Job(**data)
            session.add(job)
            await session.commit()
            return job

    return _make


@pytest.fixture(scope="function")
def fund(session_factory: async_sessionmaker):
    """
    Give an owner an opening balance, recorded as an applied top-up so the
    ledger and the balance agree.
    """
    from genledger.services.ledger_service import LedgerService

    async def _fund(owner_id: str, amount_cents: int, unlimited_access: bool = False) -> None:
        async with session_factory() as session:
            ledger = LedgerService(session)
            if amount_cents:
                await ledger.record_credit(owner_id, amount_cents, description="opening balance")
            balance = await ledger.get_or_create_balance(owner_id)
            balance.unlimited_access = unlimited_access
            await session.commit()

    return _fund


@pytest.fixture(scope="function")
def fetch(session_factory: async_sessionmaker):
    """Read-only helpers that use a short-lived session of their own."""

    class _Fetch:
        async def job(self, job_id: UUID) -> Job:
            async with session_factory() as session:
                return await session.get(Job, job_id)

        async def balance(self, owner_id: str) -> Optional[Balance]:
            async with session_factory() as session:
                result = await session.execute(select(Balance).where(Balance.owner_id == owner_id))
                return result.scalar_one_or_none()

        async def job_transactions(self, job_id: UUID) -> list[Transaction]:
            async with session_factory() as session:
                result = await session.execute(select(Transaction).where(Transaction.job_id == job_id))
                return list(result.scalars().all())

        async def job_count(self, owner_id: str) -> int:
            async with session_factory() as session:
                result = await session.execute(select(func.count(Job.id)).where(Job.owner_id == owner_id))
                return int(result.scalar())

    return _Fetch()
