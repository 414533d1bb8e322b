"""Shared test fixtures for the lending marketplace test suite.

Provides:
    - An in-memory SQLite database (aiosqlite, one shared connection)
    - Principals for each role and bearer tokens for them
    - A scriptable fake oracle adapter and an in-memory idempotency store
    - A FastAPI app + httpx client wired to all of the above
"""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from lending_marketplace.config import Settings
from lending_marketplace.domain.enums import UserRole
from lending_marketplace.domain.exceptions import OracleError
from lending_marketplace.domain.identity import Principal
from lending_marketplace.domain.oracle_protocol import ChainReceipt
from lending_marketplace.infrastructure.database.engine import build_session_factory
from lending_marketplace.infrastructure.database.orm_models import Asset, Base
from lending_marketplace.infrastructure.identity import create_access_token
from lending_marketplace.main import create_app
from lending_marketplace.services.background import BackgroundTaskRunner
from lending_marketplace.verifiers import AssetRuleVerifier

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TEST_JWT_SECRET = "test-signing-secret"


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------


class FakeOracle:
    """OracleAdapter double that records calls and fails on demand.

    `failures` is the number of leading calls (per operation) that raise;
    `delay` makes every call sleep first, to exercise timeouts.
    """

    def __init__(self, failures: int = 0, delay: float = 0.0) -> None:
        self.failures = failures
        self.delay = delay
        self.calls: dict[str, int] = {}
        self.notified: list[str] = []
        self.funded: list[str | None] = []
        self._counter = 0

    async def _call(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.calls[operation] <= self.failures:
            raise OracleError(f"{operation} unavailable", operation)

    def _receipt(self, chain_id: str | None = None) -> ChainReceipt:
        self._counter += 1
        return ChainReceipt(
            chain_id=chain_id if chain_id is not None else str(1000 + self._counter),
            transaction_hash=f"0x{self._counter:064x}",
            block_number=12345678,
        )

    async def tokenize_asset(self, request) -> ChainReceipt:
        await self._call("tokenize_asset")
        return self._receipt()

    async def notify_verification(self, chain_asset_id: str) -> bool:
        await self._call("notify_verification")
        self.notified.append(chain_asset_id)
        return True

    async def record_loan(self, chain_asset_id, amount, interest_rate, term_months) -> ChainReceipt:
        await self._call("record_loan")
        return self._receipt()

    async def fund_loan(self, chain_loan_id) -> ChainReceipt:
        await self._call("fund_loan")
        self.funded.append(chain_loan_id)
        return self._receipt(chain_loan_id)


class InMemoryIdempotencyStore:
    def __init__(self) -> None:
        self.keys: set[str] = set()

    async def claim(self, key: str, value: str = "1") -> bool:
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    async def release(self, key: str) -> None:
        self.keys.discard(key)


# ---------------------------------------------------------------------------
# Configuration & database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite://",
        redis_url="",
        jwt_secret=TEST_JWT_SECRET,
        frontend_url="http://frontend.test",
        oracle_latency_seconds=0,
        background_task_timeout_seconds=2,
        background_max_attempts=3,
        background_retry_wait_seconds=0,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@pytest.fixture
def sme() -> Principal:
    return Principal(id=uuid.uuid4(), email="owner@sme.example.com", role=UserRole.SME)


@pytest.fixture
def customer() -> Principal:
    return Principal(id=uuid.uuid4(), email="client@customer.example.com", role=UserRole.CUSTOMER)


@pytest.fixture
def lender() -> Principal:
    return Principal(id=uuid.uuid4(), email="desk@lender.example.com", role=UserRole.LENDER)


@pytest.fixture
def admin() -> Principal:
    return Principal(id=uuid.uuid4(), email="ops@marketplace.example.com", role=UserRole.ADMIN)


@pytest.fixture
def stranger() -> Principal:
    return Principal(id=uuid.uuid4(), email="someone@else.example.com", role=UserRole.CUSTOMER)


def _auth_headers(principal: Principal) -> dict[str, str]:
    token = create_access_token(principal, TEST_JWT_SECRET)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a principal."""
    return _auth_headers


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def oracle_factory() -> type[FakeOracle]:
    return FakeOracle


@pytest_asyncio.fixture
async def runner() -> AsyncIterator[BackgroundTaskRunner]:
    runner = BackgroundTaskRunner(timeout_seconds=2, max_attempts=3, retry_wait_seconds=0)
    yield runner
    await runner.shutdown()


@pytest.fixture
def idempotency_store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


async def _make_asset(
    session: AsyncSession,
    owner: Principal,
    asset_type: str = "invoice",
    value: Decimal = Decimal("50000"),
    description: str = "Invoice #1042 for consulting services",
) -> Asset:
    """Insert and commit an asset row directly."""
    asset = Asset(
        user_id=owner.id,
        type=asset_type,
        value=value,
        description=description,
        status="pending",
    )
    session.add(asset)
    await session.commit()
    return asset


@pytest.fixture
def make_asset():
    return _make_asset


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def app(settings: Settings, engine: AsyncEngine, oracle: FakeOracle):
    return create_app(
        settings,
        engine=engine,
        oracle=oracle,
        verifier=AssetRuleVerifier(latency_seconds=0),
    )


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    """Provide an async HTTP client wired to the FastAPI app (no real server)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app.state.task_runner.shutdown()
