# tests/conftest.py
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import syncbridge.models  # noqa: F401  register every table on Base.metadata
from syncbridge.context import build_context
from syncbridge.core.config import Settings
from syncbridge.database import Base, build_engine, build_session_factory
from syncbridge.main import create_app
from syncbridge.services.sync.context import SyncContext
from tests.mocks.platforms import FakeErp, FakeStorefront

USER_ID = "user-1"


class FakeClock:
    """Controllable time source; ``sleep`` advances the clock instead of waiting."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)


@pytest.fixture
def settings(tmp_path):
    """Provide test settings backed by a throwaway sqlite file"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        SHOPIFY_MAX_REQUESTS_PER_MINUTE=1000,
        SHOPIFY_MAX_REQUESTS_PER_HOUR=100000,
        NETSUITE_MAX_REQUESTS_PER_MINUTE=1000,
        NETSUITE_MAX_REQUESTS_PER_HOUR=100000,
        RATE_LIMIT_CACHE_TTL_SECONDS=0.0,
        RETRY_BASE_DELAY_SECONDS=0.0,
        RETRY_JITTER_MS=0,
        EVENT_HANDLER_TIMEOUT_SECONDS=5.0,
        EVENT_DISPATCH_INTERVAL_SECONDS=0.01,
        BASE_CURRENCY="USD",
        CURRENCY_RATES={"EUR": 1.1},
    )


@pytest.fixture(scope="function")
async def test_engine(settings):
    """Create and configure the test database engine (function-scoped)."""
    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def erp():
    return FakeErp()


@pytest.fixture
def engine_context(settings, session_factory, storefront, erp, clock):
    """Fully wired service graph against the fake platforms."""
    return build_context(
        settings,
        storefront=storefront,
        erp=erp,
        session_factory=session_factory,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def sync_context(engine_context):
    ctx = engine_context
    return SyncContext(
        user_id=USER_ID,
        settings=ctx.settings,
        session_factory=ctx.session_factory,
        storefront=ctx.storefront,
        erp=ctx.erp,
        rate_gate=ctx.rate_gate,
        mappings=ctx.mappings,
        change_tracker=ctx.change_tracker,
        snapshots=ctx.snapshots,
        currency=ctx.currency,
        sleep=ctx.rate_gate.sleep,
    )


@pytest.fixture
def sample_shopify_product():
    """Provide sample Shopify product data for tests"""
    return {
        "id": 101,
        "title": "Test Guitar",
        "body_html": "A test guitar",
        "status": "active",
        "vendor": "TestBrand",
        "product_type": "Guitar",
        "tags": "",
        "variants": [{
            "id": 9001,
            "sku": "TG-123",
            "price": "999.99",
            "inventory_item_id": 7001,
            "inventory_quantity": 3,
        }],
    }


@pytest.fixture
async def client(engine_context):
    """HTTP client for the app wired to the test context. The lifespan is not run."""
    app = create_app(engine_context)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", headers={"X-User-Id": USER_ID}) as ac:
        yield ac
