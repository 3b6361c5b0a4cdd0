"""
Centralized Test Configuration.
"""

import pytest

from decimal import Decimal
from typing import Any, Dict
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.dependencies import get_payment_gateway, get_distance_provider
import backend.app.core.redis_client as redis_client_module
from backend.app.domain.billing.currency import CurrencyConverter
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator
from backend.app.models.car import Car
from backend.app.models.driver_profile import DriverProfile
from backend.app.models.enums import UserRole
from backend.app.models.location import Location
from backend.app.services.distance import FixedDistanceProvider
from backend.app.services.payment_gateway import (
    GatewayCapture, GatewayOrder, GatewayRefund, PaymentGateway
)
from backend.app.services.rate_cache import RateCache
from backend.tests.helpers import create_user

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            self.ttls.pop(key, None)
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.ttls = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    `capture_status` decides what the next capture reports; `failures` maps a
    method name to the exception it raises.
    """

    def __init__(self):
        self.calls = []
        self.capture_status = "COMPLETED"
        self.failures: Dict[str, Exception] = {}
        self._seq = 0

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _record(self, method: str, **kwargs):
        self.calls.append((method, kwargs))
        if method in self.failures:
            raise self.failures[method]

    async def create_order(self, reference_id, description, custom_id, amount, currency) -> GatewayOrder:
        self._record("create_order", reference_id=reference_id, custom_id=custom_id, amount=amount, currency=currency)
        self._seq += 1
        order_id = f"ORDER-{self._seq:04d}"
        return GatewayOrder(
            order_id=order_id,
            status="CREATED",
            approval_url=f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}",
            raw={"id": order_id, "status": "CREATED"},
        )

    async def capture_order(self, order_id: str) -> GatewayCapture:
        self._record("capture_order", order_id=order_id)
        if self.capture_status != "COMPLETED":
            return GatewayCapture(
                order_id=order_id,
                status=self.capture_status,
                completed=False,
                raw={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": self.capture_status}]},
            )
        capture_id = f"CAPTURE-{order_id}"
        return GatewayCapture(
            order_id=order_id,
            status="COMPLETED",
            completed=True,
            capture_id=capture_id,
            payer_id="PAYER123",
            payer_email="payer@example.com",
            raw={
                "id": order_id,
                "status": "COMPLETED",
                "payer": {"payer_id": "PAYER123", "email_address": "payer@example.com"},
                "purchase_units": [{"payments": {"captures": [{"id": capture_id, "status": "COMPLETED"}]}}],
            },
        )

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        self._record("get_order", order_id=order_id)
        return {"id": order_id, "status": "APPROVED"}

    async def refund_capture(self, capture_id, amount=None, currency=None, note=None) -> GatewayRefund:
        self._record("refund_capture", capture_id=capture_id, amount=amount, currency=currency, note=note)
        refund_id = f"REFUND-{capture_id}"
        return GatewayRefund(refund_id=refund_id, status="COMPLETED", raw={"id": refund_id, "status": "COMPLETED"})


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_distance_provider] = lambda: FixedDistanceProvider(Decimal("10"))
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_payment_gateway, None)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session

# Independent sessions, e.g. for concurrent callbacks
@pytest.fixture
def session_factory():
    return TestingSessionLocal

@pytest.fixture
def converter(redis_client_session):
    return CurrencyConverter(cache=RateCache(redis_client_session))

@pytest.fixture
def orchestrator(db_session, fake_gateway, converter):
    return PaymentOrchestrator(db=db_session, gateway=fake_gateway, converter=converter)


# Catalog data

@pytest.fixture
async def catalog(db_session):
    """
    Users, a location, a car and a driver profile.

    Car: 50,000/h, 400,000/day after 10h, deposit 500,000, overtime 20,000/h,
    delivery at 10,000/km up to 20km.
    """
    customer = await create_user(db_session, "customer", UserRole.CUSTOMER)
    other_customer = await create_user(db_session, "other_customer", UserRole.CUSTOMER)
    admin = await create_user(db_session, "admin", UserRole.ADMIN)
    owner = await create_user(db_session, "owner", UserRole.OWNER)
    driver_user = await create_user(db_session, "driver", UserRole.DRIVER)

    location = Location(
        name="District 1 Hub",
        address="1 Le Loi, District 1, Ho Chi Minh City",
        latitude=Decimal("10.77258000"),
        longitude=Decimal("106.69805000"),
    )
    db_session.add(location)
    await db_session.flush()

    car = Car(
        owner_id=owner.id,
        location_id=location.id,
        name="Toyota Vios 2023",
        model="Vios",
        hourly_rate=Decimal("50000"),
        daily_rate=Decimal("400000"),
        daily_hour_threshold=10,
        deposit_amount=Decimal("500000"),
        overtime_fee_per_hour=Decimal("20000"),
        is_delivery_available=True,
        delivery_fee_per_km=Decimal("10000"),
        max_delivery_distance_km=20,
    )
    driver = DriverProfile(
        user_id=driver_user.id,
        hourly_fee=Decimal("30000"),
        daily_fee=Decimal("250000"),
        daily_hour_threshold=10,
        is_available_for_booking=True,
    )
    db_session.add_all([car, driver])
    await db_session.commit()

    return {
        "customer": customer,
        "other_customer": other_customer,
        "admin": admin,
        "owner": owner,
        "location": location,
        "car": car,
        "driver": driver,
    }


