"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async)
- Fake external services (payment gateway, WhatsApp Cloud API)
- Test data factories (tenant settings, orders)
- Razorpay webhook payload builders
"""
import itertools
import json
import uuid
from datetime import datetime
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.dependencies.providers import get_gateway_factory, get_whatsapp_factory
from app.core.exceptions import GatewayError, WhatsAppError
from app.core.signatures import sign_checkout, sign_webhook_payload
from app.db.database import Base, get_db
from app.db.models.order import Order, OrderStatus
from app.db.models.tenant_settings import TenantSettings
from app.domain.services.gateway.base_gateway import BasePaymentGateway
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test-key-secret"
TEST_WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_maker(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fake External Services
# ============================================================================

class FakeGateway(BasePaymentGateway):
    """Gateway בזיכרון. תשובות מוגדרות מראש לפי מזהה, וכל קריאה נרשמת."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.calls: list[tuple[str, tuple]] = []
        self.created_orders: list[dict[str, Any]] = []
        self.payments: dict[str, dict[str, Any]] = {}
        self.refunds: dict[str, dict[str, Any]] = {}
        self.order_payments: dict[str, list[dict[str, Any]]] = {}
        self.refund_result: dict[str, Any] = {"id": "rfnd_test_1", "status": "processed"}
        self.fail_with: Exception | None = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create_order(self, amount_paise, currency, receipt, notes=None) -> str:
        self.calls.append(("create_order", (amount_paise, currency, receipt)))
        self._maybe_fail()
        gateway_order_id = f"order_test_{next(self._ids)}"
        self.created_orders.append({
            "id": gateway_order_id,
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        return gateway_order_id

    async def fetch_payment(self, payment_id):
        self.calls.append(("fetch_payment", (payment_id,)))
        self._maybe_fail()
        if payment_id not in self.payments:
            raise GatewayError("fetch_payment returned status 404", details={"status_code": 404})
        return self.payments[payment_id]

    async def fetch_refund(self, refund_id):
        self.calls.append(("fetch_refund", (refund_id,)))
        self._maybe_fail()
        if refund_id not in self.refunds:
            raise GatewayError("fetch_refund returned status 404", details={"status_code": 404})
        return self.refunds[refund_id]

    async def list_payments_for_order(self, gateway_order_id):
        self.calls.append(("list_payments_for_order", (gateway_order_id,)))
        self._maybe_fail()
        return list(self.order_payments.get(gateway_order_id, []))

    async def refund(self, payment_id, amount_paise=None):
        self.calls.append(("refund", (payment_id, amount_paise)))
        self._maybe_fail()
        return dict(self.refund_result)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeWhatsAppProvider(BaseWhatsAppProvider):
    """ספק WhatsApp בזיכרון — שומר הודעות שנשלחו, אפשר להכשיל שליחה."""

    def __init__(self) -> None:
        self.sent_texts: list[tuple[str, str]] = []
        self.payment_requests: list[dict[str, Any]] = []
        self.fail_texts = False
        self.fail_payment_requests = False

    @property
    def provider_name(self) -> str:
        return "fake"

    async def send_text(self, to: str, text: str) -> None:
        if self.fail_texts:
            raise WhatsAppError("send_text returned status 500", details={"status_code": 500})
        self.sent_texts.append((to, text))

    async def send_payment_request(
        self, to, *, amount_paise, currency, description, reference_id, metadata=None
    ) -> None:
        if self.fail_payment_requests:
            raise WhatsAppError("send_payment_request returned status 500", details={"status_code": 500})
        self.payment_requests.append({
            "to": to,
            "amount_paise": amount_paise,
            "currency": currency,
            "description": description,
            "reference_id": reference_id,
            "metadata": metadata or {},
        })


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_whatsapp() -> FakeWhatsAppProvider:
    return FakeWhatsAppProvider()


@pytest.fixture
def gateway_factory(fake_gateway: FakeGateway):
    """Factory שמחזיר את ה-fake לכל tenant"""
    def _factory(tenant_id, credentials):
        return fake_gateway
    return _factory


@pytest.fixture
def whatsapp_factory(fake_whatsapp: FakeWhatsAppProvider):
    def _factory(tenant_id, credentials):
        return fake_whatsapp
    return _factory


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, gateway_factory, whatsapp_factory):
    """Create test client with database and external service overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_factory] = lambda: gateway_factory
    app.dependency_overrides[get_whatsapp_factory] = lambda: whatsapp_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def tenant_headers(tenant_id: uuid.UUID) -> dict[str, str]:
    return {"X-Tenant-ID": str(tenant_id)}


@pytest.fixture
def tenant_settings_factory(db_session: AsyncSession):
    """Factory for creating tenant credential sets"""
    async def _create_settings(
        tenant_id: uuid.UUID,
        gateway_key_id: str | None = TEST_KEY_ID,
        gateway_key_secret: str | None = TEST_KEY_SECRET,
        gateway_webhook_secret: str | None = TEST_WEBHOOK_SECRET,
        whatsapp_access_token: str | None = "test-wa-token",
        whatsapp_phone_number_id: str | None = "1234567890",
    ) -> TenantSettings:
        row = TenantSettings(
            tenant_id=tenant_id,
            gateway_key_id=gateway_key_id,
            gateway_key_secret=gateway_key_secret,
            gateway_webhook_secret=gateway_webhook_secret,
            whatsapp_access_token=whatsapp_access_token,
            whatsapp_phone_number_id=whatsapp_phone_number_id,
        )
        db_session.add(row)
        await db_session.commit()
        await db_session.refresh(row)
        return row

    return _create_settings


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating test orders"""
    async def _create_order(
        tenant_id: uuid.UUID,
        status: OrderStatus = OrderStatus.CREATED,
        amount_paise: int = 49900,
        customer_name: str = "Test Customer",
        customer_whatsapp: str = "919876543210",
        gateway_order_id: str | None = None,
        gateway_payment_id: str | None = None,
        gateway_refund_id: str | None = None,
        updated_at: datetime | None = None,
        **fields: Any,
    ) -> Order:
        order = Order(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            customer_name=customer_name,
            customer_whatsapp=customer_whatsapp,
            amount_paise=amount_paise,
            currency="INR",
            status=status,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            gateway_refund_id=gateway_refund_id,
            attempt_count=0,
            **fields,
        )
        if updated_at is not None:
            order.created_at = updated_at
            order.updated_at = updated_at
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
async def configured_tenant(tenant_id: uuid.UUID, tenant_settings_factory) -> uuid.UUID:
    """Tenant with gateway keys, webhook secret and WhatsApp credentials"""
    await tenant_settings_factory(tenant_id)
    return tenant_id


# ============================================================================
# Razorpay Payload Builders
# ============================================================================

_event_counter = itertools.count(1)


def build_razorpay_event(
    event: str,
    *,
    gateway_order_id: str | None = None,
    payment_id: str | None = None,
    refund_id: str | None = None,
    event_id: str | None = "auto",
    created_at: int | None = 1700000000,
) -> bytes:
    """בניית body גולמי של webhook בפורמט Razorpay"""
    body: dict[str, Any] = {"entity": "event", "event": event, "payload": {}}
    if event_id == "auto":
        event_id = f"evt_test_{next(_event_counter)}"
    if event_id is not None:
        body["id"] = event_id
    if created_at is not None:
        body["created_at"] = created_at
    if gateway_order_id or payment_id:
        body["payload"]["payment"] = {"entity": {
            "id": payment_id,
            "order_id": gateway_order_id,
            "status": "captured" if event == "payment.captured" else "failed",
        }}
    if refund_id:
        body["payload"]["refund"] = {"entity": {
            "id": refund_id,
            "payment_id": payment_id,
            "status": "processed",
        }}
    return json.dumps(body).encode("utf-8")


def webhook_headers(raw_body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": sign_webhook_payload(raw_body, secret),
    }


def checkout_signature(gateway_order_id: str, payment_id: str, key_secret: str = TEST_KEY_SECRET) -> str:
    return sign_checkout(gateway_order_id, payment_id, key_secret)


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


# הערה: אין צורך בניקוי ה-ledger בין בדיקות —
# כל בדיקה מקבלת DB in-memory חדש דרך async_engine (function-scoped).
