"""
Tests for the Razorpay webhook endpoint
"""
import pytest

from app.db.models.order import OrderStatus
from tests.conftest import build_razorpay_event, webhook_headers

WEBHOOK_URL = "/api/webhooks/razorpay"


class TestRazorpayWebhookEndpoint:

    @pytest.mark.integration
    async def test_captured_event(self, test_client, db_session, order_factory, configured_tenant, fake_whatsapp):
        order = await order_factory(configured_tenant, status=OrderStatus.PAYMENT_SENT, gateway_order_id="order_http")
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_http", payment_id="pay_http")

        response = await test_client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))

        assert response.status_code == 200
        assert response.json() == {"status": "processed", "message": "Processed"}
        await db_session.refresh(order)
        assert order.status == OrderStatus.PAID
        assert len(fake_whatsapp.sent_texts) == 1

    @pytest.mark.integration
    async def test_missing_signature_header(self, test_client):
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_x")

        response = await test_client.post(WEBHOOK_URL, content=raw, headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["status"] == "rejected"

    @pytest.mark.integration
    async def test_invalid_signature(self, test_client, order_factory, configured_tenant):
        await order_factory(configured_tenant, status=OrderStatus.PAYMENT_SENT, gateway_order_id="order_bad")
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_bad")

        response = await test_client.post(
            WEBHOOK_URL,
            content=raw,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": "0" * 64},
        )

        assert response.status_code == 401
        assert response.json() == {"status": "rejected", "message": "Invalid signature"}

    @pytest.mark.integration
    async def test_signature_over_exact_bytes(self, test_client, order_factory, configured_tenant):
        """body שעבר re-serialization לא עובר אימות"""
        await order_factory(configured_tenant, status=OrderStatus.PAYMENT_SENT, gateway_order_id="order_bytes")
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_bytes")
        headers = webhook_headers(raw)

        response = await test_client.post(WEBHOOK_URL, content=raw.replace(b", ", b","), headers=headers)

        assert response.status_code == 401

    @pytest.mark.integration
    async def test_duplicate_delivery(self, test_client, order_factory, configured_tenant, fake_whatsapp):
        await order_factory(configured_tenant, status=OrderStatus.PAYMENT_SENT, gateway_order_id="order_twice")
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_twice", payment_id="pay_twice")

        first = await test_client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))
        second = await test_client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))

        assert first.json()["status"] == "processed"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        assert len(fake_whatsapp.sent_texts) == 1

    @pytest.mark.integration
    async def test_response_carries_correlation_id(self, test_client):
        raw = build_razorpay_event("payment.captured", gateway_order_id="order_none")

        response = await test_client.post(
            WEBHOOK_URL, content=raw, headers={**webhook_headers(raw), "X-Correlation-ID": "corr-123"}
        )

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-123"

    @pytest.mark.integration
    async def test_deeply_nested_body_rejected(self, test_client):
        """JSON עמוק מדי — 400 invalid payload, לא 500"""
        raw = b"[" * 200000 + b"]" * 200000

        response = await test_client.post(
            WEBHOOK_URL,
            content=raw,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": "ab"},
        )

        assert response.status_code == 400
        assert response.json() == {"status": "rejected", "message": "Invalid payload"}


class TestWebhookThroughput:
    """ה-gateway שולח את כל האירועים מאותן כתובות — אין 429"""

    @pytest.mark.integration
    async def test_burst_from_one_address_never_throttled(self, test_client, db_session, configured_tenant):
        from sqlalchemy import func, select

        from app.db.models.webhook_event import WebhookEvent

        statuses = set()
        for i in range(150):
            raw = build_razorpay_event("payment.captured", gateway_order_id=f"order_burst_{i}")
            response = await test_client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))
            statuses.add(response.status_code)

        assert statuses == {200}
        count = await db_session.scalar(
            select(func.count(WebhookEvent.event_id)).where(WebhookEvent.gateway_order_id.like("order_burst_%"))
        )
        assert count == 150
