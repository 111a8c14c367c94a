"""
Fixtures ו-helpers לבדיקות תרחיש מקצה לקצה.

מספק:
- פונקציות שליחה תמציתיות ל-API ול-webhook
- פונקציות אימות DB (סטטוס הזמנה, ledger)
"""
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.order import Order, OrderStatus
from app.db.models.webhook_event import WebhookEvent
from tests.conftest import build_razorpay_event, checkout_signature, webhook_headers

ORDERS_URL = "/api/orders"
WEBHOOK_URL = "/api/webhooks/razorpay"


# ============================================================================
# פונקציות שליחה תמציתיות
# ============================================================================

async def create_order(client, headers: dict, *, amount_paise: int = 49900) -> dict:
    """יצירת הזמנה דרך ה-API — assert 201 ומחזיר JSON"""
    resp = await client.post(
        f"{ORDERS_URL}/",
        json={
            "customer_name": "Priya Sharma",
            "customer_whatsapp": "+91 98765 43210",
            "amount_paise": amount_paise,
            "description": "Blue kurta",
        },
        headers=headers,
    )
    assert resp.status_code == 201, f"create returned {resp.status_code}: {resp.text}"
    return resp.json()


async def order_action(client, headers: dict, order_id: str, action: str, *, json: Optional[dict] = None) -> dict:
    """POST /api/orders/{id}/{action} — assert 200"""
    resp = await client.post(f"{ORDERS_URL}/{order_id}/{action}", json=json, headers=headers)
    assert resp.status_code == 200, f"{action} returned {resp.status_code}: {resp.text}"
    return resp.json()


async def verify_checkout(client, headers: dict, order: dict, payment_id: str) -> dict:
    """אימות checkout עם חתימה תקינה"""
    gateway_order_id = order["gateway_order_id"]
    return await order_action(
        client,
        headers,
        order["id"],
        "verify",
        json={
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": payment_id,
            "signature": checkout_signature(gateway_order_id, payment_id),
        },
    )


async def send_webhook(client, event: str, **kwargs) -> dict:
    """שליחת webhook חתום — assert 200 ומחזיר JSON"""
    raw = build_razorpay_event(event, **kwargs)
    resp = await client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))
    assert resp.status_code == 200, f"webhook returned {resp.status_code}: {resp.text}"
    return resp.json()


async def resend_raw(client, raw: bytes) -> dict:
    """מסירה חוזרת של אותו body בדיוק"""
    resp = await client.post(WEBHOOK_URL, content=raw, headers=webhook_headers(raw))
    assert resp.status_code == 200, f"webhook returned {resp.status_code}: {resp.text}"
    return resp.json()


# ============================================================================
# פונקציות אימות DB
# ============================================================================

async def assert_order_status(
    db_session: AsyncSession,
    order_id: str,
    expected_status: OrderStatus,
) -> Order:
    """אימות סטטוס הזמנה — שליפה טרייה מ-DB, מחזיר את ההזמנה"""
    result = await db_session.execute(
        select(Order).where(Order.id == uuid.UUID(str(order_id))).execution_options(
            populate_existing=True
        )
    )
    order = result.scalar_one()
    assert order.status == expected_status, (
        f"צפי: {expected_status}, בפועל: {order.status}"
    )
    return order


async def assert_ledger_count(
    db_session: AsyncSession,
    gateway_order_id: str,
    expected_count: int,
) -> None:
    """אימות מספר רשומות ledger של gateway order"""
    result = await db_session.execute(
        select(func.count(WebhookEvent.event_id)).where(
            WebhookEvent.gateway_order_id == gateway_order_id
        )
    )
    count = result.scalar()
    assert count == expected_count, (
        f"צפי: {expected_count} רשומות ledger, נמצאו {count}"
    )
