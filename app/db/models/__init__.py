"""
Database Models
"""
from app.db.models.order import Order, OrderStatus
from app.db.models.tenant_settings import TenantSettings
from app.db.models.webhook_event import WebhookEvent, WebhookEventOutcome

__all__ = [
    "Order",
    "OrderStatus",
    "TenantSettings",
    "WebhookEvent",
    "WebhookEventOutcome",
]
