"""
Domain Services
"""
from app.domain.services.credential_service import CredentialService
from app.domain.services.notification_service import NotificationDispatcher
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation_service import ReconciliationService
from app.domain.services.webhook_ledger import WebhookLedger
from app.domain.services.webhook_service import WebhookService

__all__ = [
    "CredentialService",
    "NotificationDispatcher",
    "OrderService",
    "ReconciliationService",
    "WebhookLedger",
    "WebhookService",
]
