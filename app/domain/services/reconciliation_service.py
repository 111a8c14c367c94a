"""
Reconciliation Service — סנכרון הזמנה מול ה-gateway כשייתכן ש-webhook הוחמץ.

סדר עדיפויות: refund שמור → payment שמור → רשימת payments של ה-gateway order.
כברירת מחדל המעברים עוברים דרך אותה טבלת מעברים כמו webhooks
(RECONCILIATION_ENFORCE_TRANSITIONS). כל חריגה באלגוריתם הופכת
ל-ReconciliationError עם הודעה שמיועדת ללקוח.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    OrderAccessDeniedError,
    OrderNotFoundError,
    OrderTenantMissingError,
    ReconciliationError,
)
from app.core.logging import get_logger, log_async_operation, set_tenant_context
from app.db.database import utcnow
from app.db.models.order import Order, OrderStatus
from app.db.order_store import OrderStore
from app.domain.services.credential_service import CredentialService, require
from app.domain.services.gateway.base_gateway import BasePaymentGateway
from app.domain.services.gateway.gateway_factory import GatewayFactory, get_payment_gateway
from app.domain.services.notification_service import NotificationDispatcher
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)
from app.state_machine.order_transitions import apply_transition, can_transition

logger = get_logger(__name__)

REFUND_STATUS_TARGETS: dict[str, OrderStatus] = {
    "processed": OrderStatus.REFUNDED,
    "pending": OrderStatus.REFUND_PENDING,
}

PAYMENT_STATUS_TARGETS: dict[str, OrderStatus] = {
    "captured": OrderStatus.PAID,
    "failed": OrderStatus.FAILED,
    "authorized": OrderStatus.PAYMENT_SENT,
    "created": OrderStatus.PAYMENT_SENT,
}

# סטטוסים שבהם webhook עשוי להיות חסר
STALE_CANDIDATE_STATUSES = (OrderStatus.PAYMENT_SENT, OrderStatus.REFUND_PENDING)


def _status_of(entity: dict[str, Any]) -> str:
    return str(entity.get("status") or "").strip().lower()


def _created_at(entity: dict[str, Any]) -> int:
    try:
        return int(entity.get("created_at") or 0)
    except (TypeError, ValueError):
        return 0


def select_latest_payment(payments: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Payment with the greatest ``created_at``; on a tie the last one listed wins."""
    latest = None
    for payment in payments:
        if latest is None or _created_at(payment) >= _created_at(latest):
            latest = payment
    return latest


class ReconciliationService:
    """Pulls the gateway's view of an order and applies it locally"""

    def __init__(
        self,
        db: AsyncSession,
        gateway_factory: GatewayFactory = get_payment_gateway,
        whatsapp_factory: WhatsAppProviderFactory = get_whatsapp_provider,
        enforce_transitions: bool | None = None,
    ):
        self.db = db
        self.orders = OrderStore(db)
        self.credentials = CredentialService(db)
        self.dispatcher = NotificationDispatcher(self.credentials, whatsapp_factory)
        self.gateway_factory = gateway_factory
        self.enforce_transitions = (
            settings.RECONCILIATION_ENFORCE_TRANSITIONS
            if enforce_transitions is None else enforce_transitions
        )

    async def reconcile(self, order_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> Order:
        """
        Sync one order against the gateway.

        Args:
            order_id: Order to sync.
            tenant_id: Caller's tenant. None for internal callers (periodic sweep).

        Raises:
            OrderNotFoundError / OrderAccessDeniedError: before any gateway work.
            ReconciliationError: anything that goes wrong while syncing.
        """
        order = await self.orders.get(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)
        if tenant_id is not None and order.tenant_id != tenant_id:
            await self.db.rollback()
            raise OrderAccessDeniedError(order_id)

        set_tenant_context(order.tenant_id)

        try:
            if order.tenant_id is None:
                raise OrderTenantMissingError(order.id)
            await self._sync(order)
            await self.db.commit()
        except AppException as exc:
            await self.db.rollback()
            logger.warning(
                "Order sync failed",
                extra_data={"order_id": str(order_id), "error_code": exc.error_code.value, "error": exc.message},
            )
            raise ReconciliationError(exc.message, details={"order_id": str(order_id)})
        except Exception:
            await self.db.rollback()
            logger.error("Order sync failed unexpectedly", extra_data={"order_id": str(order_id)}, exc_info=True)
            raise ReconciliationError("unexpected error while contacting the payment gateway")

        return order

    async def _sync(self, order: Order) -> None:
        if order.gateway_refund_id:
            gateway = await self._gateway_for(order)
            refund = await gateway.fetch_refund(order.gateway_refund_id)
            target = REFUND_STATUS_TARGETS.get(_status_of(refund))
            if target is not None:
                await self._move(order, target, source="refund", refund_id=order.gateway_refund_id)
            return

        if order.gateway_payment_id:
            gateway = await self._gateway_for(order)
            payment = await gateway.fetch_payment(order.gateway_payment_id)
            await self._apply_payment(order, payment)
            return

        if order.gateway_order_id:
            gateway = await self._gateway_for(order)
            payments = await gateway.list_payments_for_order(order.gateway_order_id)
            latest = select_latest_payment(payments)
            if latest is None:
                return
            payment_id = str(latest.get("id") or "").strip()
            if payment_id:
                order.gateway_payment_id = payment_id
            await self._apply_payment(order, latest)
            return

        logger.info("Order has no gateway correlation yet, nothing to sync", extra_data={"order_id": str(order.id)})

    async def _gateway_for(self, order: Order) -> BasePaymentGateway:
        creds = require(await self.credentials.gateway(order.tenant_id))
        return self.gateway_factory(order.tenant_id, creds)

    async def _apply_payment(self, order: Order, payment: dict[str, Any]) -> None:
        target = PAYMENT_STATUS_TARGETS.get(_status_of(payment))
        if target is not None:
            await self._move(order, target, source="payment")

    async def _move(
        self,
        order: Order,
        target: OrderStatus,
        *,
        source: str,
        refund_id: str | None = None,
    ) -> bool:
        if self.enforce_transitions and not can_transition(order.status, target):
            logger.warning(
                "Sync transition blocked",
                extra_data={
                    "order_id": str(order.id),
                    "source": source,
                    "current_status": order.status.value,
                    "target_status": target.value,
                },
            )
            return False

        now = utcnow()
        previous = order.status
        changed = apply_transition(order, target, now=now, refund_id=refund_id)
        await self.dispatcher.dispatch(order, target, now=now)
        if changed:
            logger.info(
                "Order status synced from gateway",
                extra_data={
                    "order_id": str(order.id),
                    "source": source,
                    "from_status": previous.value,
                    "to_status": target.value,
                },
            )
        return changed

    @log_async_operation("reconcile_stale_orders")
    async def reconcile_stale(
        self,
        *,
        older_than: timedelta | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Sync orders that sat in PAYMENT_SENT / REFUND_PENDING without a webhook."""
        now = now or utcnow()
        cutoff = now - (older_than or timedelta(minutes=settings.RECONCILE_STALE_AFTER_MINUTES))
        order_ids = await self.orders.list_ids_in_status(
            STALE_CANDIDATE_STATUSES,
            updated_before=cutoff,
            limit=limit or settings.RECONCILE_BATCH_SIZE,
        )
        # סוגרים את טרנזקציית הקריאה לפני שנועלים שורות אחת-אחת
        await self.db.rollback()

        stats = {"checked": 0, "failed": 0}
        for order_id in order_ids:
            stats["checked"] += 1
            try:
                await self.reconcile(order_id)
            except (ReconciliationError, OrderNotFoundError):
                stats["failed"] += 1
        return stats
