"""
Order Service - Client-facing order operations

יצירה, שליחת בקשת תשלום, אימות checkout, retry, refund ו-checkout URL.
כל פעולה שמשנה הזמנה נועלת את השורה (SELECT ... FOR UPDATE), עובדת
בטרנזקציה אחת ומסיימת ב-commit או rollback.
"""
import time
import uuid
from datetime import datetime, timedelta
from typing import Sequence
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    AuthenticationError,
    ConflictError,
    ErrorCode,
    GatewayError,
    InvalidStateTransitionError,
    MissingCorrelationError,
    OrderAccessDeniedError,
    OrderNotFoundError,
    OrderTenantMissingError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation, mask_whatsapp, set_tenant_context
from app.core.signatures import verify_checkout_signature
from app.core.validation import (
    MAX_DESCRIPTION_LENGTH,
    AmountValidator,
    TextSanitizer,
    WhatsAppNumberValidator,
)
from app.db.database import utcnow
from app.db.models.order import Order, OrderStatus
from app.db.order_store import OrderStore
from app.domain.services.credential_service import CredentialService, NotConfigured, require
from app.domain.services.gateway.base_gateway import BasePaymentGateway
from app.domain.services.gateway.gateway_factory import GatewayFactory, get_payment_gateway
from app.domain.services.notification_service import MAX_LAST_ERROR_LENGTH, NotificationDispatcher
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)
from app.state_machine.order_transitions import apply_transition, can_transition, is_terminal

logger = get_logger(__name__)

# מותר לשלוח (או לשלוח מחדש) בקשת תשלום רק מהסטטוסים האלה; FAILED עובר דרך retry
SENDABLE_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PAYMENT_SENT})

# הזמנות שאפשר להכריז עליהן כנטושות
EXPIRABLE_STATUSES = (OrderStatus.CREATED, OrderStatus.PAYMENT_SENT)


def payment_reference_id(order: Order) -> str:
    return f"pay_{order.id}"


def build_receipt(order: Order) -> str:
    return f"cpk_{order.id.hex[:12]}"


def build_retry_receipt(order: Order, now_millis: int | None = None) -> str:
    millis = now_millis if now_millis is not None else int(time.time() * 1000)
    return f"cpk_retry_{order.id.hex[:10]}_{millis}"


class OrderService:
    """Service for order lifecycle operations requested by a tenant"""

    def __init__(
        self,
        db: AsyncSession,
        gateway_factory: GatewayFactory = get_payment_gateway,
        whatsapp_factory: WhatsAppProviderFactory = get_whatsapp_provider,
    ):
        self.db = db
        self.orders = OrderStore(db)
        self.credentials = CredentialService(db)
        self.dispatcher = NotificationDispatcher(self.credentials, whatsapp_factory)
        self.gateway_factory = gateway_factory
        self.whatsapp_factory = whatsapp_factory

    # ==================== Create / Read ====================

    async def create(
        self,
        tenant_id: uuid.UUID,
        *,
        customer_name: str,
        customer_whatsapp: str,
        amount_paise: int,
        description: str | None = None,
        currency: str | None = None,
    ) -> Order:
        """Create an order in CREATED for the calling tenant"""
        if tenant_id is None:
            raise ValidationException("tenant_id is required", field="tenant_id")

        is_valid, error = AmountValidator.validate(amount_paise)
        if not is_valid:
            raise ValidationException(error, field="amount_paise")

        whatsapp = WhatsAppNumberValidator.normalize(customer_whatsapp)
        if not WhatsAppNumberValidator.validate(whatsapp):
            raise ValidationException(
                "customer_whatsapp must be 10-20 digits including country code",
                field="customer_whatsapp",
            )

        name = TextSanitizer.sanitize(customer_name, max_length=120)
        if not name:
            raise ValidationException("customer_name is required", field="customer_name")

        if description is not None and len(description.strip()) > MAX_DESCRIPTION_LENGTH:
            raise ValidationException(
                f"description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )

        order = Order(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            customer_name=name,
            customer_whatsapp=whatsapp,
            amount_paise=amount_paise,
            currency=(currency or settings.DEFAULT_CURRENCY).upper(),
            description=TextSanitizer.sanitize(description, max_length=MAX_DESCRIPTION_LENGTH) or None,
            status=OrderStatus.CREATED,
            attempt_count=0,
        )
        self.orders.add(order)
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "Order created",
            extra_data={
                "order_id": str(order.id),
                "tenant_id": str(tenant_id),
                "amount_paise": amount_paise,
                "whatsapp": mask_whatsapp(whatsapp),
            },
        )
        return order

    async def get(self, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
        order = await self.orders.get(order_id)
        return self._check_owner(order, order_id, tenant_id)

    async def list_orders(
        self,
        tenant_id: uuid.UUID,
        *,
        status: OrderStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Order]:
        return await self.orders.list_by_tenant(tenant_id, status=status, limit=limit, offset=offset)

    async def _lock(self, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
        order = await self.orders.get(order_id, for_update=True)
        try:
            order = self._check_owner(order, order_id, tenant_id)
        except AppException:
            await self.db.rollback()
            raise
        set_tenant_context(order.tenant_id)
        return order

    @staticmethod
    def _check_owner(order: Order | None, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.tenant_id is None:
            raise OrderTenantMissingError(order_id)
        if order.tenant_id != tenant_id:
            raise OrderAccessDeniedError(order_id)
        return order

    async def _gateway(self, order: Order) -> BasePaymentGateway:
        creds = require(await self.credentials.gateway(order.tenant_id))
        return self.gateway_factory(order.tenant_id, creds)

    async def _rollback_and_raise(self, exc: Exception) -> None:
        await self.db.rollback()
        raise exc

    # ==================== Payment request ====================

    async def _send_whatsapp_payment_request(self, order: Order) -> None:
        """בקשת תשלום בצ'אט — best effort. כשלון נרשם ב-last_error ולא עוצר את הזרימה."""
        messaging = await self.credentials.messaging(order.tenant_id)
        if isinstance(messaging, NotConfigured):
            logger.info(
                "WhatsApp not configured for tenant, payment request not sent in chat",
                extra_data={"order_id": str(order.id)},
            )
            return

        try:
            provider = self.whatsapp_factory(order.tenant_id, messaging)
            await provider.send_payment_request(
                order.customer_whatsapp,
                amount_paise=order.amount_paise,
                currency=order.currency,
                description=order.description or settings.DEFAULT_PAYMENT_DESCRIPTION,
                reference_id=order.payment_reference_id,
                metadata={
                    "gateway_order_id": order.gateway_order_id,
                    "internal_order_id": str(order.id),
                },
            )
        except Exception as exc:
            order.last_error = f"WhatsApp payment request failed: {exc}"[:MAX_LAST_ERROR_LENGTH]
            logger.warning(
                "WhatsApp payment request failed",
                extra_data={
                    "order_id": str(order.id),
                    "to": mask_whatsapp(order.customer_whatsapp),
                    "error": str(exc),
                },
            )

    async def send_payment_request(self, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
        """
        Create a gateway order and send the customer an in-chat payment request.

        Raises:
            ConflictError: order is terminal or not in CREATED / PAYMENT_SENT.
            ConfigurationError: tenant has no gateway keys.
            GatewayError: gateway order creation failed (nothing is persisted).
        """
        order = await self._lock(order_id, tenant_id)

        if is_terminal(order.status) or order.status not in SENDABLE_STATUSES:
            await self._rollback_and_raise(InvalidStateTransitionError(
                order.status.value,
                OrderStatus.PAYMENT_SENT.value,
                message=f"Cannot send payment request for order in status {order.status.value}",
            ))

        try:
            gateway = await self._gateway(order)
            gateway_order_id = await gateway.create_order(
                order.amount_paise,
                order.currency,
                build_receipt(order),
                notes={"customer": order.customer_name, "whatsapp": order.customer_whatsapp},
            )
        except Exception:
            await self.db.rollback()
            raise

        now = utcnow()
        order.gateway_order_id = gateway_order_id
        order.payment_reference_id = payment_reference_id(order)
        apply_transition(order, OrderStatus.PAYMENT_SENT, now=now)

        await self._send_whatsapp_payment_request(order)
        await self.db.commit()

        logger.info(
            "Payment request sent",
            extra_data={"order_id": str(order.id), "gateway_order_id": gateway_order_id},
        )
        return order

    # ==================== Checkout verification ====================

    async def verify_payment(
        self,
        order_id: uuid.UUID,
        tenant_id: uuid.UUID,
        *,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> Order:
        """
        Verify the checkout-success signature and mark the order PAID.

        Raises:
            ConfigurationError: tenant key secret missing.
            MissingCorrelationError: no gateway order was created yet.
            ValidationException: gateway order id does not match the order.
            AuthenticationError: signature invalid (nothing is persisted).
        """
        order = await self._lock(order_id, tenant_id)

        key_secret = await self.credentials.key_secret(order.tenant_id)
        if isinstance(key_secret, NotConfigured):
            await self._rollback_and_raise(key_secret.to_error())

        now = utcnow()

        if order.status == OrderStatus.PAID:
            if not order.gateway_payment_id and gateway_payment_id and gateway_payment_id.strip():
                order.gateway_payment_id = gateway_payment_id.strip()
                if order.paid_at is None:
                    order.paid_at = now
                if order.verified_at is None:
                    order.verified_at = now
            # commit גם בלי שינוי: משחרר את הנעילה ומשאיר את האובייקט טעון
            await self.db.commit()
            return order

        if not order.gateway_order_id:
            await self._rollback_and_raise(MissingCorrelationError(order.id))

        if order.gateway_order_id != (gateway_order_id or "").strip():
            await self._rollback_and_raise(ValidationException(
                "Gateway order id does not match this order",
                field="gateway_order_id",
                error_code=ErrorCode.ORDER_GATEWAY_MISMATCH,
            ))

        if not verify_checkout_signature(order.gateway_order_id, gateway_payment_id, signature, key_secret):
            logger.warning("Invalid checkout signature", extra_data={"order_id": str(order.id)})
            await self._rollback_and_raise(AuthenticationError("Invalid checkout signature"))

        if not can_transition(order.status, OrderStatus.PAID):
            logger.warning(
                "Checkout verification transition blocked",
                extra_data={"order_id": str(order.id), "current_status": order.status.value},
            )
            await self.db.commit()
            return order

        order.gateway_payment_id = gateway_payment_id.strip()
        order.verified_at = now
        apply_transition(order, OrderStatus.PAID, now=now)
        await self.dispatcher.dispatch(order, OrderStatus.PAID, now=now)
        await self.db.commit()

        logger.info(
            "Payment verified",
            extra_data={"order_id": str(order.id), "gateway_payment_id": order.gateway_payment_id},
        )
        return order

    # ==================== Retry ====================

    async def retry(self, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
        """Issue a fresh gateway order for a FAILED order and resend the payment request."""
        order = await self._lock(order_id, tenant_id)

        if order.status != OrderStatus.FAILED:
            await self._rollback_and_raise(InvalidStateTransitionError(
                order.status.value,
                OrderStatus.PAYMENT_SENT.value,
                message="Retry allowed only when status is FAILED",
            ))

        try:
            gateway = await self._gateway(order)
            new_gateway_order_id = await gateway.create_order(
                order.amount_paise,
                order.currency,
                build_retry_receipt(order),
                notes={
                    "customer": order.customer_name,
                    "whatsapp": order.customer_whatsapp,
                    "retry": True,
                    "internalOrderId": str(order.id),
                },
            )
        except Exception:
            await self.db.rollback()
            raise

        now = utcnow()
        apply_transition(order, OrderStatus.PAYMENT_SENT, now=now, via_retry=True)
        order.gateway_order_id = new_gateway_order_id
        order.payment_reference_id = payment_reference_id(order)

        await self._send_whatsapp_payment_request(order)
        await self.db.commit()

        logger.info(
            "Retry initiated",
            extra_data={
                "order_id": str(order.id),
                "attempt_count": order.attempt_count,
                "gateway_order_id": new_gateway_order_id,
            },
        )
        return order

    # ==================== Refund ====================

    async def refund(
        self,
        order_id: uuid.UUID,
        tenant_id: uuid.UUID,
        amount_paise: int | None = None,
    ) -> Order:
        """
        Refund a PAID order, fully or partially.

        The gateway is called first. On gateway failure the order stays PAID,
        the error is kept in last_error and GatewayError is raised.
        """
        order = await self._lock(order_id, tenant_id)

        if order.status != OrderStatus.PAID:
            await self._rollback_and_raise(InvalidStateTransitionError(
                order.status.value,
                OrderStatus.REFUND_PENDING.value,
                message="Refund allowed only when status is PAID",
            ))
        if not order.gateway_payment_id:
            await self._rollback_and_raise(ConflictError(
                "Cannot refund: gateway payment id is missing",
                details={"order_id": str(order.id)},
            ))
        if amount_paise is not None:
            is_valid, error = AmountValidator.validate(amount_paise, min_value=1, max_value=order.amount_paise)
            if not is_valid:
                await self._rollback_and_raise(ValidationException(error, field="amount_paise"))

        try:
            gateway = await self._gateway(order)
        except AppException:
            await self.db.rollback()
            raise

        try:
            refund = await gateway.refund(order.gateway_payment_id, amount_paise)
        except Exception as exc:
            order.last_error = f"Refund failed: {exc}"[:MAX_LAST_ERROR_LENGTH]
            order.updated_at = utcnow()
            await self.db.commit()
            logger.error(
                "Refund failed",
                extra_data={"order_id": str(order.id), "payment_id": order.gateway_payment_id, "error": str(exc)},
                exc_info=True,
            )
            raise GatewayError("Refund failed. Check server logs.", details={"order_id": str(order.id)})

        refund_id = str(refund.get("id") or "").strip() or None
        refund_status = str(refund.get("status") or "").strip().lower()
        target = OrderStatus.REFUNDED if refund_status == "processed" else OrderStatus.REFUND_PENDING

        now = utcnow()
        apply_transition(order, target, now=now, refund_id=refund_id)
        await self.dispatcher.dispatch(order, target, now=now)
        await self.db.commit()

        logger.info(
            "Refund requested",
            extra_data={
                "order_id": str(order.id),
                "refund_id": refund_id,
                "amount_paise": amount_paise or order.amount_paise,
                "status": target.value,
            },
        )
        return order

    # ==================== Checkout URL ====================

    async def checkout_url(self, order_id: uuid.UUID, tenant_id: uuid.UUID) -> str:
        order = await self.get(order_id, tenant_id)
        if not order.gateway_order_id:
            raise MissingCorrelationError(order.id)

        creds = require(await self.credentials.gateway(order.tenant_id))
        query = urlencode({
            "dbOrderId": str(order.id),
            "orderId": order.gateway_order_id,
            "keyId": creds.key_id,
            "amount": order.amount_paise,
            "currency": order.currency,
            "name": settings.APP_NAME,
            "desc": f"Order {order.id}",
        })
        return f"{settings.CHECKOUT_BASE_URL}?{query}"

    # ==================== Expiry ====================

    @log_async_operation("expire_abandoned_orders")
    async def expire_abandoned(
        self,
        *,
        older_than: timedelta | None = None,
        limit: int = 500,
        now: datetime | None = None,
    ) -> int:
        """Move orders never paid within ORDER_EXPIRY_HOURS to EXPIRED."""
        now = now or utcnow()
        cutoff = now - (older_than or timedelta(hours=settings.ORDER_EXPIRY_HOURS))
        order_ids = await self.orders.list_ids_in_status(
            EXPIRABLE_STATUSES,
            updated_before=cutoff,
            limit=limit,
            without_payment=True,
        )

        expired = 0
        for order_id in order_ids:
            order = await self.orders.get(order_id, for_update=True)
            # ייתכן שההזמנה השתנתה מאז השאילתה
            if (
                order is None
                or order.gateway_payment_id
                or order.updated_at >= cutoff
                or not can_transition(order.status, OrderStatus.EXPIRED)
                or order.status == OrderStatus.EXPIRED
            ):
                await self.db.rollback()
                continue
            apply_transition(order, OrderStatus.EXPIRED, now=now)
            await self.db.commit()
            expired += 1
            logger.info("Order expired", extra_data={"order_id": str(order.id)})
        return expired
