"""
Notification Dispatcher — הודעת WhatsApp ללקוח פעם אחת לכל סוג.

השדה *_msg_sent_at הוא ה-guard: הודעה נשלחת רק אם הוא ריק.
כשלון שליחה נרשם ב-last_error ולא מבטל את המעבר.
WhatsApp לא מוגדר ל-tenant = דילוג שקט בלי להחתים.

שני מסלולים:
- dispatch(): שולח בתוך הטרנזקציה של הקורא; ההחתמה נשארת רק אחרי הצלחה.
- claim() + deliver(): מחתים בטרנזקציה, הקורא עושה commit, ורק אז
  נשלחת ההודעה מחוץ לנעילת השורה. כשלון שליחה מנקה את ההחתמה
  (רק אם היא עדיין שלנו) ורושם last_error.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.core.logging import get_logger, mask_whatsapp
from app.db.database import utcnow
from app.db.models.order import Order, OrderStatus
from app.db.order_store import OrderStore
from app.domain.services.credential_service import (
    CredentialService,
    MessagingCredentials,
    NotConfigured,
)
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)

logger = get_logger(__name__)

# סטטוס יעד -> שדה ה-guard
NOTIFICATION_GUARDS: dict[OrderStatus, str] = {
    OrderStatus.PAID: "paid_msg_sent_at",
    OrderStatus.FAILED: "failed_msg_sent_at",
    OrderStatus.REFUNDED: "refunded_msg_sent_at",
}

MAX_LAST_ERROR_LENGTH = 1000


def format_amount(amount_paise: int | None) -> str:
    return f"{(amount_paise or 0) / 100:.2f}"


def render_message(order: Order, target: OrderStatus) -> str:
    if target == OrderStatus.PAID:
        return f"✅ Payment received!\nOrder: {order.id}\nAmount: ₹{format_amount(order.amount_paise)}"
    if target == OrderStatus.FAILED:
        return f"❌ Payment failed.\nOrder: {order.id}\nPlease retry."
    if target == OrderStatus.REFUNDED:
        return f"💸 Refund processed.\nOrder: {order.id}"
    raise ValueError(f"No customer notification for status {target}")


def _failure_text(target: OrderStatus, exc: Exception) -> str:
    return f"WhatsApp {target.value.lower()} notification failed: {exc}"[:MAX_LAST_ERROR_LENGTH]


@dataclass(frozen=True)
class PendingNotification:
    """הודעה שה-guard שלה כבר הוחתם וממתינה לשליחה אחרי commit"""
    order_id: uuid.UUID
    tenant_id: uuid.UUID | None
    target: OrderStatus
    to: str
    text: str
    messaging: MessagingCredentials
    claimed_at: datetime

    @property
    def guard_field(self) -> str:
        return NOTIFICATION_GUARDS[self.target]


class NotificationDispatcher:
    """Sends at most one paid / failed / refunded message per order"""

    def __init__(
        self,
        credentials: CredentialService,
        whatsapp_factory: WhatsAppProviderFactory = get_whatsapp_provider,
    ):
        self.credentials = credentials
        self.whatsapp_factory = whatsapp_factory

    async def claim(
        self,
        order: Order,
        target: OrderStatus,
        *,
        now: datetime | None = None,
    ) -> PendingNotification | None:
        """
        Stamp the sent-at guard for ``target`` and describe the message to send.

        The stamp lands in the caller's transaction; call deliver() only
        after that transaction committed. None when nothing is owed.
        """
        guard_field = NOTIFICATION_GUARDS.get(target)
        if guard_field is None:
            return None
        if getattr(order, guard_field) is not None:
            return None

        messaging = await self.credentials.messaging(order.tenant_id)
        if isinstance(messaging, NotConfigured):
            logger.info(
                "WhatsApp not configured for tenant, skipping customer notification",
                extra_data={"order_id": str(order.id), "status": target.value},
            )
            return None

        claimed_at = now or utcnow()
        setattr(order, guard_field, claimed_at)
        return PendingNotification(
            order_id=order.id,
            tenant_id=order.tenant_id,
            target=target,
            to=order.customer_whatsapp,
            text=render_message(order, target),
            messaging=messaging,
            claimed_at=claimed_at,
        )

    async def _send(self, pending: PendingNotification) -> None:
        provider = self.whatsapp_factory(pending.tenant_id, pending.messaging)
        await provider.send_text(pending.to, pending.text)

    def _log_sent(self, pending: PendingNotification) -> None:
        logger.info(
            "Customer notification sent",
            extra_data={
                "order_id": str(pending.order_id),
                "status": pending.target.value,
                "to": mask_whatsapp(pending.to),
            },
        )

    def _log_failed(self, pending: PendingNotification, exc: Exception) -> None:
        logger.warning(
            "Customer notification failed",
            extra_data={
                "order_id": str(pending.order_id),
                "status": pending.target.value,
                "to": mask_whatsapp(pending.to),
                "error": str(exc),
            },
        )

    async def deliver(self, pending: PendingNotification, orders: OrderStore) -> bool:
        """
        Send a claimed notification. No row lock is held while sending.

        On failure the claim is released in a short transaction of its own,
        so a later trigger may try again.

        Returns:
            True if the message went out.
        """
        try:
            await self._send(pending)
        except Exception as exc:
            self._log_failed(pending, exc)
            await self._release(pending, orders, exc)
            return False

        self._log_sent(pending)
        return True

    async def _release(self, pending: PendingNotification, orders: OrderStore, exc: Exception) -> None:
        try:
            order = await orders.get(pending.order_id, for_update=True)
            if order is None or getattr(order, pending.guard_field) != pending.claimed_at:
                # ההחתמה כבר לא שלנו
                await orders.db.rollback()
                return
            setattr(order, pending.guard_field, None)
            order.last_error = _failure_text(pending.target, exc)
            await orders.db.commit()
        except SQLAlchemyError:
            await orders.db.rollback()
            logger.error(
                "Failed to release notification claim",
                extra_data={"order_id": str(pending.order_id), "status": pending.target.value},
                exc_info=True,
            )

    async def dispatch(
        self,
        order: Order,
        target: OrderStatus,
        *,
        now: datetime | None = None,
    ) -> bool:
        """
        Send the notification for ``target`` unless it was already sent.

        Mutates ``order`` (sent-at or last_error); the caller persists it.

        Returns:
            True if a message went out during this call.
        """
        pending = await self.claim(order, target, now=now)
        if pending is None:
            return False

        try:
            await self._send(pending)
        except Exception as exc:
            setattr(order, pending.guard_field, None)
            order.last_error = _failure_text(target, exc)
            self._log_failed(pending, exc)
            return False

        self._log_sent(pending)
        return True
