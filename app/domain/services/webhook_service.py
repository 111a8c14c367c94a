"""
Webhook Service — קליטת אירועי payment gateway.

מחזיר תמיד 200 למקור ה-webhook, חוץ מקלט פגום (400), tenant בלי
webhook secret (400) וחתימה שגויה (401). קונפליקט מעבר, אירוע לא מוכר
והזמנה שלא נמצאה הם הצלחה מבחינת המקור, כדי לא לגרום ל-retry storm.

סדר העבודה בתוך טרנזקציה אחת:
ledger → נעילת ההזמנה → בדיקת ledger חוזרת → חתימה → מעבר → החתמת הודעה → ledger → commit.
הודעת ה-WhatsApp נשלחת רק אחרי ה-commit, בלי נעילה על השורה, כך ש-retry
על version mismatch לא שולח אותה פעמיים.
"""
import json
from dataclasses import dataclass, field, replace
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.logging import get_logger, set_tenant_context
from app.core.signatures import verify_webhook_signature
from app.db.database import utcnow
from app.db.models.order import OrderStatus
from app.db.models.webhook_event import WebhookEventOutcome
from app.db.order_store import OrderStore
from app.domain.services.credential_service import CredentialService, NotConfigured
from app.domain.services.notification_service import NotificationDispatcher, PendingNotification
from app.domain.services.webhook_ledger import WebhookLedger, build_event_key
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)
from app.state_machine.order_transitions import apply_transition, can_transition

logger = get_logger(__name__)

EVENT_TARGETS: dict[str, OrderStatus] = {
    "payment.captured": OrderStatus.PAID,
    "payment.failed": OrderStatus.FAILED,
    "payment.refunded": OrderStatus.REFUNDED,
}

# ניסיון חוזר יחיד כשעדכון מקביל של אותה הזמנה ניצח (version mismatch)
_MAX_ATTEMPTS = 2


@dataclass(frozen=True)
class WebhookResult:
    """What the HTTP layer answers to the webhook source"""
    status_code: int
    outcome: str
    message: str
    # נשלחת אחרי commit; לא חלק מהתשובה
    notification: PendingNotification | None = field(default=None, compare=False, repr=False)

    def to_body(self) -> dict[str, str]:
        return {"status": self.outcome, "message": self.message}


def _ok(outcome: str, message: str) -> WebhookResult:
    return WebhookResult(200, outcome, message)


@dataclass(frozen=True)
class ParsedEvent:
    key: str
    event_type: str
    gateway_order_id: str | None
    gateway_payment_id: str | None
    refund_id: str | None


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    section = payload.get("payload")
    if not isinstance(section, dict):
        return {}
    wrapper = section.get(name)
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_event(raw_body: bytes) -> ParsedEvent | None:
    """Extract the dedup key and correlation ids. None if the body is not a usable event."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, TypeError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None

    event_type = _str_or_none(payload.get("event"))
    if not event_type:
        return None

    payment = _entity(payload, "payment")
    refund = _entity(payload, "refund")

    return ParsedEvent(
        key=build_event_key(_str_or_none(payload.get("id")), event_type, payload.get("created_at")),
        event_type=event_type,
        gateway_order_id=_str_or_none(payment.get("order_id")),
        gateway_payment_id=_str_or_none(payment.get("id")) or _str_or_none(refund.get("payment_id")),
        refund_id=_str_or_none(refund.get("id")),
    )


class WebhookService:
    """Applies signed gateway events to orders exactly once"""

    def __init__(
        self,
        db: AsyncSession,
        whatsapp_factory: WhatsAppProviderFactory = get_whatsapp_provider,
    ):
        self.db = db
        self.orders = OrderStore(db)
        self.ledger = WebhookLedger(db)
        self.credentials = CredentialService(db)
        self.dispatcher = NotificationDispatcher(self.credentials, whatsapp_factory)

    async def ingest(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        if not signature or not signature.strip():
            logger.warning("Webhook rejected: missing signature header")
            return WebhookResult(400, "rejected", "Missing signature")

        event = parse_event(raw_body)
        if event is None:
            logger.warning("Webhook rejected: unparseable payload or missing event type")
            return WebhookResult(400, "rejected", "Invalid payload")

        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                result = await self._process(event, raw_body, signature)
                break
            except StaleDataError:
                await self.db.rollback()
                logger.warning(
                    "Order changed concurrently while applying webhook",
                    extra_data={"event_key": event.key, "attempt": attempt},
                )
            except Exception:
                await self.db.rollback()
                logger.error(
                    "Webhook processing failed",
                    extra_data={"event_key": event.key, "event_type": event.event_type},
                    exc_info=True,
                )
                return _ok("error", "Webhook received")
        else:
            return _ok("error", "Webhook received")

        if result.notification is not None:
            await self.dispatcher.deliver(result.notification, self.orders)
        return result

    async def _process(self, event: ParsedEvent, raw_body: bytes, signature: str) -> WebhookResult:
        log_data = {
            "event_key": event.key,
            "event_type": event.event_type,
            "gateway_order_id": event.gateway_order_id,
            "gateway_payment_id": event.gateway_payment_id,
        }

        if await self.ledger.exists(event.key):
            logger.info("Webhook already processed", extra_data=log_data)
            return _ok("duplicate", "Already processed")

        order = await self.orders.resolve_for_event(event.gateway_order_id, event.gateway_payment_id)
        if order is None:
            logger.info("Webhook does not match any order", extra_data=log_data)
            return await self._finish(event, WebhookEventOutcome.UNMATCHED, _ok("ignored", "No matching order"))

        set_tenant_context(order.tenant_id)
        log_data["order_id"] = str(order.id)

        # שורת ההזמנה נעולה: worker מקביל שכבר סיים את אותו אירוע נראה עכשיו
        if await self.ledger.exists(event.key):
            await self.db.rollback()
            logger.info("Webhook processed concurrently", extra_data=log_data)
            return _ok("duplicate", "Already processed")

        if order.tenant_id is None:
            await self.db.rollback()
            logger.error("Order has no tenant, refusing webhook", extra_data=log_data)
            return WebhookResult(400, "rejected", "Order has no tenant")

        secret = await self.credentials.webhook_secret(order.tenant_id)
        if isinstance(secret, NotConfigured):
            await self.db.rollback()
            logger.warning("Webhook secret not configured for tenant", extra_data=log_data)
            return WebhookResult(400, "rejected", "Webhook secret not configured")

        if not verify_webhook_signature(raw_body, signature, secret):
            await self.db.rollback()
            logger.warning("Webhook rejected: invalid signature", extra_data=log_data)
            return WebhookResult(401, "rejected", "Invalid signature")

        if event.gateway_payment_id and not order.gateway_payment_id:
            order.gateway_payment_id = event.gateway_payment_id

        target = EVENT_TARGETS.get(event.event_type.lower())
        if target is None:
            logger.info("Webhook event type ignored", extra_data=log_data)
            return await self._finish(event, WebhookEventOutcome.IGNORED, _ok("ignored", "Event ignored"))

        if not can_transition(order.status, target):
            logger.warning(
                "Webhook transition blocked",
                extra_data={**log_data, "current_status": order.status.value, "target_status": target.value},
            )
            return await self._finish(event, WebhookEventOutcome.BLOCKED, _ok("blocked", "Transition blocked, ignored"))

        now = utcnow()
        previous = order.status
        apply_transition(order, target, now=now, refund_id=event.refund_id)
        pending = await self.dispatcher.claim(order, target, now=now)

        result = await self._finish(event, WebhookEventOutcome.PROCESSED, _ok("processed", "Processed"))
        if result.outcome == "processed":
            logger.info(
                "Webhook applied",
                extra_data={**log_data, "from_status": previous.value, "to_status": target.value},
            )
            result = replace(result, notification=pending)
        return result

    async def _finish(self, event: ParsedEvent, outcome: str, result: WebhookResult) -> WebhookResult:
        """Write the ledger row and commit the whole unit of work."""
        recorded = await self.ledger.record(
            event.key,
            event.event_type,
            gateway_order_id=event.gateway_order_id,
            gateway_payment_id=event.gateway_payment_id,
            outcome=outcome,
        )
        if not recorded:
            await self.db.rollback()
            return _ok("duplicate", "Already processed")

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Webhook recorded concurrently, discarding changes", extra_data={"event_key": event.key})
            return _ok("duplicate", "Already processed")
        return result
