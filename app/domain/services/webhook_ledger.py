"""
Webhook Ledger — idempotency של אירועי gateway.

בודקים exists() לפני כל עבודה עם תופעות לוואי, וכותבים record() פעם אחת
בסוף העיבוד (גם כשהאירוע נדחה במכוון). INSERT מקביל של אותו מפתח נכשל
על ה-primary key; הקורא מתייחס לזה כ"כבר טופל" ומבטל את כל יחידת העבודה.
"""
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.webhook_event import WebhookEvent, WebhookEventOutcome

logger = get_logger(__name__)


def build_event_key(event_id: str | None, event_type: str, created_at: object | None) -> str:
    """Native event id, or ``fallback|<event type>|<created_at>`` when the gateway sent none.

    Two distinct id-less events of the same type in the same second share a key.
    """
    if event_id and str(event_id).strip():
        return str(event_id).strip()
    return f"fallback|{event_type}|{created_at if created_at is not None else 0}"


class WebhookLedger:
    """Append-only ledger of processed gateway events"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists(self, event_key: str) -> bool:
        result = await self.db.execute(
            select(WebhookEvent.event_id).where(WebhookEvent.event_id == event_key)
        )
        return result.scalar_one_or_none() is not None

    async def record(
        self,
        event_key: str,
        event_type: str,
        *,
        gateway_order_id: str | None = None,
        gateway_payment_id: str | None = None,
        outcome: str = WebhookEventOutcome.PROCESSED,
        processed_at: datetime | None = None,
    ) -> bool:
        """
        Insert the ledger row inside a savepoint.

        Returns:
            False if another worker already recorded the same key.
        """
        try:
            async with self.db.begin_nested():
                self.db.add(WebhookEvent(
                    event_id=event_key,
                    event_type=event_type,
                    gateway_order_id=gateway_order_id,
                    gateway_payment_id=gateway_payment_id,
                    outcome=outcome,
                    processed_at=processed_at or utcnow(),
                ))
        except IntegrityError:
            logger.info(
                "Webhook event already recorded by a concurrent worker",
                extra_data={"event_key": event_key, "event_type": event_type},
            )
            return False
        return True
