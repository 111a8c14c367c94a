"""
Webhook Event Model - ledger של אירועי gateway שכבר טופלו.

רשומה נוצרת פעם אחת ולא מתעדכנת או נמחקת. קיום הרשומה הוא בדיקת
ה-dedup היחידה; ה-primary key חוסם שני עיבודים מקבילים של אותו אירוע.
"""
from sqlalchemy import Column, String, DateTime, Index

from app.db.database import Base, utcnow


class WebhookEventOutcome:
    """Diagnostic outcome stored with each ledger row"""
    PROCESSED = "processed"
    IGNORED = "ignored"
    BLOCKED = "blocked"
    UNMATCHED = "unmatched"


class WebhookEvent(Base):
    """רשומת idempotency - אירוע שהתקבל מה-gateway"""

    __tablename__ = "webhook_events"

    # id מקורי של האירוע או "fallback|<event>|<created_at>"
    event_id = Column(String(200), primary_key=True)
    event_type = Column(String(64), nullable=False)
    gateway_order_id = Column(String(64), nullable=True)
    gateway_payment_id = Column(String(64), nullable=True)
    outcome = Column(String(20), nullable=False, default=WebhookEventOutcome.PROCESSED)
    processed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_webhook_events_gateway_order", "gateway_order_id"),
    )
