"""
Order Model - payment order settled through the gateway and announced over WhatsApp
"""
import enum
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Index, Uuid

from app.db.database import Base, utcnow


class OrderStatus(str, enum.Enum):
    CREATED = "CREATED"
    PAYMENT_SENT = "PAYMENT_SENT"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"


class Order(Base):
    """Payment order owned by exactly one tenant"""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # נקבע ביצירה ולא משתנה לעולם
    tenant_id = Column(Uuid, nullable=False, index=True)

    # Customer
    customer_name = Column(String(120), nullable=False)
    customer_whatsapp = Column(String(20), nullable=False)

    # Amount
    amount_paise = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="INR")
    description = Column(String(500), nullable=True)

    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.CREATED, index=True)

    # Gateway correlation
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)
    gateway_refund_id = Column(String(64), nullable=True)
    # reference_id שנשלח עם בקשת התשלום ב-WhatsApp
    payment_reference_id = Column(String(64), nullable=True)

    # Milestones (set-if-unset)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    verified_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # Diagnostics - לא משפיעים על מעברי סטטוס
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String(1000), nullable=True)

    # Exactly-once guards for customer notifications
    paid_msg_sent_at = Column(DateTime, nullable=True)
    failed_msg_sent_at = Column(DateTime, nullable=True)
    refunded_msg_sent_at = Column(DateTime, nullable=True)

    # Optimistic compare-and-set counter
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_tenant_created", "tenant_id", "created_at"),
        Index("ix_orders_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status.value if self.status else None}>"
