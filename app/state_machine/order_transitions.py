"""
Order Transition Table

מקור אמת יחיד למעברי סטטוס של הזמנה. כל נקודות הכניסה (אימות לקוח,
webhook, סנכרון) בודקות כאן לפני שינוי, ומחילות את עדכוני השדות דרך
apply_transition כדי שהכללים יהיו זהים בכל מסלול.
"""
from datetime import datetime

from app.db.database import utcnow
from app.db.models.order import Order, OrderStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({
        OrderStatus.PAYMENT_SENT,
        OrderStatus.FAILED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.PAYMENT_SENT: frozenset({
        OrderStatus.PAID,
        OrderStatus.FAILED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.PAID: frozenset({
        OrderStatus.REFUND_PENDING,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.FAILED: frozenset({OrderStatus.PAYMENT_SENT}),
    OrderStatus.EXPIRED: frozenset({OrderStatus.PAYMENT_SENT}),
    OrderStatus.REFUND_PENDING: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.EXPIRED,
    OrderStatus.REFUNDED,
})


def can_transition(current: OrderStatus | None, target: OrderStatus | None) -> bool:
    """Pure and total: any pair of values (including None) gets an answer."""
    if current is None or target is None:
        return False
    if current == target:
        return True
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def is_terminal(status: OrderStatus | None) -> bool:
    return status in TERMINAL_STATUSES


def apply_transition(
    order: Order,
    target: OrderStatus,
    *,
    now: datetime | None = None,
    refund_id: str | None = None,
    via_retry: bool = False,
) -> bool:
    """
    Move ``order`` to ``target`` and apply the milestone field rules.

    The caller must have checked can_transition() first. A self-transition
    only backfills unset milestones.

    Returns:
        True if the status actually changed.
    """
    now = now or utcnow()
    changed = order.status != target

    if target == OrderStatus.PAID:
        if order.paid_at is None:
            order.paid_at = now
        if changed:
            order.failed_at = None
            order.last_error = None

    elif target == OrderStatus.FAILED:
        if order.failed_at is None:
            order.failed_at = now

    elif target == OrderStatus.REFUNDED:
        if refund_id:
            order.gateway_refund_id = refund_id
        if order.refunded_at is None:
            order.refunded_at = now

    elif target == OrderStatus.REFUND_PENDING:
        if refund_id:
            order.gateway_refund_id = refund_id

    elif target == OrderStatus.PAYMENT_SENT and via_retry:
        order.attempt_count = (order.attempt_count or 0) + 1
        order.failed_at = None
        order.last_error = None
        order.gateway_payment_id = None

    order.status = target
    order.updated_at = now
    return changed
