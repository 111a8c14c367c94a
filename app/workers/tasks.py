"""
Celery Tasks — סנכרון תקופתי מול ה-gateway ותפוגת הזמנות נטושות.

כל task פותח event loop ו-session משלו (ראו get_task_session).
"""
import asyncio
import uuid
from contextlib import contextmanager

from app.workers.celery_app import celery_app
from app.db.database import get_task_session
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation_service import ReconciliationService
from app.core.exceptions import AppException
from app.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="app.workers.tasks.reconcile_stale_orders")
def reconcile_stale_orders():
    """
    סנכרון הזמנות שלא עודכנו RECONCILE_STALE_AFTER_MINUTES דקות
    בסטטוס PAYMENT_SENT / REFUND_PENDING.
    """

    async def _reconcile():
        async with get_task_session() as db:
            return await ReconciliationService(db).reconcile_stale()

    return run_async(_reconcile())


@celery_app.task(name="app.workers.tasks.expire_abandoned_orders")
def expire_abandoned_orders():
    """Move orders that never got a payment within ORDER_EXPIRY_HOURS to EXPIRED"""

    async def _expire():
        async with get_task_session() as db:
            expired = await OrderService(db).expire_abandoned()
            return {"expired": expired}

    return run_async(_expire())


@celery_app.task(name="app.workers.tasks.reconcile_order")
def reconcile_order(order_id: str):
    """סנכרון הזמנה בודדת לפי דרישה"""

    async def _reconcile():
        async with get_task_session() as db:
            try:
                order = await ReconciliationService(db).reconcile(uuid.UUID(order_id))
            except AppException as exc:
                logger.warning(
                    "On-demand order sync failed",
                    extra_data={"order_id": order_id, "error": exc.message},
                )
                return {"order_id": order_id, "success": False, "error": exc.message}
            return {"order_id": order_id, "success": True, "status": order.status.value}

    return run_async(_reconcile())
