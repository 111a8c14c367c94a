"""
Order Store — גישה להזמנות עם נעילת שורה.

with_for_update() נותן SELECT ... FOR UPDATE ב-PostgreSQL: קריאה-שינוי-כתיבה
של הזמנה אחת היא טרנזקציה אחת. עמודת version משלימה את זה כ-compare-and-set.
לא משלבים joinedload עם with_for_update.
"""
import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.order import Order, OrderStatus


class OrderStore:
    """Persistence helpers for Order rows"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, order_id: uuid.UUID, *, for_update: bool = False) -> Order | None:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_gateway_order_id(
        self, gateway_order_id: str, *, for_update: bool = False
    ) -> Order | None:
        if not gateway_order_id:
            return None
        stmt = select(Order).where(Order.gateway_order_id == gateway_order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def find_by_gateway_payment_id(
        self, gateway_payment_id: str, *, for_update: bool = False
    ) -> Order | None:
        if not gateway_payment_id:
            return None
        stmt = select(Order).where(Order.gateway_payment_id == gateway_payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def resolve_for_event(
        self,
        gateway_order_id: str | None,
        gateway_payment_id: str | None,
    ) -> Order | None:
        """Locate an order by gateway order id, then by payment id, with a row lock."""
        order = None
        if gateway_order_id:
            order = await self.find_by_gateway_order_id(gateway_order_id, for_update=True)
        if order is None and gateway_payment_id:
            order = await self.find_by_gateway_payment_id(gateway_payment_id, for_update=True)
        return order

    async def list_by_tenant(
        self,
        tenant_id: uuid.UUID,
        *,
        status: OrderStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Order]:
        stmt = select(Order).where(Order.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_ids_in_status(
        self,
        statuses: Sequence[OrderStatus],
        *,
        updated_before: datetime,
        limit: int,
        without_payment: bool = False,
    ) -> list[uuid.UUID]:
        """Ids of orders idle in one of ``statuses`` since ``updated_before`` (oldest first)."""
        stmt = select(Order.id).where(
            Order.status.in_(list(statuses)),
            Order.updated_at < updated_before,
        )
        if without_payment:
            stmt = stmt.where(Order.gateway_payment_id.is_(None))
        stmt = stmt.order_by(Order.updated_at.asc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    def add(self, order: Order) -> Order:
        self.db.add(order)
        return order
