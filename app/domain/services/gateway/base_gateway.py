"""
ממשק בסיסי ל-payment gateway.

מחזיר את ה-JSON של ה-gateway כ-dict; הפענוח הסמנטי (סטטוסים, created_at)
נעשה בשירותים שמשתמשים בממשק.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class BasePaymentGateway(ABC):
    """Operations the order lifecycle needs from a payment gateway account"""

    @abstractmethod
    async def create_order(
        self,
        amount_paise: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> str:
        """Create a gateway order and return its id.

        Raises:
            GatewayError: on any failure. The caller must not swallow it.
        """

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        """Payment entity (``id``, ``status``, ``order_id``, ``created_at``...)."""

    @abstractmethod
    async def fetch_refund(self, refund_id: str) -> dict[str, Any]:
        """Refund entity (``id``, ``status``, ``payment_id``...)."""

    @abstractmethod
    async def list_payments_for_order(self, gateway_order_id: str) -> list[dict[str, Any]]:
        """All payment attempts made against a gateway order."""

    @abstractmethod
    async def refund(self, payment_id: str, amount_paise: Optional[int] = None) -> dict[str, Any]:
        """Refund a captured payment, fully or partially. Returns the refund entity."""
