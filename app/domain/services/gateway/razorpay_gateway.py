"""
Razorpay Gateway — קריאות REST ל-Razorpay עם מפתחות ה-tenant.

כל קריאה עוברת דרך circuit breaker של ה-tenant עם timeout קצוב.
שגיאות 4xx (למשל payment לא קיים) לא נספרות ככשל של השירות.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import GatewayError, ServiceTimeoutError
from app.core.logging import get_logger
from app.domain.services.gateway.base_gateway import BasePaymentGateway

logger = get_logger(__name__)


def _counts_as_outage(exc: Exception) -> bool:
    if isinstance(exc, GatewayError):
        status_code = exc.details.get("status_code")
        return status_code is None or status_code >= 500 or status_code == 429
    return True


class RazorpayGateway(BasePaymentGateway):
    """Razorpay REST API client bound to one tenant's key pair"""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        circuit_breaker: CircuitBreaker,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = (key_id, key_secret)
        self._circuit_breaker = circuit_breaker
        self._base_url = (base_url or settings.RAZORPAY_API_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(method, path, json=json_body)
            except httpx.TimeoutException:
                raise ServiceTimeoutError("gateway", self._timeout)
            except httpx.RequestError as exc:
                raise GatewayError(
                    f"{operation} network error: {str(exc)}",
                    details={"operation": operation, "network_error": True},
                )

        if response.status_code >= 400:
            raise GatewayError.from_response(operation, response)

        try:
            return response.json()
        except ValueError:
            raise GatewayError.from_response(
                operation, response, message=f"{operation} returned a non-JSON body"
            )

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        return await self._circuit_breaker.execute(
            self._request, method, path, operation, json_body, is_failure=_counts_as_outage
        )

    async def create_order(
        self,
        amount_paise: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> str:
        body = {
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        data = await self._call("POST", "/orders", "create_order", body)
        gateway_order_id = data.get("id")
        if not gateway_order_id:
            raise GatewayError("create_order response has no id", details={"operation": "create_order"})
        logger.info(
            "Gateway order created",
            extra_data={"gateway_order_id": gateway_order_id, "receipt": receipt},
        )
        return gateway_order_id

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._call("GET", f"/payments/{payment_id}", "fetch_payment")

    async def fetch_refund(self, refund_id: str) -> dict[str, Any]:
        return await self._call("GET", f"/refunds/{refund_id}", "fetch_refund")

    async def list_payments_for_order(self, gateway_order_id: str) -> list[dict[str, Any]]:
        data = await self._call("GET", f"/orders/{gateway_order_id}/payments", "list_payments")
        items = data.get("items") or []
        return [item for item in items if isinstance(item, dict)]

    async def refund(self, payment_id: str, amount_paise: Optional[int] = None) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if amount_paise is not None:
            body["amount"] = amount_paise
        data = await self._call("POST", f"/payments/{payment_id}/refund", "refund", body)
        logger.info(
            "Gateway refund created",
            extra_data={"payment_id": payment_id, "refund_id": data.get("id"), "status": data.get("status")},
        )
        return data
