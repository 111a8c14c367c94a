"""
WhatsApp Cloud API Provider — Meta Cloud API בשם ה-tenant.

טקסט נשלח דרך ספריית pywa. הודעות type=interactive/payment לא נתמכות
ב-SDK, לכן ה-payload שלהן נבנה ידנית ונשלח ל-Graph API עם httpx.
ה-access token וה-phone number id שייכים ל-tenant.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import WhatsAppError
from app.core.logging import get_logger, mask_whatsapp
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)


class CloudApiProvider(BaseWhatsAppProvider):
    """
    מימוש ספק WhatsApp מעל Meta Cloud API.

    טקסט: pywa. בקשת תשלום: POST {graph}/{phone_number_id}/messages עם Bearer token.
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        circuit_breaker: CircuitBreaker,
    ) -> None:
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._circuit_breaker = circuit_breaker
        self._base_url = settings.WHATSAPP_GRAPH_API_URL.rstrip("/")
        self._timeout = settings.WHATSAPP_TIMEOUT_SECONDS
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code.strip())
            for code in settings.WHATSAPP_TRANSIENT_STATUS_CODES.split(",")
            if code.strip()
        }

        # אתחול עצלן — pywa client נוצר רק בשליחת טקסט ראשונה
        self._client = None

    @property
    def provider_name(self) -> str:
        return "cloud_api"

    def _get_client(self):
        """אתחול עצלן של pywa client."""
        if self._client is None:
            from pywa_async import WhatsApp as PyWaClient

            self._client = PyWaClient(
                phone_id=self._phone_number_id,
                token=self._access_token,
            )
        return self._client

    @property
    def _messages_url(self) -> str:
        return f"{self._base_url}/{self._phone_number_id}/messages"

    async def _post_with_retry(self, payload: dict, operation_name: str) -> dict:
        """שליחת בקשה ל-Graph API עם retry ו-exponential backoff.

        זורק WhatsAppError אם כל הניסיונות נכשלו.
        """
        to_masked = mask_whatsapp(payload.get("to", ""))
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for attempt in range(self._max_retries):
                last_attempt = attempt >= self._max_retries - 1
                try:
                    response = await client.post(self._messages_url, json=payload, headers=headers)
                except httpx.TimeoutException:
                    if not last_attempt:
                        await self._backoff(operation_name, to_masked, attempt, reason="timeout")
                        continue
                    raise WhatsAppError(
                        message=f"{operation_name} timeout after retries",
                        details={"timeout": True, "attempts": self._max_retries},
                    )
                except httpx.RequestError as exc:
                    if not last_attempt:
                        await self._backoff(operation_name, to_masked, attempt, reason=str(exc))
                        continue
                    raise WhatsAppError(
                        message=f"{operation_name} network error: {str(exc)}",
                        details={"network_error": True, "attempts": self._max_retries},
                    )

                if 200 <= response.status_code < 300:
                    return response.json() if response.content else {}

                if response.status_code in self._transient_status_codes and not last_attempt:
                    await self._backoff(
                        operation_name, to_masked, attempt, reason=f"status {response.status_code}"
                    )
                    continue

                raise WhatsAppError.from_response(operation_name, response)

        raise WhatsAppError(message=f"{operation_name} failed", details={"attempts": self._max_retries})

    async def _backoff(self, operation_name: str, to_masked: str, attempt: int, *, reason: str) -> None:
        backoff = 2 ** attempt
        logger.warning(
            f"שגיאה זמנית ב-{operation_name}, מנסה שוב",
            extra_data={
                "to": to_masked,
                "reason": reason,
                "attempt": attempt + 1,
                "max_retries": self._max_retries,
                "backoff_seconds": backoff,
            },
        )
        await asyncio.sleep(backoff)

    async def _send(self, payload: dict, operation_name: str) -> dict:
        return await self._circuit_breaker.execute(self._post_with_retry, payload, operation_name)

    async def _execute_with_retry(self, operation_name: str, to_masked: str, func) -> None:
        """הרצה עם retry ו-exponential backoff. זורק WhatsAppError אם כל הניסיונות נכשלו."""
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                await func()
                return
            except Exception as exc:
                last_error = exc
                if attempt < self._max_retries - 1:
                    await self._backoff(operation_name, to_masked, attempt, reason=str(exc))

        raise WhatsAppError(
            message=f"{operation_name} failed after {self._max_retries} attempts",
            details={"to": to_masked, "error": str(last_error), "attempts": self._max_retries},
        )

    async def send_text(self, to: str, text: str) -> None:
        """שליחת טקסט דרך pywa עם retry ו-circuit breaker."""
        to_masked = mask_whatsapp(to)
        client = self._get_client()

        async def _send_single() -> None:
            await client.send_message(to=to, text=text)

        await self._circuit_breaker.execute(self._execute_with_retry, "send_text", to_masked, _send_single)

    async def send_payment_request(
        self,
        to: str,
        *,
        amount_paise: int,
        currency: str,
        description: str,
        reference_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "payment",
                "action": {
                    "name": "review_and_pay",
                    "parameters": {
                        "reference_id": reference_id,
                        "type": "digital-goods",
                        "payment_type": "upi",
                        "payment_configuration": "razorpay",
                        "currency": currency,
                        "total_amount": {"value": amount_paise, "offset": 100},
                        "order": {
                            "status": "pending",
                            "description": description,
                            "items": [{
                                "retailer_id": reference_id,
                                "name": description,
                                "amount": {"value": amount_paise, "offset": 100},
                                "quantity": 1,
                            }],
                            "subtotal": {"value": amount_paise, "offset": 100},
                        },
                        "metadata": metadata or {},
                    },
                },
            },
        }
        await self._send(payload, "send_payment_request")
        logger.info(
            "WhatsApp payment request sent",
            extra_data={"to": mask_whatsapp(to), "reference_id": reference_id},
        )
