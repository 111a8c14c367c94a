"""
Provider Factory — יצירת ספק WhatsApp עבור tenant.

אין ספק גלובלי: לכל tenant מספר WhatsApp ו-token משלו, ולכל אחד
circuit breaker נפרד. בבדיקות מחליפים את ה-factory ב-fake.
"""
from __future__ import annotations

import uuid
from typing import Callable

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.domain.services.credential_service import MessagingCredentials
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

WhatsAppProviderFactory = Callable[[uuid.UUID, MessagingCredentials], BaseWhatsAppProvider]


def get_whatsapp_provider(
    tenant_id: uuid.UUID,
    credentials: MessagingCredentials,
) -> BaseWhatsAppProvider:
    """ספק Cloud API למספר ה-WhatsApp של ה-tenant."""
    from app.domain.services.whatsapp.cloud_api_provider import CloudApiProvider

    return CloudApiProvider(
        access_token=credentials.access_token,
        phone_number_id=credentials.phone_number_id,
        circuit_breaker=get_whatsapp_circuit_breaker(tenant_id),
    )
