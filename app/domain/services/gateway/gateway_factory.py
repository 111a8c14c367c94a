"""
Gateway Factory — לקוח Razorpay עבור tenant.

אין מפתחות גלובליים: כל tenant מקבל לקוח עם זוג המפתחות שלו
ו-circuit breaker נפרד. בבדיקות מחליפים את ה-factory ב-fake.
"""
from __future__ import annotations

import uuid
from typing import Callable

from app.core.circuit_breaker import get_gateway_circuit_breaker
from app.domain.services.credential_service import GatewayCredentials
from app.domain.services.gateway.base_gateway import BasePaymentGateway

GatewayFactory = Callable[[uuid.UUID, GatewayCredentials], BasePaymentGateway]


def get_payment_gateway(
    tenant_id: uuid.UUID,
    credentials: GatewayCredentials,
) -> BasePaymentGateway:
    from app.domain.services.gateway.razorpay_gateway import RazorpayGateway

    return RazorpayGateway(
        key_id=credentials.key_id,
        key_secret=credentials.key_secret,
        circuit_breaker=get_gateway_circuit_breaker(tenant_id),
    )
