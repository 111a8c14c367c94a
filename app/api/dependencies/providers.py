"""
Dependencies שמחזירות factories ללקוחות חיצוניים (gateway, WhatsApp).

בבדיקות מחליפים אותן דרך ``app.dependency_overrides`` ב-fakes.
"""
from app.domain.services.gateway.gateway_factory import GatewayFactory, get_payment_gateway
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)


def get_gateway_factory() -> GatewayFactory:
    return get_payment_gateway


def get_whatsapp_factory() -> WhatsAppProviderFactory:
    return get_whatsapp_provider
