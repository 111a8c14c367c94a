"""
Payment Gateway Abstraction Layer
"""
from app.domain.services.gateway.base_gateway import BasePaymentGateway
from app.domain.services.gateway.gateway_factory import GatewayFactory, get_payment_gateway

__all__ = [
    "BasePaymentGateway",
    "GatewayFactory",
    "get_payment_gateway",
]
