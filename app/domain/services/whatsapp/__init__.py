"""
WhatsApp Provider Abstraction Layer

שכבת הפשטה לשליחת הודעות WhatsApp ללקוחות של כל tenant.
"""
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.domain.services.whatsapp.provider_factory import (
    WhatsAppProviderFactory,
    get_whatsapp_provider,
)

__all__ = [
    "BaseWhatsAppProvider",
    "WhatsAppProviderFactory",
    "get_whatsapp_provider",
]
