"""
Tenant Settings Model - per-tenant gateway and WhatsApp credentials
"""
from sqlalchemy import Column, String, DateTime, Uuid

from app.db.database import Base, utcnow


class TenantSettings(Base):
    """Credential set of one tenant. שדה ריק = לא מוגדר עבור ה-scope שלו."""

    __tablename__ = "tenant_settings"

    tenant_id = Column(Uuid, primary_key=True)

    # Payment gateway
    gateway_key_id = Column(String(100), nullable=True)
    gateway_key_secret = Column(String(200), nullable=True)
    gateway_webhook_secret = Column(String(200), nullable=True)

    # WhatsApp Cloud API
    whatsapp_access_token = Column(String(500), nullable=True)
    whatsapp_phone_number_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
