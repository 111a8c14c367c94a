"""
Credential Service — פתרון מפתחות gateway ו-WhatsApp לכל tenant.

"לא מוגדר" הוא ערך מפורש (NotConfigured) ולא exception: הודעות ללקוח מדלגות
עליו בשקט, ופעולות שחייבות את המפתח ממירות אותו ל-ConfigurationError.
"""
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.tenant_settings import TenantSettings

logger = get_logger(__name__)


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


@dataclass(frozen=True)
class NotConfigured:
    """A credential scope the tenant has not filled in"""
    tenant_id: uuid.UUID | None
    scope: str
    missing: tuple[str, ...] = field(default_factory=tuple)

    def to_error(self) -> ConfigurationError:
        messages = {
            "gateway": "Razorpay keys not configured for this tenant",
            "webhook": "Razorpay webhook secret not configured for this tenant",
            "messaging": "WhatsApp credentials not configured for this tenant",
            "tenant": "Tenant settings not found",
        }
        return ConfigurationError(
            messages.get(self.scope, "Tenant credentials not configured"),
            missing=list(self.missing),
        )


@dataclass(frozen=True)
class GatewayCredentials:
    key_id: str
    key_secret: str


@dataclass(frozen=True)
class MessagingCredentials:
    access_token: str
    phone_number_id: str


@dataclass(frozen=True)
class TenantCredentials:
    """Snapshot of a tenant's credential set. Individual fields may be blank."""
    tenant_id: uuid.UUID
    gateway_key_id: str | None = None
    gateway_key_secret: str | None = None
    gateway_webhook_secret: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None

    @classmethod
    def from_row(cls, row: TenantSettings) -> "TenantCredentials":
        return cls(
            tenant_id=row.tenant_id,
            gateway_key_id=row.gateway_key_id,
            gateway_key_secret=row.gateway_key_secret,
            gateway_webhook_secret=row.gateway_webhook_secret,
            whatsapp_access_token=row.whatsapp_access_token,
            whatsapp_phone_number_id=row.whatsapp_phone_number_id,
        )

    def gateway(self) -> GatewayCredentials | NotConfigured:
        missing = tuple(
            name for name, value in (
                ("gateway_key_id", self.gateway_key_id),
                ("gateway_key_secret", self.gateway_key_secret),
            ) if _blank(value)
        )
        if missing:
            return NotConfigured(self.tenant_id, "gateway", missing)
        return GatewayCredentials(self.gateway_key_id.strip(), self.gateway_key_secret.strip())

    def webhook_secret(self) -> str | NotConfigured:
        if _blank(self.gateway_webhook_secret):
            return NotConfigured(self.tenant_id, "webhook", ("gateway_webhook_secret",))
        return self.gateway_webhook_secret.strip()

    def key_secret(self) -> str | NotConfigured:
        if _blank(self.gateway_key_secret):
            return NotConfigured(self.tenant_id, "gateway", ("gateway_key_secret",))
        return self.gateway_key_secret.strip()

    def messaging(self) -> MessagingCredentials | NotConfigured:
        missing = tuple(
            name for name, value in (
                ("whatsapp_access_token", self.whatsapp_access_token),
                ("whatsapp_phone_number_id", self.whatsapp_phone_number_id),
            ) if _blank(value)
        )
        if missing:
            return NotConfigured(self.tenant_id, "messaging", missing)
        return MessagingCredentials(
            self.whatsapp_access_token.strip(),
            self.whatsapp_phone_number_id.strip(),
        )


def require(value):
    """Unwrap a scoped lookup, raising ConfigurationError for NotConfigured."""
    if isinstance(value, NotConfigured):
        raise value.to_error()
    return value


def mask_secret(value: str | None) -> str | None:
    """Show only the last 4 characters of a stored secret"""
    if _blank(value):
        return None
    value = value.strip()
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


class CredentialService:
    """Per-request credential lookup bound to a database session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self, tenant_id: uuid.UUID) -> TenantSettings | None:
        result = await self.db.execute(
            select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def resolve(self, tenant_id: uuid.UUID | None) -> TenantCredentials | NotConfigured:
        if tenant_id is None:
            return NotConfigured(None, "tenant", ("tenant_id",))
        row = await self._get_row(tenant_id)
        if row is None:
            return NotConfigured(tenant_id, "tenant", ("tenant_settings",))
        return TenantCredentials.from_row(row)

    async def gateway(self, tenant_id: uuid.UUID | None) -> GatewayCredentials | NotConfigured:
        creds = await self.resolve(tenant_id)
        if isinstance(creds, NotConfigured):
            return NotConfigured(tenant_id, "gateway", ("gateway_key_id", "gateway_key_secret"))
        return creds.gateway()

    async def webhook_secret(self, tenant_id: uuid.UUID | None) -> str | NotConfigured:
        creds = await self.resolve(tenant_id)
        if isinstance(creds, NotConfigured):
            return NotConfigured(tenant_id, "webhook", ("gateway_webhook_secret",))
        return creds.webhook_secret()

    async def key_secret(self, tenant_id: uuid.UUID | None) -> str | NotConfigured:
        creds = await self.resolve(tenant_id)
        if isinstance(creds, NotConfigured):
            return NotConfigured(tenant_id, "gateway", ("gateway_key_secret",))
        return creds.key_secret()

    async def messaging(self, tenant_id: uuid.UUID | None) -> MessagingCredentials | NotConfigured:
        creds = await self.resolve(tenant_id)
        if isinstance(creds, NotConfigured):
            return NotConfigured(tenant_id, "messaging", ("whatsapp_access_token", "whatsapp_phone_number_id"))
        return creds.messaging()

    async def upsert(self, tenant_id: uuid.UUID, **fields: str | None) -> TenantSettings:
        """
        Create or update a tenant's credential set.

        Only keys passed explicitly are written; None leaves a stored value
        untouched and an empty string clears it.
        """
        allowed = {
            "gateway_key_id",
            "gateway_key_secret",
            "gateway_webhook_secret",
            "whatsapp_access_token",
            "whatsapp_phone_number_id",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")

        row = await self._get_row(tenant_id)
        if row is None:
            row = TenantSettings(tenant_id=tenant_id)
            self.db.add(row)

        for name, value in fields.items():
            if value is None:
                continue
            setattr(row, name, value.strip() or None)
        row.updated_at = utcnow()

        await self.db.commit()
        await self.db.refresh(row)

        logger.info(
            "Tenant settings updated",
            extra_data={
                "tenant_id": str(tenant_id),
                "fields": sorted(k for k, v in fields.items() if v is not None),
            },
        )
        return row
