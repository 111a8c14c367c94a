"""
Tenant Settings API Routes — פרטי התחברות ל-gateway ול-WhatsApp.

סודות אף פעם לא חוזרים בתגובה, רק 4 התווים האחרונים.
"""
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.tenant import get_tenant_id
from app.core.exceptions import NotFoundException
from app.db.database import get_db
from app.db.models.tenant_settings import TenantSettings
from app.domain.services.credential_service import CredentialService, mask_secret

router = APIRouter()


class TenantSettingsUpdate(BaseModel):
    """
    None = לא לגעת בערך השמור, מחרוזת ריקה = למחוק אותו.
    """
    gateway_key_id: Optional[str] = None
    gateway_key_secret: Optional[str] = None
    gateway_webhook_secret: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None


class TenantSettingsResponse(BaseModel):
    tenant_id: uuid.UUID
    gateway_key_id: Optional[str] = None
    gateway_key_secret: Optional[str] = None
    gateway_webhook_secret: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    gateway_configured: bool
    messaging_configured: bool
    updated_at: Optional[datetime] = None


def _to_response(row: TenantSettings) -> TenantSettingsResponse:
    return TenantSettingsResponse(
        tenant_id=row.tenant_id,
        gateway_key_id=row.gateway_key_id,
        gateway_key_secret=mask_secret(row.gateway_key_secret),
        gateway_webhook_secret=mask_secret(row.gateway_webhook_secret),
        whatsapp_access_token=mask_secret(row.whatsapp_access_token),
        whatsapp_phone_number_id=row.whatsapp_phone_number_id,
        gateway_configured=bool(row.gateway_key_id and row.gateway_key_secret),
        messaging_configured=bool(row.whatsapp_access_token and row.whatsapp_phone_number_id),
        updated_at=row.updated_at,
    )


@router.get("/", response_model=TenantSettingsResponse, summary="הגדרות tenant")
async def get_settings(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> TenantSettingsResponse:
    row = await db.get(TenantSettings, tenant_id)
    if row is None:
        raise NotFoundException("Tenant settings", tenant_id)
    return _to_response(row)


@router.put("/", response_model=TenantSettingsResponse, summary="עדכון הגדרות tenant")
async def update_settings(
    body: TenantSettingsUpdate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> TenantSettingsResponse:
    row = await CredentialService(db).upsert(tenant_id, **body.model_dump(exclude_unset=True))
    return _to_response(row)
