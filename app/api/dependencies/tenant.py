"""
זיהוי ה-tenant של הבקשה.

שכבת האימות (מחוץ לשירות הזה) מאמתת את המשתמש ומעבירה את מזהה
ה-tenant בכותרת ``X-Tenant-ID``.

שימוש:
    @router.get("/orders")
    async def list_orders(tenant_id: uuid.UUID = Depends(get_tenant_id)):
        ...
"""
import uuid

from fastapi import Header, HTTPException, status

from app.core.logging import get_logger, set_tenant_context

logger = get_logger(__name__)


async def get_tenant_id(x_tenant_id: str | None = Header(None)) -> uuid.UUID:
    """
    פענוח ``X-Tenant-ID``.

    - כותרת חסרה — 401.
    - ערך שאינו UUID — 400.
    """
    if not x_tenant_id or not x_tenant_id.strip():
        logger.warning("Request without X-Tenant-ID header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing tenant identity",
        )

    try:
        tenant_id = uuid.UUID(x_tenant_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID must be a UUID",
        )

    set_tenant_context(tenant_id)
    return tenant_id
