"""
Razorpay Webhook Handler.

ה-body הגולמי נקרא לפני כל פענוח, כי החתימה מחושבת על הבייטים המדויקים.
כל ההחלטות (idempotency, אימות חתימה לפי tenant, מעבר סטטוס, התראה)
נעשות ב-WebhookService; כאן רק מתרגמים את התוצאה ל-HTTP.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.providers import get_whatsapp_factory
from app.core.logging import get_logger
from app.db.database import get_db
from app.domain.services.webhook_service import WebhookService
from app.domain.services.whatsapp.provider_factory import WhatsAppProviderFactory

logger = get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Razorpay-Signature"


@router.post(
    "/razorpay",
    summary="Razorpay Webhook",
    description="קבלת אירועי תשלום/החזר מ-Razorpay.",
    responses={
        200: {"description": "האירוע התקבל (כולל כפילויות ואירועים שלא טופלו)"},
        400: {"description": "חתימה חסרה, payload לא תקין או tenant לא מוגדר"},
        401: {"description": "חתימה לא תקינה"},
    },
    tags=["Webhooks"],
)
async def razorpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    whatsapp_factory: WhatsAppProviderFactory = Depends(get_whatsapp_factory),
) -> JSONResponse:
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    result = await WebhookService(db, whatsapp_factory=whatsapp_factory).ingest(body, signature)

    logger.debug(
        "Razorpay webhook answered",
        extra_data={"status_code": result.status_code, "outcome": result.outcome},
    )
    return JSONResponse(status_code=result.status_code, content=result.to_body())
