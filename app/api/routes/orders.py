"""
Order API Routes
"""
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_serializer, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.providers import get_gateway_factory, get_whatsapp_factory
from app.api.dependencies.tenant import get_tenant_id
from app.core.validation import (
    MIN_ORDER_AMOUNT_PAISE,
    customer_name_validator,
    description_validator,
    gateway_id_validator,
    whatsapp_number_validator,
)
from app.db.database import get_db
from app.db.models.order import OrderStatus
from app.domain.services.gateway.gateway_factory import GatewayFactory
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation_service import ReconciliationService
from app.domain.services.whatsapp.provider_factory import WhatsAppProviderFactory

router = APIRouter()


class OrderCreate(BaseModel):
    """Schema for creating a new order"""
    customer_name: str
    customer_whatsapp: str
    amount_paise: int = Field(..., ge=MIN_ORDER_AMOUNT_PAISE)
    description: Optional[str] = None

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return customer_name_validator(v)

    @field_validator("customer_whatsapp")
    @classmethod
    def validate_whatsapp(cls, v: str) -> str:
        return whatsapp_number_validator(v)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        return description_validator(v)


class VerifyPaymentRequest(BaseModel):
    """Values returned by the checkout widget after a successful payment"""
    gateway_order_id: str
    gateway_payment_id: str
    signature: str

    @field_validator("gateway_order_id", "gateway_payment_id")
    @classmethod
    def validate_gateway_ids(cls, v: str) -> str:
        return gateway_id_validator(v)


class RefundRequest(BaseModel):
    """Optional partial refund amount. ריק = החזר מלא"""
    amount_paise: Optional[int] = Field(None, ge=1)


class OrderResponse(BaseModel):
    """Response schema for order data"""
    id: uuid.UUID
    tenant_id: uuid.UUID
    customer_name: str
    customer_whatsapp: str
    amount_paise: int
    currency: str
    description: Optional[str] = None
    status: OrderStatus
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    payment_reference_id: Optional[str] = None
    attempt_count: int
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    verified_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v: OrderStatus) -> str:
        return v.value


class OrderStatusResponse(BaseModel):
    """Lightweight status projection for polling clients"""
    id: uuid.UUID
    status: OrderStatus
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    last_error: Optional[str] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v: OrderStatus) -> str:
        return v.value


class CheckoutResponse(BaseModel):
    url: str


def get_order_service(
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    whatsapp_factory: WhatsAppProviderFactory = Depends(get_whatsapp_factory),
) -> OrderService:
    return OrderService(db, gateway_factory=gateway_factory, whatsapp_factory=whatsapp_factory)


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    whatsapp_factory: WhatsAppProviderFactory = Depends(get_whatsapp_factory),
) -> ReconciliationService:
    return ReconciliationService(db, gateway_factory=gateway_factory, whatsapp_factory=whatsapp_factory)


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=201,
    summary="יצירת הזמנה",
    description="יצירת הזמנה חדשה בסטטוס CREATED עבור ה-tenant המחובר.",
)
async def create_order(
    order_data: OrderCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await service.create(
        tenant_id,
        customer_name=order_data.customer_name,
        customer_whatsapp=order_data.customer_whatsapp,
        amount_paise=order_data.amount_paise,
        description=order_data.description,
    )


@router.get(
    "/",
    response_model=List[OrderResponse],
    summary="רשימת הזמנות",
    description="הזמנות ה-tenant, מהחדשה לישנה.",
)
async def list_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> List[OrderResponse]:
    return await service.list_orders(tenant_id, status=status, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderResponse, summary="פרטי הזמנה")
async def get_order(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await service.get(order_id, tenant_id)


@router.get("/{order_id}/status", response_model=OrderStatusResponse, summary="סטטוס הזמנה")
async def get_order_status(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderStatusResponse:
    return await service.get(order_id, tenant_id)


@router.post(
    "/{order_id}/send-payment",
    response_model=OrderResponse,
    summary="שליחת בקשת תשלום",
    description="יצירת order ב-gateway ושליחת בקשת תשלום ללקוח ב-WhatsApp.",
)
async def send_payment_request(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await service.send_payment_request(order_id, tenant_id)


@router.post(
    "/{order_id}/verify",
    response_model=OrderResponse,
    summary="אימות תשלום (checkout)",
    description="אימות חתימת ה-checkout והעברת ההזמנה ל-PAID.",
)
async def verify_payment(
    order_id: uuid.UUID,
    body: VerifyPaymentRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await service.verify_payment(
        order_id,
        tenant_id,
        gateway_order_id=body.gateway_order_id,
        gateway_payment_id=body.gateway_payment_id,
        signature=body.signature,
    )


@router.post("/{order_id}/retry", response_model=OrderResponse, summary="ניסיון תשלום חוזר")
async def retry_order(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await service.retry(order_id, tenant_id)


@router.post("/{order_id}/refund", response_model=OrderResponse, summary="החזר כספי")
async def refund_order(
    order_id: uuid.UUID,
    body: Optional[RefundRequest] = None,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    amount = body.amount_paise if body else None
    return await service.refund(order_id, tenant_id, amount)


@router.api_route(
    "/{order_id}/sync",
    methods=["POST", "GET"],
    response_model=OrderResponse,
    summary="סנכרון מול ה-gateway",
    description="שליפת מצב התשלום/ההחזר מה-gateway ועדכון ההזמנה (כשייתכן ש-webhook הוחמץ).",
)
async def sync_order(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> OrderResponse:
    return await service.reconcile(order_id, tenant_id)


@router.get("/{order_id}/checkout", response_model=CheckoutResponse, summary="קישור checkout")
async def checkout_link(
    order_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: OrderService = Depends(get_order_service),
) -> CheckoutResponse:
    return CheckoutResponse(url=await service.checkout_url(order_id, tenant_id))
