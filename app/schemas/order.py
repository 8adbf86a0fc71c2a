from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.core.enum_utils import normalize_to_uppercase, VALID_PAYMENT_METHODS
from app.models.order import OrderStatus, PaymentMethod
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money


MAX_LINE_QUANTITY = 100


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    """One checkout line."""
    shop_product_id: uuid.UUID
    price_option_id: Optional[uuid.UUID] = None
    quantity: int = Field(..., ge=1, le=MAX_LINE_QUANTITY)


class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    id: uuid.UUID
    shop_product_id: uuid.UUID
    price_option_id: Optional[uuid.UUID] = None
    product_name: str
    product_brand: Optional[str] = None
    product_image: Optional[str] = None
    weight: Optional[Decimal] = None
    unit: Optional[str] = None
    quantity: int
    unit_price: Money
    total_price: Money
    is_returnable: bool
    return_period_days: Optional[int] = None
    created_at: datetime


# ==================== STATUS HISTORY SCHEMAS ====================

class StatusHistoryResponse(BaseResponseSchema):
    """Order status history response."""
    id: uuid.UUID
    from_status: Optional[str] = None  # VARCHAR in DB
    to_status: str  # VARCHAR in DB
    changed_by: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Checkout request. Lines from several shops produce one order per shop."""
    address_id: uuid.UUID
    items: List[OrderItemCreate] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.COD
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, v):
        return normalize_to_uppercase(v, VALID_PAYMENT_METHODS)


class OrderCancelRequest(BaseCreateSchema):
    """Cancel / reject request."""
    reason: Optional[str] = Field(None, max_length=500)


class OrderAcceptRequest(BaseCreateSchema):
    """Shopkeeper accept. The target status decides how far the order moves."""
    status: OrderStatus = OrderStatus.CONFIRMED
    notes: Optional[str] = Field(None, max_length=500)


class AssignRiderRequest(BaseCreateSchema):
    """Shopkeeper assigns a rider."""
    delivery_boy_id: uuid.UUID


class DeliverOrderRequest(BaseCreateSchema):
    """Rider delivery confirmation."""
    otp: str = Field(..., min_length=1, max_length=10)


class OrderResponse(BaseResponseSchema):
    """Order response schema. Never carries the delivery OTP."""
    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    shop_id: uuid.UUID
    status: str
    subtotal: Money
    delivery_fee: Money
    total_amount: Money
    total_items: int
    payment_method: str  # VARCHAR in DB
    payment_status: str  # VARCHAR in DB
    delivery_address: dict
    notes: Optional[str] = None
    delivery_boy_id: Optional[uuid.UUID] = None
    auto_assigned: bool = False
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    rider_assigned_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class OrderDetailResponse(OrderResponse):
    """Detailed order response with items and history."""
    items: List[OrderItemResponse] = []
    status_history: List[StatusHistoryResponse] = []


class CustomerOrderDetailResponse(OrderDetailResponse):
    """Order detail for the ordering customer, who hands the OTP to the rider."""
    delivery_otp: str


class OrderListResponse(BaseModel):
    """Paginated order list."""
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int


class PlaceOrderResponse(BaseModel):
    """Checkout result: one order per shop."""
    orders: List[CustomerOrderDetailResponse]
    grand_total: Money
