from pydantic import Field
from typing import Optional, List, Literal
from datetime import datetime
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money


MIN_REASON_LENGTH = 5


class ReturnCreate(BaseCreateSchema):
    """Customer return request for one order item."""
    reason: str = Field(..., min_length=MIN_REASON_LENGTH, max_length=1000)


class ReturnProcessRequest(BaseCreateSchema):
    """Shopkeeper decision on a requested return."""
    action: Literal["APPROVED", "REJECTED"]
    note: Optional[str] = Field(None, max_length=500)


class ReturnNoteRequest(BaseCreateSchema):
    """Optional note for pickup / receive / refund steps."""
    note: Optional[str] = Field(None, max_length=500)


class ReturnHistoryResponse(BaseResponseSchema):
    id: uuid.UUID
    status: str
    changed_by: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime


class ReturnResponse(BaseResponseSchema):
    """Return request with its audit trail."""
    id: uuid.UUID
    order_item_id: uuid.UUID
    customer_id: uuid.UUID
    shop_id: uuid.UUID
    status: str
    reason: str
    refund_amount: Money
    created_at: datetime
    updated_at: datetime
    refunded_at: Optional[datetime] = None
    history: List[ReturnHistoryResponse] = []
