from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class RiderResponse(BaseResponseSchema):
    """Delivery rider profile."""
    id: uuid.UUID
    user_id: uuid.UUID
    shop_id: uuid.UUID
    vehicle_type: str
    vehicle_number: str
    delivery_radius_km: int
    is_available: bool
    is_active: bool
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    total_deliveries: int


class AvailabilityUpdate(BaseCreateSchema):
    """Set availability explicitly; omit to toggle."""
    is_available: Optional[bool] = None


class LocationUpdate(BaseCreateSchema):
    """Rider geolocation ping."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class RiderLocationResponse(BaseModel):
    rider_id: uuid.UUID
    latitude: float
    longitude: float
    updated_at: datetime
