import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Boolean, ForeignKey, Integer, Float
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, UTCDateTime, utc_now

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.shop import Shop


class DeliveryBoy(Base):
    """
    Delivery rider profile, created when a user is upgraded to DELIVERY_BOY.
    Each rider is affiliated with exactly one shop.
    """
    __tablename__ = "delivery_boys"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shops.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Vehicle & documents
    vehicle_type: Mapped[str] = mapped_column(String(50), default="BIKE", nullable=False)
    vehicle_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    license_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    delivery_radius_km: Mapped[int] = mapped_column(Integer, default=5, nullable=False)

    # Dispatch state
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Last known location (last write wins)
    current_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    total_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="delivery_profile")
    shop: Mapped["Shop"] = relationship("Shop", back_populates="riders")

    def __repr__(self) -> str:
        return f"<DeliveryBoy(vehicle='{self.vehicle_number}', available={self.is_available})>"
