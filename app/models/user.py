import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, UTCDateTime, utc_now

if TYPE_CHECKING:
    from app.models.address import Address
    from app.models.shop import Shop
    from app.models.rider import DeliveryBoy


class UserRole(str, Enum):
    """Marketplace actor roles."""
    CUSTOMER = "CUSTOMER"
    SHOPKEEPER = "SHOPKEEPER"
    DELIVERY_BOY = "DELIVERY_BOY"
    ADMIN = "ADMIN"


class User(Base):
    """
    Marketplace user.
    A single account carries exactly one role; riders and shopkeepers get
    their role upgraded during onboarding.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Basic info
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.CUSTOMER.value,
        nullable=False,
        index=True,
        comment="CUSTOMER, SHOPKEEPER, DELIVERY_BOY, ADMIN"
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    # Relationships
    addresses: Mapped[List["Address"]] = relationship(
        "Address",
        back_populates="user",
        cascade="all, delete-orphan"
    )
    shops: Mapped[List["Shop"]] = relationship("Shop", back_populates="owner")
    delivery_profile: Mapped[Optional["DeliveryBoy"]] = relationship(
        "DeliveryBoy",
        back_populates="user",
        uselist=False
    )

    def __repr__(self) -> str:
        return f"<User(phone='{self.phone}', role='{self.role}')>"
