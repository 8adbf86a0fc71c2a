import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, ForeignKey, Integer, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, UTCDateTime, utc_now

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.rider import DeliveryBoy


class Shop(Base):
    """A grocery shop owned by one shopkeeper."""
    __tablename__ = "shops"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="shops")
    products: Mapped[List["ShopProduct"]] = relationship(
        "ShopProduct",
        back_populates="shop",
        cascade="all, delete-orphan"
    )
    riders: Mapped[List["DeliveryBoy"]] = relationship("DeliveryBoy", back_populates="shop")

    def __repr__(self) -> str:
        return f"<Shop(name='{self.name}')>"


class ShopProduct(Base):
    """
    A product listed by a shop, with its own stock.

    stock_quantity is only ever changed through atomic UPDATE statements in
    StockService; the check constraint keeps it from going negative even if
    a caller bypasses the guarded decrement.
    """
    __tablename__ = "shop_products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_shop_product_stock_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Base pricing (price options override per pack size)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="g, kg, ml, l, pcs")

    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Return policy
    is_returnable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    return_period_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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
    shop: Mapped["Shop"] = relationship("Shop", back_populates="products")
    price_options: Mapped[List["ProductPriceOption"]] = relationship(
        "ProductPriceOption",
        back_populates="shop_product",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ShopProduct(name='{self.name}', stock={self.stock_quantity})>"


class ProductPriceOption(Base):
    """Pack-size specific price for a shop product (e.g. 500 g, 1 kg)."""
    __tablename__ = "product_price_options"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    shop_product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shop_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    weight: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    mrp: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    shop_product: Mapped["ShopProduct"] = relationship("ShopProduct", back_populates="price_options")
