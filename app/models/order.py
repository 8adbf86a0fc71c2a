import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, ForeignKey, Integer, Text, Numeric, Index, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType, UTCDateTime, utc_now

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.shop import Shop, ShopProduct, ProductPriceOption
    from app.models.rider import DeliveryBoy
    from app.models.return_request import ReturnRequest


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "PENDING"          # Placed by customer, awaiting shop
    CONFIRMED = "CONFIRMED"      # Accepted by shop
    PREPARING = "PREPARING"      # Shop is packing the order
    READY = "READY"              # Packed, waiting for pickup
    SHIPPED = "SHIPPED"          # Out for delivery with a rider
    DELIVERED = "DELIVERED"      # Handed over (OTP verified)
    CANCELLED = "CANCELLED"      # Cancelled / rejected


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    COD = "COD"
    UPI = "UPI"
    CARD = "CARD"
    WALLET = "WALLET"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"


class CancelActor(str, Enum):
    """Who cancelled an order."""
    CUSTOMER = "CUSTOMER"
    SHOPKEEPER = "SHOPKEEPER"
    DELIVERY_BOY = "DELIVERY_BOY"


class Order(Base):
    """
    One customer purchase against a single shop's inventory.
    Tracks the order from checkout to delivery; never deleted, cancellation
    is a terminal status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_customer_created', 'customer_id', 'created_at'),
        Index('ix_order_shop_status', 'shop_id', 'status'),
        Index('ix_order_rider_status', 'delivery_boy_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Order Identification
    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shops.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, CONFIRMED, PREPARING, READY, SHIPPED, DELIVERED, CANCELLED"
    )

    # Pricing (all in INR)
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Sum of line totals"
    )
    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False
    )
    total_items: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Sum of line quantities"
    )

    # Payment
    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.COD.value,
        nullable=False,
        comment="COD, UPI, CARD, WALLET"
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False
    )

    # Delivery address snapshot
    delivery_address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Delivery confirmation code, shown to the customer only
    delivery_otp: Mapped[str] = mapped_column(String(10), nullable=False)
    delivery_otp_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Rider
    delivery_boy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("delivery_boys.id", ondelete="SET NULL"),
        nullable=True
    )
    auto_assigned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Cancellation
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="CUSTOMER, SHOPKEEPER, DELIVERY_BOY"
    )

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
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    rider_assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    customer: Mapped["User"] = relationship("User", foreign_keys=[customer_id])
    shop: Mapped["Shop"] = relationship("Shop")
    delivery_boy: Mapped[Optional["DeliveryBoy"]] = relationship("DeliveryBoy")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan"
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value)

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """
    Order line item.
    A frozen snapshot of product, price option and price at checkout;
    later catalog edits never change it.
    """
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    shop_product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shop_products.id", ondelete="RESTRICT"),
        nullable=False
    )
    price_option_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("product_price_options.id", ondelete="SET NULL"),
        nullable=True
    )

    # Product snapshot (stored for historical record)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Quantity & Pricing
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Return policy at time of order
    is_returnable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    return_period_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    shop_product: Mapped["ShopProduct"] = relationship("ShopProduct")
    price_option: Mapped[Optional["ProductPriceOption"]] = relationship("ProductPriceOption")
    return_requests: Mapped[List["ReturnRequest"]] = relationship(
        "ReturnRequest",
        back_populates="order_item"
    )

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    """Append-only order status audit trail."""
    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    from_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True
    )
    to_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False
    )

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    actor_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(from='{self.from_status}', to='{self.to_status}')>"
