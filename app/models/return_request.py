"""
Return Request Model

Customer return/refund requests for a single delivered order item, with an
append-only audit history.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, ForeignKey, Text, Numeric, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, UTCDateTime, utc_now

if TYPE_CHECKING:
    from app.models.order import OrderItem


class ReturnStatus(str, Enum):
    """Return request status."""
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PICKED_UP = "PICKED_UP"
    RECEIVED = "RECEIVED"
    REFUNDED = "REFUNDED"


ACTIVE_RETURN_STATUSES = (
    ReturnStatus.REQUESTED.value,
    ReturnStatus.APPROVED.value,
    ReturnStatus.PICKED_UP.value,
    ReturnStatus.RECEIVED.value,
)

_ACTIVE_RETURN_CLAUSE = "status IN ('REQUESTED', 'APPROVED', 'PICKED_UP', 'RECEIVED')"


class ReturnRequest(Base):
    """
    Return request for one order item.
    At most one non-terminal request per item; enforced by the service and by
    a partial unique index.
    """
    __tablename__ = "return_requests"
    __table_args__ = (
        Index(
            'uq_return_active_per_item',
            'order_item_id',
            unique=True,
            postgresql_where=text(_ACTIVE_RETURN_CLAUSE),
            sqlite_where=text(_ACTIVE_RETURN_CLAUSE),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("order_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shops.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReturnStatus.REQUESTED.value,
        index=True,
        comment="REQUESTED, APPROVED, REJECTED, PICKED_UP, RECEIVED, REFUNDED"
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

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
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="return_requests")
    history: Mapped[List["ReturnRequestHistory"]] = relationship(
        "ReturnRequestHistory",
        back_populates="return_request",
        cascade="all, delete-orphan",
        order_by="ReturnRequestHistory.created_at"
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RETURN_STATUSES

    def __repr__(self) -> str:
        return f"<ReturnRequest(item='{self.order_item_id}', status='{self.status}')>"


class ReturnRequestHistory(Base):
    """Immutable audit entry for a return request status change."""
    __tablename__ = "return_request_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    return_request_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("return_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    actor_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False
    )

    # Relationships
    return_request: Mapped["ReturnRequest"] = relationship("ReturnRequest", back_populates="history")
