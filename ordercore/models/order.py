import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import event, String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ordercore.core.datetime_utils import utc_now
from ordercore.core.enum_utils import enum_comment
from ordercore.database import Base
from ordercore.db_types import JSONType, UUIDType


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"                  # Terminal success
    RETURN_REQUESTED = "return_requested"    # Customer asked to return a delivered order
    RETURNED = "returned"                    # Terminal
    CANCELLED = "cancelled"                  # Terminal


class PaymentStatus(str, Enum):
    """Payment status enumeration (independent of OrderStatus)."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class OrderSource(str, Enum):
    WEBSITE = "website"
    MOBILE_APP = "mobile_app"
    MARKETPLACE = "marketplace"
    SOCIAL = "social"
    MANUAL = "manual"


class OrderPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TimelineEventType(str, Enum):
    """Event types written to the order timeline."""
    STATUS_UPDATE = "status_update"
    BULK_STATUS_UPDATE = "bulk_status_update"
    PAYMENT_STATUS_UPDATE = "payment_status_update"
    TRACKING_UPDATE = "tracking_update"
    DUPLICATE_FLAGGED = "duplicate_flagged"
    NDR_CREATED = "ndr_created"
    NDR_RESOLVED = "ndr_resolved"
    NDR_CANCELLED = "ndr_cancelled"
    NDR_AUTO_RESOLUTION = "ndr_auto_resolution"
    RETURN_REQUESTED = "return_requested"
    RETURN_APPROVED = "return_approved"
    RETURN_REJECTED = "return_rejected"
    RETURN_QC = "return_qc"


class Order(Base):
    """
    One customer purchase.

    Orders are never deleted; cancellation is a status value. Mutations go
    through OrderLifecycleService, which relies on ``version_id`` for
    optimistic locking.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_payment_status', 'payment_status', 'created_at'),
        Index('ix_order_seller_created', 'seller_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Tenant
    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Customer
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    shipping_address: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="street, city, state, postal_code, country"
    )

    # Amounts
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shipping_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment=f"Order status: {enum_comment(OrderStatus)}"
    )
    payment_status: Mapped[str] = mapped_column(
        String(50),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment=f"Payment status: {enum_comment(PaymentStatus)}"
    )

    # Shipping
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    courier_partner: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivery_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    order_source: Mapped[str] = mapped_column(
        String(30),
        default=OrderSource.WEBSITE.value,
        nullable=False,
        comment=f"Order source: {enum_comment(OrderSource)}"
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default=OrderPriority.NORMAL.value,
        nullable=False,
        comment=f"Priority: {enum_comment(OrderPriority)}"
    )

    # Delivery exceptions
    delivery_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ndr_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Number of non-cancelled NDRs for this order"
    )
    last_ndr_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Duplicate detection (identity reference only)
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duplicate_of: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expected_delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic locking counter
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Order(id='{self.id}', status='{self.status}')>"


class OrderItem(Base):
    """Order line item. ``total_price`` is always quantity x unit_price."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Catalog product (read-only here, lives in the catalog service)
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @validates("quantity", "unit_price")
    def _recompute_total(self, key, value):
        quantity = value if key == "quantity" else self.quantity
        unit_price = value if key == "unit_price" else self.unit_price
        if key == "quantity" and value is not None and value < 1:
            raise ValueError("quantity must be at least 1")
        if quantity is not None and unit_price is not None:
            self.total_price = Decimal(quantity) * Decimal(str(unit_price))
        return value

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


@event.listens_for(OrderItem, "before_insert")
@event.listens_for(OrderItem, "before_update")
def _enforce_item_total(mapper, connection, target: OrderItem) -> None:
    target.total_price = Decimal(target.quantity) * Decimal(str(target.unit_price))


class OrderTimeline(Base):
    """Append-only audit log entry for an order."""
    __tablename__ = "order_timeline"
    __table_args__ = (
        Index('ix_order_timeline_order_created', 'order_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )

    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment=f"Event type: {enum_comment(TimelineEventType)}"
    )
    event_description: Mapped[str] = mapped_column(Text, nullable=False)
    event_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<OrderTimeline(order='{self.order_id}', event='{self.event_type}')>"
