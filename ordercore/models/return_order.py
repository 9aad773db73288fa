import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.core.datetime_utils import utc_now
from ordercore.core.enum_utils import enum_comment
from ordercore.database import Base
from ordercore.db_types import JSONType, UUIDType


class ReturnStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class QCStatus(str, Enum):
    PENDING = "pending"
    NOT_REQUIRED = "not_required"
    PASSED = "passed"
    FAILED = "failed"


class ReturnPolicy(Base):
    """Named, reusable ruleset governing whether and how much of a return is refunded."""
    __tablename__ = "return_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    policy_name: Mapped[str] = mapped_column(String(100), nullable=False)

    return_window_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    conditions: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    auto_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    require_qc: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    refund_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("100.00"),
        nullable=False,
        comment="0-100"
    )
    shipping_charges_refundable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ReturnPolicy(name='{self.policy_name}', refund={self.refund_percentage}%)>"


class ReturnRequest(Base):
    """A customer's request to return a delivered order."""
    __tablename__ = "returns"

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
    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    return_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("return_policies.id", ondelete="SET NULL"),
        nullable=True
    )

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ReturnStatus.REQUESTED.value,
        nullable=False,
        comment=f"Return status: {enum_comment(ReturnStatus)}"
    )
    qc_status: Mapped[str] = mapped_column(
        String(20),
        default=QCStatus.PENDING.value,
        nullable=False,
        comment=f"QC status: {enum_comment(QCStatus)}"
    )
    qc_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ReturnRequest(order='{self.order_id}', status='{self.status}')>"
