import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.core.datetime_utils import utc_now
from ordercore.core.enum_utils import enum_comment
from ordercore.database import Base
from ordercore.db_types import UUIDType


class NDRResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"   # Raised in error; excluded from Order.ndr_count


class NDRReason(str, Enum):
    """
    Known courier NDR reasons.

    Couriers send free text; anything outside this taxonomy maps to OTHER,
    which has no auto-resolution rule and needs a human.
    """
    CUSTOMER_NOT_AVAILABLE = "Customer not available"
    ADDRESS_NOT_FOUND = "Address not found"
    CUSTOMER_REFUSED = "Customer refused delivery"
    INCOMPLETE_ADDRESS = "Incomplete address"
    PHONE_NOT_REACHABLE = "Phone not reachable"
    RESCHEDULED_BY_CUSTOMER = "Rescheduled by customer"
    OTHER = "Other"

    @classmethod
    def from_text(cls, reason: Optional[str]) -> "NDRReason":
        """Exact match against the taxonomy; anything else is OTHER."""
        if reason:
            for member in cls:
                if member is not cls.OTHER and member.value == reason.strip():
                    return member
        return cls.OTHER


class NDRSeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NDR(Base):
    """
    Non-Delivery Report: one failed delivery attempt for an order.

    ``resolved_at`` is set if and only if ``resolution_status`` is resolved.
    """
    __tablename__ = "ndrs"
    __table_args__ = (
        Index('ix_ndr_status_attempted', 'resolution_status', 'auto_resolution_attempted'),
    )

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

    # Free text as reported by the courier
    ndr_reason: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolution_status: Mapped[str] = mapped_column(
        String(20),
        default=NDRResolutionStatus.PENDING.value,
        nullable=False,
        comment=f"Resolution status: {enum_comment(NDRResolutionStatus)}"
    )
    next_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_resolution_attempted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic locking counter
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reason(self) -> NDRReason:
        return NDRReason.from_text(self.ndr_reason)

    @property
    def is_pending(self) -> bool:
        return self.resolution_status == NDRResolutionStatus.PENDING.value

    def __repr__(self) -> str:
        return f"<NDR(order='{self.order_id}', reason='{self.ndr_reason}', status='{self.resolution_status}')>"
