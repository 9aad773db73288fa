import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.core.datetime_utils import utc_now
from ordercore.core.enum_utils import enum_comment
from ordercore.database import Base
from ordercore.db_types import JSONType, UUIDType


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class NotificationType(str, Enum):
    DELAY = "delay"
    NDR = "ndr"
    DELIVERY = "delivery"
    OTHER = "other"


class NotificationDeliveryStatus(str, Enum):
    SENT = "sent"          # Every channel accepted the message
    PARTIAL = "partial"    # At least one channel failed
    FAILED = "failed"      # No channel accepted the message


class OrderNotification(Base):
    """
    One outbound customer communication.

    Written once per dispatch; afterwards only ``customer_response`` changes.
    """
    __tablename__ = "order_notifications"

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

    notification_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment=f"Type: {enum_comment(NotificationType)}"
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sent_via: Mapped[List[str]] = mapped_column(JSONType, nullable=False)
    # Per-channel outcome: [{"channel": "sms", "success": true, "error": null}, ...]
    channel_results: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment=f"Delivery status: {enum_comment(NotificationDeliveryStatus)}"
    )

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True
    )
    customer_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OrderNotification(order='{self.order_id}', type='{self.notification_type}')>"
