# Models module - importing registers every table on Base.metadata
from ordercore.models.order import (
    Order, OrderItem, OrderTimeline,
    OrderStatus, PaymentStatus, OrderSource, OrderPriority, TimelineEventType,
)
from ordercore.models.ndr import NDR, NDRReason, NDRResolutionStatus, NDRSeverity
from ordercore.models.notification import (
    OrderNotification, NotificationChannel, NotificationType, NotificationDeliveryStatus,
)
from ordercore.models.return_order import ReturnPolicy, ReturnRequest, ReturnStatus, QCStatus

__all__ = [
    # Orders
    "Order",
    "OrderItem",
    "OrderTimeline",
    "OrderStatus",
    "PaymentStatus",
    "OrderSource",
    "OrderPriority",
    "TimelineEventType",
    # NDR
    "NDR",
    "NDRReason",
    "NDRResolutionStatus",
    "NDRSeverity",
    # Notifications
    "OrderNotification",
    "NotificationChannel",
    "NotificationType",
    "NotificationDeliveryStatus",
    # Returns
    "ReturnPolicy",
    "ReturnRequest",
    "ReturnStatus",
    "QCStatus",
]
