"""
Customer Notification Service

Sends order notifications (delays, NDR follow-ups, delivery confirmations)
through the NotificationDispatcher and keeps one OrderNotification record
per dispatch, including the per-channel outcome.
"""
import logging
import uuid
from typing import Dict, Iterable, List, Optional

from ordercore.core.datetime_utils import as_utc, utc_now
from ordercore.core.enum_utils import enum_values, to_enum
from ordercore.events import DomainEvent, EventBus, EventType
from ordercore.exceptions import DispatchError, InvalidRequestError, NotFoundError
from ordercore.models.notification import (
    NotificationChannel, NotificationDeliveryStatus, NotificationType, OrderNotification,
)
from ordercore.models.order import Order
from ordercore.schemas.notification import NotificationStats
from ordercore.services.notification_dispatcher import DispatchResult, NotificationDispatcher
from ordercore.stores.base import OrderStore


logger = logging.getLogger(__name__)


# Dashboard quick-send templates
NOTIFICATION_TEMPLATES: Dict[str, dict] = {
    "delay_weather": {
        "name": "Weather Delay",
        "type": NotificationType.DELAY,
        "message": (
            "Your order delivery has been delayed by 1-2 days due to adverse weather "
            "conditions. We apologize for the inconvenience."
        ),
        "channels": [NotificationChannel.EMAIL, NotificationChannel.SMS],
    },
    "delay_logistics": {
        "name": "Logistics Delay",
        "type": NotificationType.DELAY,
        "message": (
            "Your order is experiencing a slight delay due to high volume. "
            "Expected delivery: [NEW_DATE]"
        ),
        "channels": [NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.WHATSAPP],
    },
    "ndr_standard": {
        "name": "Standard NDR",
        "type": NotificationType.NDR,
        "message": (
            "We attempted to deliver your order but were unable to complete the delivery. "
            "Please contact us to reschedule."
        ),
        "channels": [NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.WHATSAPP],
    },
    "delivery_success": {
        "name": "Delivery Confirmation",
        "type": NotificationType.DELIVERY,
        "message": (
            "Great news! Your order has been successfully delivered. "
            "Thank you for shopping with us."
        ),
        "channels": [NotificationChannel.EMAIL, NotificationChannel.SMS],
    },
}


def parse_channels(channels: Iterable) -> List[NotificationChannel]:
    """Validate a channel set: non-empty, known channels only, duplicates dropped."""
    parsed: List[NotificationChannel] = []
    for value in channels or []:
        channel = to_enum(value, NotificationChannel)
        if channel is None:
            raise InvalidRequestError(
                f"'{value}' is not a notification channel. "
                f"Valid channels: {', '.join(enum_values(NotificationChannel))}"
            )
        if channel not in parsed:
            parsed.append(channel)
    if not parsed:
        raise InvalidRequestError("Select at least one notification channel.")
    return parsed


def delivery_status(result: DispatchResult) -> NotificationDeliveryStatus:
    if result.all_succeeded:
        return NotificationDeliveryStatus.SENT
    if result.any_succeeded:
        return NotificationDeliveryStatus.PARTIAL
    return NotificationDeliveryStatus.FAILED


def build_notification_record(
    order: Order,
    message: str,
    notification_type: NotificationType,
    result: DispatchResult,
) -> OrderNotification:
    return OrderNotification(
        order_id=order.id,
        seller_id=order.seller_id,
        notification_type=notification_type.value,
        message=message,
        sent_via=[r.channel.value for r in result.results],
        channel_results=[r.to_dict() for r in result.results],
        status=delivery_status(result).value,
        sent_at=utc_now(),
    )


def dispatch_error_for(result: DispatchResult) -> DispatchError:
    """DispatchError attributed to the first failed channel."""
    failed = next(r for r in result.results if not r.success)
    return DispatchError(
        f"Notification could not be sent via {failed.channel.value}: {failed.error}",
        channel=failed.channel.value,
        result=result,
    )


class NotificationService:
    """Service for sending and tracking customer notifications."""

    def __init__(
        self,
        store: OrderStore,
        dispatcher: NotificationDispatcher,
        events: Optional[EventBus] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.events = events or EventBus()

    async def send_notification(
        self,
        order_id: uuid.UUID,
        message: str,
        channels: Iterable,
        notification_type=NotificationType.DELAY,
    ) -> OrderNotification:
        """
        Send a message to the order's customer and record it.

        The record is written whatever the outcome. If any channel failed,
        DispatchError (naming the first failed channel) is raised afterwards.
        """
        channel_list = parse_channels(channels)
        n_type = to_enum(notification_type, NotificationType)
        if n_type is None:
            raise InvalidRequestError(
                f"'{notification_type}' is not a notification type. "
                f"Valid types: {', '.join(enum_values(NotificationType))}"
            )
        message = (message or "").strip()
        if not message:
            raise InvalidRequestError("Notification message cannot be empty.")

        async with self.store.session() as session:
            order = await session.get_order(order_id)

        return await self._dispatch_and_record(order, message, channel_list, n_type)

    async def send_template(
        self,
        order_id: uuid.UUID,
        template_id: str,
        channels: Optional[Iterable] = None,
        variables: Optional[Dict[str, str]] = None,
    ) -> OrderNotification:
        """Send one of NOTIFICATION_TEMPLATES, on its default channels unless overridden."""
        template = NOTIFICATION_TEMPLATES.get(template_id)
        if template is None:
            raise NotFoundError("Notification template", template_id)

        channel_list = parse_channels(channels if channels else template["channels"])

        async with self.store.session() as session:
            order = await session.get_order(order_id)

        values = dict(variables or {})
        if "NEW_DATE" not in values and order.expected_delivery_date:
            values["NEW_DATE"] = as_utc(order.expected_delivery_date).strftime("%d %b %Y")

        message = template["message"]
        for key, value in values.items():
            message = message.replace(f"[{key}]", value)

        return await self._dispatch_and_record(order, message, channel_list, template["type"])

    async def _dispatch_and_record(
        self,
        order: Order,
        message: str,
        channels: List[NotificationChannel],
        notification_type: NotificationType,
    ) -> OrderNotification:
        result = await self.dispatcher.send(
            order.id,
            message,
            channels,
            email=order.customer_email,
            phone=order.customer_phone,
        )

        record = build_notification_record(order, message, notification_type, result)
        async with self.store.session() as session:
            session.add(record)

        logger.info(
            f"{notification_type.value} notification for order {order.id}: "
            f"{record.status} via {', '.join(record.sent_via)}"
        )
        await self.events.publish(DomainEvent(
            EventType.NOTIFICATION_SENT,
            {
                "notification_id": str(record.id),
                "order_id": str(order.id),
                "notification_type": notification_type.value,
                "status": record.status,
                "channels": record.channel_results,
            },
        ))

        if result.failed_channels:
            error = dispatch_error_for(result)
            error.context["notification_id"] = str(record.id)
            raise error
        return record

    async def record_customer_response(
        self,
        notification_id: uuid.UUID,
        response: str,
    ) -> OrderNotification:
        """Attach the customer's reply; the only change a notification ever receives."""
        response = (response or "").strip()
        if not response:
            raise InvalidRequestError("Customer response cannot be empty.")

        async with self.store.session() as session:
            notification = await session.get_notification(notification_id)
            notification.customer_response = response
            notification.responded_at = utc_now()

        logger.info(f"Customer response recorded on notification {notification_id}")
        return notification

    async def list_notifications(
        self,
        order_id: Optional[uuid.UUID] = None,
        notification_type: Optional[str] = None,
    ) -> List[OrderNotification]:
        async with self.store.session() as session:
            return await session.find_notifications(order_id=order_id, notification_type=notification_type)

    def list_templates(self) -> List[dict]:
        return [
            {
                "id": template_id,
                "name": template["name"],
                "type": template["type"].value,
                "message": template["message"],
                "channels": [c.value for c in template["channels"]],
            }
            for template_id, template in NOTIFICATION_TEMPLATES.items()
        ]

    async def get_notification_stats(self) -> NotificationStats:
        notifications = await self.list_notifications()
        today = utc_now().date()

        by_type: Dict[str, int] = {}
        by_status: Dict[str, int] = {}
        for n in notifications:
            by_type[n.notification_type] = by_type.get(n.notification_type, 0) + 1
            by_status[n.status] = by_status.get(n.status, 0) + 1

        return NotificationStats(
            total=len(notifications),
            today=sum(1 for n in notifications if as_utc(n.sent_at).date() == today),
            by_type=by_type,
            by_status=by_status,
        )
