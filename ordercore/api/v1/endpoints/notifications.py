from typing import List, Optional
import uuid

from fastapi import APIRouter, Query, status

from ordercore.api.deps import Notifications
from ordercore.schemas.notification import (
    CustomerResponseCreate,
    NotificationResponse,
    NotificationSend,
    NotificationStats,
    NotificationTemplateResponse,
    TemplateSend,
)


router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    service: Notifications,
    order_id: Optional[uuid.UUID] = Query(None),
    notification_type: Optional[str] = Query(None),
):
    """Notifications, most recently sent first."""
    return await service.list_notifications(order_id=order_id, notification_type=notification_type)


@router.get("/templates", response_model=List[NotificationTemplateResponse])
async def list_templates(service: Notifications):
    return service.list_templates()


@router.get("/stats", response_model=NotificationStats)
async def get_notification_stats(service: Notifications):
    return await service.get_notification_stats()


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def send_notification(data: NotificationSend, service: Notifications):
    """
    Send a message to the order's customer.

    A failed channel returns 502 naming the channel; the notification is
    still recorded with its per-channel results.
    """
    return await service.send_notification(
        data.order_id,
        data.message,
        data.channels,
        notification_type=data.notification_type,
    )


@router.post("/template", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def send_template(data: TemplateSend, service: Notifications):
    return await service.send_template(
        data.order_id,
        data.template_id,
        channels=data.channels,
        variables=data.variables,
    )


@router.post("/{notification_id}/response", response_model=NotificationResponse)
async def record_customer_response(
    notification_id: uuid.UUID,
    data: CustomerResponseCreate,
    service: Notifications,
):
    return await service.record_customer_response(notification_id, data.response)
