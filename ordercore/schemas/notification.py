from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid

from ordercore.schemas.base import BaseResponseSchema, BaseCreateSchema


class NotificationSend(BaseCreateSchema):
    """
    Manual customer notification.

    An empty channel list is rejected by the notification service with a
    readable reason rather than by schema validation.
    """
    order_id: uuid.UUID
    message: str = Field(..., min_length=1)
    channels: List[str] = []
    notification_type: str = "delay"


class TemplateSend(BaseCreateSchema):
    order_id: uuid.UUID
    template_id: str
    channels: Optional[List[str]] = None
    variables: Optional[Dict[str, str]] = Field(
        None, description="Values for [PLACEHOLDER] tokens in the template message"
    )


class CustomerResponseCreate(BaseCreateSchema):
    response: str = Field(..., min_length=1)


class NotificationResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    notification_type: str
    message: str
    sent_via: List[str]
    channel_results: Optional[List[Dict[str, Any]]] = None
    status: str
    sent_at: datetime
    customer_response: Optional[str] = None
    responded_at: Optional[datetime] = None


class NotificationTemplateResponse(BaseModel):
    id: str
    name: str
    type: str
    message: str
    channels: List[str]


class NotificationStats(BaseModel):
    total: int
    today: int
    by_type: Dict[str, int] = {}
    by_status: Dict[str, int] = {}
