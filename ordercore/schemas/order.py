from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import uuid

from ordercore.schemas.base import BaseResponseSchema, BaseCreateSchema


# Filter values meaning "no filter" (the dashboard sends "all")
MATCH_ALL_VALUES = {"", "all"}


# ==================== FILTERS ====================

class OrderFilters(BaseModel):
    """
    Order list filters. All filters are AND-combined; a missing or "all"
    value matches everything.
    """
    search: Optional[str] = Field(
        None, description="Matches order id, customer name, email or tracking number"
    )
    status: Optional[str] = None
    payment_status: Optional[str] = None
    priority: Optional[str] = None
    order_source: Optional[str] = None
    courier_partner: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    amount_min: Optional[Decimal] = Field(None, ge=0)
    amount_max: Optional[Decimal] = Field(None, ge=0)
    ndr_only: bool = False
    show_duplicates: bool = False
    seller_id: Optional[uuid.UUID] = None

    @field_validator(
        "search", "status", "payment_status", "priority", "order_source", "courier_partner",
        mode="before",
    )
    @classmethod
    def blank_or_all_means_unset(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.lower() in MATCH_ALL_VALUES:
                return None
        return v


# ==================== ORDER SCHEMAS ====================

class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: uuid.UUID
    seller_id: Optional[uuid.UUID] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    shipping_address: Dict[str, Any]
    total_amount: Decimal
    shipping_amount: Decimal
    status: str
    payment_status: str
    tracking_number: Optional[str] = None
    courier_partner: Optional[str] = None
    order_source: str
    priority: str
    delivery_instructions: Optional[str] = None
    delivery_attempts: int
    ndr_count: int
    last_ndr_date: Optional[datetime] = None
    is_duplicate: bool
    duplicate_of: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    expected_delivery_date: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int


class TimelineEntryResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    event_type: str
    event_description: str
    event_data: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: datetime


# ==================== MUTATION REQUESTS ====================

class OrderStatusUpdate(BaseCreateSchema):
    """Status is validated by the lifecycle engine, not here, so unknown
    values surface as an invalid transition rather than a schema error."""
    status: str
    tracking_number: Optional[str] = None
    courier_partner: Optional[str] = None
    notes: Optional[str] = None


class PaymentStatusUpdate(BaseCreateSchema):
    payment_status: str


class TrackingUpdate(BaseCreateSchema):
    tracking_number: str
    courier_partner: str


class BulkStatusUpdate(BaseCreateSchema):
    order_ids: List[uuid.UUID] = Field(..., min_length=1)
    status: str


class DuplicateFlag(BaseCreateSchema):
    duplicate_of: uuid.UUID


# ==================== RESULTS ====================

class BulkUpdateFailure(BaseModel):
    order_id: uuid.UUID
    code: str
    reason: str


class BulkUpdateResult(BaseModel):
    """Outcome of a bulk status update. Successes are never rolled back."""
    requested: int
    succeeded: int
    failed: int
    succeeded_ids: List[uuid.UUID] = []
    failures: List[BulkUpdateFailure] = []


class OrderStats(BaseModel):
    total_orders: int
    total_revenue: Decimal
    pending_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    average_order_value: Decimal
