from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
import uuid

from ordercore.schemas.base import BaseResponseSchema, BaseCreateSchema


class NDRCreate(BaseCreateSchema):
    """Failed delivery attempt reported by a courier (webhook or manual entry)."""
    order_id: uuid.UUID
    ndr_reason: str = Field(..., min_length=1, max_length=255)
    customer_response: Optional[str] = None


class NDRResolve(BaseCreateSchema):
    resolution_action: str = Field(..., min_length=1)
    customer_response: Optional[str] = None


class NDRCancel(BaseCreateSchema):
    reason: str = Field(..., min_length=1)


class NDRResponse(BaseResponseSchema):
    """NDR response schema."""
    id: uuid.UUID
    order_id: uuid.UUID
    ndr_reason: str
    customer_response: Optional[str] = None
    resolution_status: str
    next_action: Optional[str] = None
    auto_resolution_attempted: bool
    created_at: datetime
    resolved_at: Optional[datetime] = None
    severity: Optional[str] = None


class NDRListResponse(BaseModel):
    items: List[NDRResponse]
    total: int


class NDRSeverityResponse(BaseModel):
    ndr_id: uuid.UUID
    order_id: uuid.UUID
    ndr_count: int
    severity: str


class AutoResolveFailure(BaseModel):
    ndr_id: uuid.UUID
    code: str
    reason: str


class AutoResolveResult(BaseModel):
    """
    Outcome of one auto-resolution batch.

    ``processed`` counts NDRs that received an action and whose customer
    was contacted on every channel; ``skipped`` counts NDRs whose reason has
    no rule (left for a human) or that another batch claimed first. A
    dispatch failure is listed in ``failures`` and the NDR stays claimed.
    """
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: bool = False
    processed_ids: List[uuid.UUID] = []
    failures: List[AutoResolveFailure] = []


class NDRStats(BaseModel):
    total: int
    pending: int
    resolved: int
    cancelled: int
    auto_attempted: int
    resolution_rate: int
    auto_resolution_rate: int
    by_reason: Dict[str, int] = {}
