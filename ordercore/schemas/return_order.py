from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import uuid

from ordercore.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== RETURN POLICY ====================

class ReturnPolicyCreate(BaseCreateSchema):
    policy_name: str = Field(..., min_length=1, max_length=100)
    seller_id: Optional[uuid.UUID] = None
    return_window_days: int = Field(7, ge=0)
    conditions: Optional[Dict[str, Any]] = None
    auto_approve: bool = False
    require_qc: bool = True
    refund_percentage: Decimal = Field(Decimal("100"), ge=0, le=100)
    shipping_charges_refundable: bool = False
    is_active: bool = True


class ReturnPolicyResponse(BaseResponseSchema):
    id: uuid.UUID
    seller_id: Optional[uuid.UUID] = None
    policy_name: str
    return_window_days: int
    conditions: Optional[Dict[str, Any]] = None
    auto_approve: bool
    require_qc: bool
    refund_percentage: Decimal
    shipping_charges_refundable: bool
    is_active: bool
    created_at: datetime


# ==================== RETURN REQUEST ====================

class ReturnRequestCreate(BaseCreateSchema):
    order_id: uuid.UUID
    reason: str = Field(..., min_length=1)
    policy_id: uuid.UUID
    notes: Optional[str] = None


class ReturnReject(BaseCreateSchema):
    reason: str = Field(..., min_length=1)


class QCResultCreate(BaseCreateSchema):
    passed: bool
    notes: Optional[str] = None


class ReturnResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    seller_id: Optional[uuid.UUID] = None
    return_policy_id: Optional[uuid.UUID] = None
    reason: str
    status: str
    qc_status: str
    qc_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReturnListResponse(BaseModel):
    items: List[ReturnResponse]
    total: int
