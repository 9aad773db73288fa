from typing import List, Optional
import uuid

from fastapi import APIRouter, Query, status

from ordercore.api.deps import Actor, Returns
from ordercore.schemas.return_order import (
    QCResultCreate,
    ReturnListResponse,
    ReturnPolicyCreate,
    ReturnPolicyResponse,
    ReturnReject,
    ReturnRequestCreate,
    ReturnResponse,
)


router = APIRouter(prefix="/returns", tags=["Returns"])


# ==================== RETURN POLICIES ====================

@router.post("/policies", response_model=ReturnPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_return_policy(data: ReturnPolicyCreate, service: Returns):
    return await service.create_return_policy(data)


@router.get("/policies", response_model=List[ReturnPolicyResponse])
async def list_return_policies(service: Returns, active_only: bool = Query(True)):
    return await service.list_return_policies(active_only=active_only)


# ==================== RETURN REQUESTS ====================

@router.post("", response_model=ReturnResponse, status_code=status.HTTP_201_CREATED)
async def create_return_request(data: ReturnRequestCreate, service: Returns, actor: Actor):
    """
    Open a return for a delivered order.

    The order moves to return_requested in the same transaction.
    """
    return await service.process_return_request(
        data.order_id,
        data.reason,
        data.policy_id,
        notes=data.notes,
        actor=actor,
    )


@router.get("", response_model=ReturnListResponse)
async def list_returns(service: Returns, order_id: Optional[uuid.UUID] = Query(None)):
    items = await service.list_returns(order_id=order_id)
    return ReturnListResponse(
        items=[ReturnResponse.model_validate(r) for r in items],
        total=len(items),
    )


@router.get("/{return_id}", response_model=ReturnResponse)
async def get_return(return_id: uuid.UUID, service: Returns):
    return await service.get_return(return_id)


@router.post("/{return_id}/qc", response_model=ReturnResponse)
async def record_qc_result(return_id: uuid.UUID, data: QCResultCreate, service: Returns, actor: Actor):
    return await service.record_qc_result(return_id, data.passed, notes=data.notes, actor=actor)


@router.post("/{return_id}/approve", response_model=ReturnResponse)
async def approve_return(return_id: uuid.UUID, service: Returns, actor: Actor):
    """Approve and compute the refund. QC must have passed or not be required."""
    return await service.approve_return(return_id, actor=actor)


@router.post("/{return_id}/reject", response_model=ReturnResponse)
async def reject_return(return_id: uuid.UUID, data: ReturnReject, service: Returns, actor: Actor):
    return await service.reject_return(return_id, data.reason, actor=actor)
