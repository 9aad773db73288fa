from typing import Optional
import uuid

from fastapi import APIRouter, Query, status

from ordercore.api.deps import Actor, NDRs
from ordercore.schemas.ndr import (
    AutoResolveResult,
    NDRCancel,
    NDRCreate,
    NDRListResponse,
    NDRResolve,
    NDRResponse,
    NDRSeverityResponse,
    NDRStats,
)


router = APIRouter(prefix="/ndrs", tags=["NDR Management"])


@router.get("", response_model=NDRListResponse)
async def list_ndrs(
    service: NDRs,
    resolution_status: Optional[str] = Query(None, alias="status"),
    order_id: Optional[uuid.UUID] = Query(None),
):
    """List NDRs, oldest first, with their current severity."""
    items = await service.list_ndrs(resolution_status=resolution_status, order_id=order_id)
    return NDRListResponse(items=items, total=len(items))


@router.get("/stats", response_model=NDRStats)
async def get_ndr_stats(service: NDRs):
    return await service.get_ndr_stats()


@router.post("", response_model=NDRResponse, status_code=status.HTTP_201_CREATED)
async def create_ndr(data: NDRCreate, service: NDRs, actor: Actor):
    """Record a failed delivery attempt."""
    ndr = await service.create_ndr(
        data.order_id,
        data.ndr_reason,
        customer_response=data.customer_response,
        actor=actor,
    )
    severity = await service.get_severity(ndr.id)
    response = NDRResponse.model_validate(ndr)
    response.severity = severity.severity
    return response


@router.post("/auto-resolve", response_model=AutoResolveResult)
async def auto_resolve_ndrs(service: NDRs):
    """
    Run auto-resolution over pending NDRs now.

    Known reasons get an action and a customer notification; the NDRs stay
    pending until resolved by a person.
    """
    return await service.auto_resolve_ndrs()


@router.get("/{ndr_id}/severity", response_model=NDRSeverityResponse)
async def get_ndr_severity(ndr_id: uuid.UUID, service: NDRs):
    return await service.get_severity(ndr_id)


@router.post("/{ndr_id}/resolve", response_model=NDRResponse)
async def resolve_ndr(ndr_id: uuid.UUID, data: NDRResolve, service: NDRs, actor: Actor):
    ndr = await service.resolve_ndr(
        ndr_id,
        data.resolution_action,
        customer_response=data.customer_response,
        actor=actor,
    )
    return NDRResponse.model_validate(ndr)


@router.post("/{ndr_id}/cancel", response_model=NDRResponse)
async def cancel_ndr(ndr_id: uuid.UUID, data: NDRCancel, service: NDRs, actor: Actor):
    ndr = await service.cancel_ndr(ndr_id, data.reason, actor=actor)
    return NDRResponse.model_validate(ndr)
