from typing import List
import uuid

from fastapi import APIRouter, Query

from ordercore.api.deps import Actor, Filters, Lifecycle
from ordercore.schemas.order import (
    BulkStatusUpdate,
    BulkUpdateResult,
    DuplicateFlag,
    OrderListResponse,
    OrderResponse,
    OrderStats,
    OrderStatusUpdate,
    PaymentStatusUpdate,
    TimelineEntryResponse,
    TrackingUpdate,
)


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=OrderListResponse)
async def list_orders(
    service: Lifecycle,
    filters: Filters,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """
    List orders, newest first.

    All filters are AND-combined; "all" or an empty value matches everything.
    """
    orders, total = await service.list_orders(filters, skip=skip, limit=limit)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
    )


@router.get("/stats", response_model=OrderStats)
async def get_order_stats(service: Lifecycle, filters: Filters):
    """Stats cards for the filtered order set."""
    return await service.get_order_stats(filters)


@router.post("/bulk-status", response_model=BulkUpdateResult)
async def bulk_update_status(data: BulkStatusUpdate, service: Lifecycle, actor: Actor):
    """
    Update the status of many orders.

    Each order succeeds or fails on its own; failures are listed with reasons.
    """
    return await service.bulk_update_status(data.order_ids, data.status, actor=actor)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: uuid.UUID, service: Lifecycle):
    return await service.get_order(order_id)


@router.get("/{order_id}/timeline", response_model=List[TimelineEntryResponse])
async def get_order_timeline(order_id: uuid.UUID, service: Lifecycle):
    """Audit trail of the order, newest first."""
    return await service.get_timeline(order_id)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    service: Lifecycle,
    actor: Actor,
):
    """Move an order to a new status, optionally assigning tracking."""
    return await service.update_status(
        order_id,
        data.status,
        tracking_number=data.tracking_number,
        courier_partner=data.courier_partner,
        notes=data.notes,
        actor=actor,
    )


@router.put("/{order_id}/payment-status", response_model=OrderResponse)
async def update_payment_status(
    order_id: uuid.UUID,
    data: PaymentStatusUpdate,
    service: Lifecycle,
    actor: Actor,
):
    return await service.update_payment_status(order_id, data.payment_status, actor=actor)


@router.put("/{order_id}/tracking", response_model=OrderResponse)
async def update_tracking(
    order_id: uuid.UUID,
    data: TrackingUpdate,
    service: Lifecycle,
    actor: Actor,
):
    """Set tracking; an order not yet shipped moves to shipped."""
    return await service.update_tracking_info(
        order_id,
        data.tracking_number,
        data.courier_partner,
        actor=actor,
    )


@router.post("/{order_id}/duplicate", response_model=OrderResponse)
async def flag_duplicate(
    order_id: uuid.UUID,
    data: DuplicateFlag,
    service: Lifecycle,
    actor: Actor,
):
    return await service.flag_duplicate(order_id, data.duplicate_of, actor=actor)
