from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import Response

from ordercore.api.deps import Exports, Filters
from ordercore.services.export_service import (
    NDR_EXPORT_FIELDS,
    NOTIFICATION_EXPORT_FIELDS,
    ORDER_EXPORT_FIELDS,
    field_labels,
)


router = APIRouter(prefix="/exports", tags=["Exports"])


def _csv_response(content: str, name: str) -> Response:
    filename = f"{name}-export-{datetime.now(timezone.utc):%Y-%m-%d}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/fields", response_model=Dict[str, Dict[str, str]])
async def list_export_fields():
    """Allowed field keys (and their column headers) per export."""
    return {
        "orders": field_labels(ORDER_EXPORT_FIELDS),
        "ndrs": field_labels(NDR_EXPORT_FIELDS),
        "notifications": field_labels(NOTIFICATION_EXPORT_FIELDS),
    }


@router.get("/orders")
async def export_orders(
    service: Exports,
    filters: Filters,
    fields: Optional[List[str]] = Query(None),
):
    """Export filtered orders as CSV. Omit ``fields`` for every column."""
    content = await service.export_orders(filters, fields)
    return _csv_response(content, "orders")


@router.get("/ndrs")
async def export_ndrs(
    service: Exports,
    resolution_status: Optional[str] = Query(None, alias="status"),
    fields: Optional[List[str]] = Query(None),
):
    content = await service.export_ndrs(resolution_status, fields)
    return _csv_response(content, "ndrs")


@router.get("/notifications")
async def export_notifications(
    service: Exports,
    notification_type: Optional[str] = Query(None),
    fields: Optional[List[str]] = Query(None),
):
    content = await service.export_notifications(fields, notification_type=notification_type)
    return _csv_response(content, "notifications")
