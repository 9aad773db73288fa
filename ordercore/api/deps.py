from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import Depends, Header, Query, Request

from ordercore.schemas.order import OrderFilters
from ordercore.services.export_service import ExportService
from ordercore.services.ndr_service import NDRService
from ordercore.services.notification_service import NotificationService
from ordercore.services.order_lifecycle_service import OrderLifecycleService
from ordercore.services.registry import Services
from ordercore.services.return_service import ReturnService


def get_services(request: Request) -> Services:
    """Engines wired onto app.state during application startup."""
    return request.app.state.services


async def get_actor(
    x_actor: Annotated[Optional[str], Header(alias="X-Actor")] = None,
) -> Optional[str]:
    """
    Acting user, recorded as timeline ``created_by``.

    Authentication happens upstream; the gateway forwards the user here.
    """
    if x_actor is None:
        return None
    return x_actor.strip()[:100] or None


def get_lifecycle_service(services: Annotated[Services, Depends(get_services)]) -> OrderLifecycleService:
    return services.lifecycle


def get_ndr_service(services: Annotated[Services, Depends(get_services)]) -> NDRService:
    return services.ndr


def get_notification_service(services: Annotated[Services, Depends(get_services)]) -> NotificationService:
    return services.notifications


def get_return_service(services: Annotated[Services, Depends(get_services)]) -> ReturnService:
    return services.returns


def get_export_service(services: Annotated[Services, Depends(get_services)]) -> ExportService:
    return services.exports


def order_filters(
    search: Optional[str] = Query(None, description="Order id, customer name, email or tracking number"),
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    order_source: Optional[str] = Query(None),
    courier_partner: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    amount_min: Optional[Decimal] = Query(None, ge=0),
    amount_max: Optional[Decimal] = Query(None, ge=0),
    ndr_only: bool = Query(False),
    show_duplicates: bool = Query(False),
) -> OrderFilters:
    return OrderFilters(
        search=search,
        status=status,
        payment_status=payment_status,
        priority=priority,
        order_source=order_source,
        courier_partner=courier_partner,
        date_from=date_from,
        date_to=date_to,
        amount_min=amount_min,
        amount_max=amount_max,
        ndr_only=ndr_only,
        show_duplicates=show_duplicates,
    )


# Type aliases for cleaner endpoint signatures
Actor = Annotated[Optional[str], Depends(get_actor)]
Lifecycle = Annotated[OrderLifecycleService, Depends(get_lifecycle_service)]
NDRs = Annotated[NDRService, Depends(get_ndr_service)]
Notifications = Annotated[NotificationService, Depends(get_notification_service)]
Returns = Annotated[ReturnService, Depends(get_return_service)]
Exports = Annotated[ExportService, Depends(get_export_service)]
Filters = Annotated[OrderFilters, Depends(order_filters)]
