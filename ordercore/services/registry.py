"""
Service wiring.

Builds every engine around one store, dispatcher and event bus so the
HTTP layer and background jobs share the same instances.
"""

from dataclasses import dataclass
from typing import Optional

from ordercore.config import Settings, settings as default_settings
from ordercore.events import EventBus
from ordercore.services.export_service import ExportService
from ordercore.services.ndr_service import NDRService
from ordercore.services.notification_dispatcher import NotificationDispatcher
from ordercore.services.notification_service import NotificationService
from ordercore.services.order_lifecycle_service import OrderLifecycleService
from ordercore.services.return_service import ReturnService
from ordercore.stores.base import OrderStore


@dataclass
class Services:
    store: OrderStore
    dispatcher: NotificationDispatcher
    events: EventBus
    lifecycle: OrderLifecycleService
    ndr: NDRService
    notifications: NotificationService
    returns: ReturnService
    exports: ExportService


def build_services(
    store: OrderStore,
    dispatcher: NotificationDispatcher,
    events: Optional[EventBus] = None,
    config: Optional[Settings] = None,
) -> Services:
    config = config or default_settings
    events = events or EventBus()

    lifecycle = OrderLifecycleService(
        store,
        events,
        max_retries=config.STATUS_UPDATE_MAX_RETRIES,
        bulk_concurrency=config.BULK_UPDATE_CONCURRENCY,
    )
    ndr = NDRService(
        store,
        dispatcher,
        events,
        max_retries=config.STATUS_UPDATE_MAX_RETRIES,
        critical_threshold=config.NDR_CRITICAL_THRESHOLD,
    )
    return Services(
        store=store,
        dispatcher=dispatcher,
        events=events,
        lifecycle=lifecycle,
        ndr=ndr,
        notifications=NotificationService(store, dispatcher, events),
        returns=ReturnService(store, lifecycle, events),
        exports=ExportService(
            store,
            ndr,
            delimiter=config.EXPORT_DELIMITER,
            multi_value_separator=config.EXPORT_MULTI_VALUE_SEPARATOR,
        ),
    )
