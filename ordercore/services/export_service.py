"""
Export Service

Flattens orders, NDRs and notifications into delimited text for download.
Read-only. Quoting follows the standard CSV rule (wrap in quotes, double
inner quotes) so names and addresses containing the delimiter survive.
"""

import csv
import io
import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ordercore.config import settings
from ordercore.exceptions import InvalidRequestError
from ordercore.schemas.order import OrderFilters
from ordercore.services.ndr_service import NDRService
from ordercore.stores.base import OrderStore


logger = logging.getLogger(__name__)

# field key -> (header label, value getter)
FieldSpec = Tuple[str, Callable[[Any], Any]]

ORDER_EXPORT_FIELDS: "OrderedDict[str, FieldSpec]" = OrderedDict([
    ("id", ("Order ID", lambda o: o.id)),
    ("customer_name", ("Customer Name", lambda o: o.customer_name)),
    ("customer_email", ("Email", lambda o: o.customer_email)),
    ("customer_phone", ("Phone", lambda o: o.customer_phone)),
    ("total_amount", ("Total Amount", lambda o: o.total_amount)),
    ("status", ("Status", lambda o: o.status)),
    ("payment_status", ("Payment Status", lambda o: o.payment_status)),
    ("order_source", ("Order Source", lambda o: o.order_source)),
    ("priority", ("Priority", lambda o: o.priority)),
    ("tracking_number", ("Tracking Number", lambda o: o.tracking_number)),
    ("courier_partner", ("Courier Partner", lambda o: o.courier_partner)),
    ("created_at", ("Created At", lambda o: o.created_at)),
    ("expected_delivery_date", ("Expected Delivery", lambda o: o.expected_delivery_date)),
    ("ndr_count", ("NDR Count", lambda o: o.ndr_count)),
    ("is_duplicate", ("Is Duplicate", lambda o: o.is_duplicate)),
])

NDR_EXPORT_FIELDS: "OrderedDict[str, FieldSpec]" = OrderedDict([
    ("id", ("NDR ID", lambda n: n.id)),
    ("order_id", ("Order ID", lambda n: n.order_id)),
    ("ndr_reason", ("Reason", lambda n: n.ndr_reason)),
    ("severity", ("Severity", lambda n: n.severity)),
    ("resolution_status", ("Resolution Status", lambda n: n.resolution_status)),
    ("next_action", ("Next Action", lambda n: n.next_action)),
    ("auto_resolution_attempted", ("Auto Resolution Attempted", lambda n: n.auto_resolution_attempted)),
    ("customer_response", ("Customer Response", lambda n: n.customer_response)),
    ("created_at", ("Created At", lambda n: n.created_at)),
    ("resolved_at", ("Resolved At", lambda n: n.resolved_at)),
])

NOTIFICATION_EXPORT_FIELDS: "OrderedDict[str, FieldSpec]" = OrderedDict([
    ("id", ("Notification ID", lambda n: n.id)),
    ("order_id", ("Order ID", lambda n: n.order_id)),
    ("notification_type", ("Type", lambda n: n.notification_type)),
    ("message", ("Message", lambda n: n.message)),
    ("sent_via", ("Sent Via", lambda n: n.sent_via)),
    ("status", ("Status", lambda n: n.status)),
    ("sent_at", ("Sent At", lambda n: n.sent_at)),
    ("customer_response", ("Customer Response", lambda n: n.customer_response)),
])


def select_fields(
    available: "OrderedDict[str, FieldSpec]",
    fields: Optional[Sequence[str]],
) -> List[FieldSpec]:
    """Requested fields in the order given; all fields when none are requested."""
    if not fields:
        return list(available.values())
    unknown = [f for f in fields if f not in available]
    if unknown:
        raise InvalidRequestError(
            f"Unknown export field(s): {', '.join(unknown)}. "
            f"Allowed: {', '.join(available.keys())}"
        )
    return [available[f] for f in dict.fromkeys(fields)]


class ExportService:
    """Builds delimited exports. Never mutates anything."""

    def __init__(
        self,
        store: OrderStore,
        ndr_service: NDRService,
        delimiter: Optional[str] = None,
        multi_value_separator: Optional[str] = None,
    ):
        self.store = store
        self.ndr_service = ndr_service
        self.delimiter = delimiter or settings.EXPORT_DELIMITER
        self.multi_value_separator = multi_value_separator or settings.EXPORT_MULTI_VALUE_SEPARATOR
        if self.delimiter == self.multi_value_separator:
            raise ValueError("Multi-value separator must differ from the field delimiter")

    def format_value(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, Enum):
            return str(value.value)
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Decimal):
            return f"{value:f}"
        if isinstance(value, (list, tuple, set)):
            return self.multi_value_separator.join(self.format_value(v) for v in value)
        return str(value)

    def render(self, specs: List[FieldSpec], rows: Iterable[Any]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(
            buffer,
            delimiter=self.delimiter,
            quotechar='"',
            quoting=csv.QUOTE_MINIMAL,
            lineterminator="\n",
        )
        writer.writerow([label for label, _ in specs])
        for row in rows:
            writer.writerow([self.format_value(getter(row)) for _, getter in specs])
        return buffer.getvalue()

    async def export_orders(
        self,
        filters: Optional[OrderFilters] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> str:
        """Filtered orders, newest first, one row per order (items are not included)."""
        specs = select_fields(ORDER_EXPORT_FIELDS, fields)
        async with self.store.session() as session:
            orders = await session.find_orders(filters)
        logger.info(f"Exporting {len(orders)} orders")
        return self.render(specs, orders)

    async def export_ndrs(
        self,
        resolution_status: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> str:
        specs = select_fields(NDR_EXPORT_FIELDS, fields)
        ndrs = await self.ndr_service.list_ndrs(resolution_status=resolution_status)
        logger.info(f"Exporting {len(ndrs)} NDRs")
        return self.render(specs, ndrs)

    async def export_notifications(
        self,
        fields: Optional[Sequence[str]] = None,
        notification_type: Optional[str] = None,
    ) -> str:
        specs = select_fields(NOTIFICATION_EXPORT_FIELDS, fields)
        async with self.store.session() as session:
            notifications = await session.find_notifications(notification_type=notification_type)
        logger.info(f"Exporting {len(notifications)} notifications")
        return self.render(specs, notifications)


def field_labels(available: Dict[str, FieldSpec]) -> Dict[str, str]:
    return {key: label for key, (label, _) in available.items()}
