"""
Order Lifecycle Service

Validates and applies order status, payment status and tracking changes.
Every mutation is one unit of work containing the order write and exactly
one timeline entry; both commit together or not at all. Writes use
optimistic locking and are retried on conflict, re-reading fresh state each
attempt, so no update is ever computed from stale data.
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from ordercore.config import settings
from ordercore.core.datetime_utils import utc_now
from ordercore.events import DomainEvent, EventBus, EventType
from ordercore.exceptions import (
    ConcurrencyConflictError, InvalidRequestError, InvalidTransitionError, OrderCoreError,
)
from ordercore.models.order import (
    Order, OrderStatus, OrderTimeline, TimelineEventType,
)
from ordercore.schemas.order import (
    BulkUpdateFailure, BulkUpdateResult, OrderFilters, OrderStats,
)
from ordercore.services.order_state_machine import (
    parse_order_status, parse_payment_status, timestamp_field_for,
    validate_payment_transition, validate_transition,
)
from ordercore.stores.base import OrderStore, StoreSession


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses from which assigning tracking implicitly ships the order
AUTO_SHIP_FROM = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}


def clean_optional(value: Optional[str]) -> Optional[str]:
    """Empty and whitespace-only strings mean "not set"."""
    if value is None:
        return None
    value = value.strip()
    return value or None


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    label: str,
) -> T:
    """
    Run a unit of work, retrying it on optimistic-lock conflicts.

    ``operation`` must open its own store session so every attempt re-reads
    current state. The last conflict propagates to the caller.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except ConcurrencyConflictError:
            if attempt >= max_retries:
                logger.warning(f"{label}: giving up after {attempt} conflicting attempts")
                raise
            logger.warning(f"{label}: concurrent modification, retrying (attempt {attempt + 1})")
            attempt += 1


class OrderLifecycleService:
    """Service for order status, payment and tracking transitions."""

    def __init__(
        self,
        store: OrderStore,
        events: Optional[EventBus] = None,
        max_retries: Optional[int] = None,
        bulk_concurrency: Optional[int] = None,
    ):
        self.store = store
        self.events = events or EventBus()
        self.max_retries = max(1, max_retries or settings.STATUS_UPDATE_MAX_RETRIES)
        self.bulk_concurrency = max(1, bulk_concurrency or settings.BULK_UPDATE_CONCURRENCY)

    # ==================== SHARED TRANSITION STEP ====================

    def apply_status_change(
        self,
        session: StoreSession,
        order: Order,
        new_status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        courier_partner: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        event_type: TimelineEventType = TimelineEventType.STATUS_UPDATE,
        description: Optional[str] = None,
        extra_data: Optional[dict] = None,
    ) -> DomainEvent:
        """
        Apply a validated status change to ``order`` inside an open session
        and stage its timeline entry. Returns the event to publish once the
        caller's unit of work has committed.

        Used directly by flows that must change the order in the same
        transaction as their own records (returns).
        """
        old_status = parse_order_status(order.status)
        validate_transition(old_status, new_status)

        tracking_number = clean_optional(tracking_number)
        courier_partner = clean_optional(courier_partner)
        if tracking_number:
            order.tracking_number = tracking_number
        if courier_partner:
            order.courier_partner = courier_partner

        if new_status == OrderStatus.SHIPPED and not order.tracking_number:
            raise InvalidTransitionError(
                "Cannot mark order as shipped without a tracking number.",
                order_id=str(order.id),
            )

        now = utc_now()
        order.status = new_status.value
        order.updated_at = now
        # First entry only; a rejected return going back to delivered keeps delivered_at
        timestamp_field = timestamp_field_for(new_status)
        if timestamp_field and old_status != new_status and getattr(order, timestamp_field) is None:
            setattr(order, timestamp_field, now)

        if description is None:
            if old_status == new_status:
                description = f"Order details updated (status remains {new_status.value})"
            else:
                description = f"Status changed from {old_status.value} to {new_status.value}"
            if notes:
                description = f"{description}: {notes}"

        event_data = {
            "from_status": old_status.value,
            "to_status": new_status.value,
            "tracking_number": order.tracking_number,
            "courier_partner": order.courier_partner,
        }
        if notes:
            event_data["notes"] = notes
        if extra_data:
            event_data.update(extra_data)

        session.add(OrderTimeline(
            order_id=order.id,
            event_type=event_type.value,
            event_description=description,
            event_data=event_data,
            created_by=actor,
        ))

        return DomainEvent(
            EventType.ORDER_STATUS_CHANGED,
            {"order_id": str(order.id), **event_data},
        )

    # ==================== STATUS ====================

    async def update_status(
        self,
        order_id: uuid.UUID,
        new_status,
        tracking_number: Optional[str] = None,
        courier_partner: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        event_type: TimelineEventType = TimelineEventType.STATUS_UPDATE,
    ) -> Order:
        """
        Move an order to ``new_status``, optionally setting tracking fields.

        Raises:
            NotFoundError: unknown order id
            InvalidTransitionError: unknown status value or forbidden transition
            ConcurrencyConflictError: still conflicting after all retries
        """
        target = parse_order_status(new_status)

        async def attempt() -> Tuple[Order, DomainEvent]:
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                event = self.apply_status_change(
                    session,
                    order,
                    target,
                    tracking_number=tracking_number,
                    courier_partner=courier_partner,
                    notes=notes,
                    actor=actor,
                    event_type=event_type,
                )
            return order, event

        order, event = await run_with_retry(attempt, self.max_retries, f"Status update of order {order_id}")
        logger.info(
            f"Order {order_id} status {event.data['from_status']} -> {event.data['to_status']}"
        )
        await self.events.publish(event)
        return order

    async def update_payment_status(
        self,
        order_id: uuid.UUID,
        new_payment_status,
        actor: Optional[str] = None,
    ) -> Order:
        """Move the payment state machine; independent of the order status."""
        target = parse_payment_status(new_payment_status)

        async def attempt() -> Tuple[Order, dict]:
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                old = parse_payment_status(order.payment_status)
                validate_payment_transition(old, target)

                order.payment_status = target.value
                order.updated_at = utc_now()
                data = {"from_status": old.value, "to_status": target.value}
                session.add(OrderTimeline(
                    order_id=order.id,
                    event_type=TimelineEventType.PAYMENT_STATUS_UPDATE.value,
                    event_description=f"Payment status changed from {old.value} to {target.value}",
                    event_data=data,
                    created_by=actor,
                ))
            return order, data

        order, data = await run_with_retry(attempt, self.max_retries, f"Payment update of order {order_id}")
        logger.info(f"Order {order_id} payment {data['from_status']} -> {data['to_status']}")
        await self.events.publish(DomainEvent(
            EventType.PAYMENT_STATUS_CHANGED,
            {"order_id": str(order_id), **data},
        ))
        return order

    async def update_tracking_info(
        self,
        order_id: uuid.UUID,
        tracking_number: Optional[str],
        courier_partner: Optional[str],
        actor: Optional[str] = None,
    ) -> Order:
        """
        Set tracking number and courier. When both are given and the order
        has not shipped yet, the order moves to shipped in the same write.
        """
        tracking_number = clean_optional(tracking_number)
        courier_partner = clean_optional(courier_partner)
        if not tracking_number and not courier_partner:
            raise InvalidRequestError("Tracking number or courier partner is required.")

        async def attempt() -> Tuple[Order, List[DomainEvent]]:
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                current = parse_order_status(order.status)

                if tracking_number and courier_partner and current in AUTO_SHIP_FROM:
                    status_event = self.apply_status_change(
                        session,
                        order,
                        OrderStatus.SHIPPED,
                        tracking_number=tracking_number,
                        courier_partner=courier_partner,
                        actor=actor,
                        event_type=TimelineEventType.TRACKING_UPDATE,
                        description=(
                            f"Tracking {tracking_number} ({courier_partner}) assigned; "
                            f"status changed from {current.value} to shipped"
                        ),
                    )
                    events = [status_event]
                else:
                    if tracking_number:
                        order.tracking_number = tracking_number
                    if courier_partner:
                        order.courier_partner = courier_partner
                    order.updated_at = utc_now()
                    session.add(OrderTimeline(
                        order_id=order.id,
                        event_type=TimelineEventType.TRACKING_UPDATE.value,
                        event_description=(
                            f"Tracking updated: {order.tracking_number or '-'} "
                            f"({order.courier_partner or '-'})"
                        ),
                        event_data={
                            "tracking_number": order.tracking_number,
                            "courier_partner": order.courier_partner,
                        },
                        created_by=actor,
                    ))
                    events = []

                events.append(DomainEvent(
                    EventType.TRACKING_UPDATED,
                    {
                        "order_id": str(order.id),
                        "tracking_number": order.tracking_number,
                        "courier_partner": order.courier_partner,
                    },
                ))
            return order, events

        order, events = await run_with_retry(attempt, self.max_retries, f"Tracking update of order {order_id}")
        logger.info(f"Order {order_id} tracking set to {order.tracking_number} ({order.courier_partner})")
        await self.events.publish_all(events)
        return order

    async def bulk_update_status(
        self,
        order_ids: List[uuid.UUID],
        new_status,
        actor: Optional[str] = None,
    ) -> BulkUpdateResult:
        """
        Apply update_status to every id with bounded parallelism.

        Each id is its own transaction. Failures are collected with their
        reason and never roll back or abort the other ids.
        """
        target = parse_order_status(new_status)
        unique_ids = list(dict.fromkeys(order_ids))
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        async def update_one(order_id: uuid.UUID) -> Optional[BulkUpdateFailure]:
            async with semaphore:
                try:
                    await self.update_status(
                        order_id,
                        target,
                        actor=actor,
                        event_type=TimelineEventType.BULK_STATUS_UPDATE,
                    )
                    return None
                except OrderCoreError as e:
                    logger.warning(f"Bulk update: order {order_id} failed: {e.message}")
                    return BulkUpdateFailure(order_id=order_id, code=e.code, reason=e.message)
                except Exception as e:
                    logger.exception(f"Bulk update: order {order_id} failed unexpectedly")
                    return BulkUpdateFailure(order_id=order_id, code="internal_error", reason=str(e))

        outcomes = await asyncio.gather(*(update_one(order_id) for order_id in unique_ids))

        failures = [outcome for outcome in outcomes if outcome is not None]
        failed_ids = {failure.order_id for failure in failures}
        succeeded_ids = [order_id for order_id in unique_ids if order_id not in failed_ids]

        logger.info(
            f"Bulk status update to {target.value}: "
            f"{len(succeeded_ids)} succeeded, {len(failures)} failed"
        )
        return BulkUpdateResult(
            requested=len(unique_ids),
            succeeded=len(succeeded_ids),
            failed=len(failures),
            succeeded_ids=succeeded_ids,
            failures=failures,
        )

    # ==================== DUPLICATES ====================

    async def flag_duplicate(
        self,
        order_id: uuid.UUID,
        original_order_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> Order:
        """Mark ``order_id`` as a duplicate of an existing, different order."""
        if order_id == original_order_id:
            raise InvalidRequestError("An order cannot be a duplicate of itself.")

        async def attempt() -> Order:
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                await session.get_order(original_order_id)

                order.is_duplicate = True
                order.duplicate_of = original_order_id
                order.updated_at = utc_now()
                session.add(OrderTimeline(
                    order_id=order.id,
                    event_type=TimelineEventType.DUPLICATE_FLAGGED.value,
                    event_description=f"Flagged as duplicate of order {original_order_id}",
                    event_data={"duplicate_of": str(original_order_id)},
                    created_by=actor,
                ))
            return order

        order = await run_with_retry(attempt, self.max_retries, f"Duplicate flag of order {order_id}")
        logger.info(f"Order {order_id} flagged as duplicate of {original_order_id}")
        await self.events.publish(DomainEvent(
            EventType.ORDER_FLAGGED_DUPLICATE,
            {"order_id": str(order_id), "duplicate_of": str(original_order_id)},
        ))
        return order

    # ==================== QUERIES ====================

    async def get_order(self, order_id: uuid.UUID) -> Order:
        async with self.store.session() as session:
            return await session.get_order(order_id)

    async def list_orders(
        self,
        filters: Optional[OrderFilters] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int]:
        """Get filtered orders (newest first) and the unpaginated total."""
        async with self.store.session() as session:
            orders = await session.find_orders(filters, skip=skip, limit=limit)
            total = await session.count_orders(filters)
        return orders, total

    async def get_timeline(self, order_id: uuid.UUID) -> List[OrderTimeline]:
        async with self.store.session() as session:
            await session.get_order(order_id)
            return await session.list_timeline(order_id)

    async def get_order_stats(self, filters: Optional[OrderFilters] = None) -> OrderStats:
        """Dashboard stats cards over the filtered order set."""
        async with self.store.session() as session:
            orders = await session.find_orders(filters)

        total_orders = len(orders)
        total_revenue = sum((Decimal(str(o.total_amount)) for o in orders), Decimal("0.00"))

        def count(status: OrderStatus) -> int:
            return sum(1 for o in orders if o.status == status.value)

        average = (total_revenue / total_orders) if total_orders else Decimal("0")

        return OrderStats(
            total_orders=total_orders,
            total_revenue=total_revenue.quantize(Decimal("0.01")),
            pending_orders=count(OrderStatus.PENDING),
            shipped_orders=count(OrderStatus.SHIPPED),
            delivered_orders=count(OrderStatus.DELIVERED),
            cancelled_orders=count(OrderStatus.CANCELLED),
            average_order_value=average.quantize(Decimal("0.01")),
        )
