"""
NDR (Non-Delivery Report) Service

Tracks failed delivery attempts and routes them to manual or automatic
resolution.

Auto-resolution proposes an action and contacts the customer for NDRs
whose reason is in the known taxonomy. It never closes the NDR: a human
still resolves it after hearing back. Unknown reasons are left untouched.
"""

import asyncio
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from ordercore.config import settings
from ordercore.core.datetime_utils import utc_now
from ordercore.events import DomainEvent, EventBus, EventType
from ordercore.exceptions import (
    AlreadyResolvedError, ConcurrencyConflictError, InvalidRequestError,
    InvalidTransitionError, OrderCoreError,
)
from ordercore.models.ndr import NDR, NDRReason, NDRResolutionStatus, NDRSeverity
from ordercore.models.notification import NotificationChannel, NotificationType
from ordercore.models.order import OrderTimeline, TimelineEventType
from ordercore.schemas.ndr import (
    AutoResolveFailure, AutoResolveResult, NDRResponse, NDRSeverityResponse, NDRStats,
)
from ordercore.services.notification_dispatcher import (
    ChannelResult, DispatchResult, NotificationDispatcher,
)
from ordercore.services.notification_service import (
    build_notification_record, dispatch_error_for,
)
from ordercore.services.order_lifecycle_service import run_with_retry
from ordercore.stores.base import OrderStore


logger = logging.getLogger(__name__)


# Reason -> action and customer message. Sent on AUTO_RESOLUTION_CHANNELS.
AUTO_RESOLUTION_RULES: Dict[NDRReason, dict] = {
    NDRReason.CUSTOMER_NOT_AVAILABLE: {
        "action": "Schedule callback and retry delivery",
        "message": (
            "We attempted delivery but you were not available. "
            "Please let us know your preferred delivery time."
        ),
    },
    NDRReason.ADDRESS_NOT_FOUND: {
        "action": "Contact customer for address verification",
        "message": (
            "We could not locate your delivery address. "
            "Please verify and update your address details."
        ),
    },
    NDRReason.CUSTOMER_REFUSED: {
        "action": "Contact customer to understand concerns",
        "message": (
            "We noticed you refused the delivery. "
            "Please contact us if you have any concerns."
        ),
    },
    NDRReason.INCOMPLETE_ADDRESS: {
        "action": "Request complete address details",
        "message": (
            "Your delivery address appears incomplete. "
            "Please provide complete address details."
        ),
    },
    NDRReason.PHONE_NOT_REACHABLE: {
        "action": "Send SMS and email notifications",
        "message": (
            "We are unable to reach you on your registered phone number. "
            "Please check your phone."
        ),
    },
    NDRReason.RESCHEDULED_BY_CUSTOMER: {
        "action": "Confirm new delivery slot",
        "message": "Thank you for rescheduling. We will deliver at your preferred time.",
    },
}

AUTO_RESOLUTION_CHANNELS = [NotificationChannel.EMAIL, NotificationChannel.SMS]

HIGH_SEVERITY_MARKERS = ("refused", "not reachable")


def classify_severity(
    reason: Optional[str],
    ndr_count: int,
    critical_threshold: Optional[int] = None,
) -> NDRSeverity:
    """
    Severity of an NDR from its reason text and the order's NDR count.

    The count rule dominates: an order at the threshold is critical
    whatever the reason.
    """
    threshold = critical_threshold or settings.NDR_CRITICAL_THRESHOLD
    if ndr_count >= threshold:
        return NDRSeverity.CRITICAL
    text = (reason or "").lower()
    if any(marker in text for marker in HIGH_SEVERITY_MARKERS):
        return NDRSeverity.HIGH
    return NDRSeverity.MEDIUM


def rounded_percentage(part: int, total: int) -> int:
    if not total:
        return 0
    value = Decimal(part * 100) / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class NDRService:
    """Service for NDR tracking and resolution."""

    def __init__(
        self,
        store: OrderStore,
        dispatcher: NotificationDispatcher,
        events: Optional[EventBus] = None,
        max_retries: Optional[int] = None,
        critical_threshold: Optional[int] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.events = events or EventBus()
        self.max_retries = max(1, max_retries or settings.STATUS_UPDATE_MAX_RETRIES)
        self.critical_threshold = critical_threshold or settings.NDR_CRITICAL_THRESHOLD

    def severity_of(self, reason: Optional[str], ndr_count: int) -> NDRSeverity:
        return classify_severity(reason, ndr_count, self.critical_threshold)

    # ==================== CREATE / RESOLVE / CANCEL ====================

    async def create_ndr(
        self,
        order_id: uuid.UUID,
        reason: str,
        customer_response: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> NDR:
        """Record a failed delivery attempt and bump the order's NDR counters."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("NDR reason is required.")

        async def attempt():
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                active = await session.count_active_ndrs(order_id)
                now = utc_now()

                # id assigned up front so the timeline entry can reference it
                ndr = NDR(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    ndr_reason=reason,
                    customer_response=(customer_response or "").strip() or None,
                    resolution_status=NDRResolutionStatus.PENDING.value,
                    auto_resolution_attempted=False,
                    created_at=now,
                )
                session.add(ndr)

                order.ndr_count = active + 1
                order.delivery_attempts = (order.delivery_attempts or 0) + 1
                order.last_ndr_date = now
                order.updated_at = now

                session.add(OrderTimeline(
                    order_id=order.id,
                    event_type=TimelineEventType.NDR_CREATED.value,
                    event_description=f"Delivery failed: {reason}",
                    event_data={"ndr_id": str(ndr.id), "reason": reason, "ndr_count": order.ndr_count},
                    created_by=actor,
                ))
            return ndr, order.ndr_count

        ndr, ndr_count = await run_with_retry(attempt, self.max_retries, f"NDR creation for order {order_id}")
        severity = self.severity_of(reason, ndr_count)
        logger.info(f"NDR {ndr.id} created for order {order_id} ({reason}, severity {severity.value})")
        await self.events.publish(DomainEvent(
            EventType.NDR_CREATED,
            {
                "ndr_id": str(ndr.id),
                "order_id": str(order_id),
                "reason": reason,
                "ndr_count": ndr_count,
                "severity": severity.value,
            },
        ))
        return ndr

    async def resolve_ndr(
        self,
        ndr_id: uuid.UUID,
        resolution_action: str,
        customer_response: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> NDR:
        """
        Close an NDR with the action taken.

        Raises:
            NotFoundError: unknown NDR
            AlreadyResolvedError: the NDR is already resolved (never a no-op)
            InvalidTransitionError: the NDR was cancelled
        """
        resolution_action = (resolution_action or "").strip()
        if not resolution_action:
            raise InvalidRequestError("Resolution action is required.")

        async def attempt() -> NDR:
            async with self.store.session() as session:
                ndr = await session.get_ndr(ndr_id)
                if ndr.resolution_status == NDRResolutionStatus.RESOLVED.value:
                    raise AlreadyResolvedError(
                        f"NDR {ndr_id} was already resolved on {ndr.resolved_at:%Y-%m-%d %H:%M}.",
                        ndr_id=str(ndr_id),
                    )
                if ndr.resolution_status == NDRResolutionStatus.CANCELLED.value:
                    raise InvalidTransitionError(
                        f"NDR {ndr_id} was cancelled and cannot be resolved.",
                        ndr_id=str(ndr_id),
                    )

                now = utc_now()
                ndr.resolution_status = NDRResolutionStatus.RESOLVED.value
                ndr.resolved_at = now
                ndr.next_action = resolution_action
                if customer_response:
                    ndr.customer_response = customer_response.strip()

                session.add(OrderTimeline(
                    order_id=ndr.order_id,
                    event_type=TimelineEventType.NDR_RESOLVED.value,
                    event_description=f"NDR resolved: {resolution_action}",
                    event_data={"ndr_id": str(ndr.id), "action": resolution_action},
                    created_by=actor,
                ))
            return ndr

        ndr = await run_with_retry(attempt, self.max_retries, f"Resolution of NDR {ndr_id}")
        logger.info(f"NDR {ndr_id} resolved: {resolution_action}")
        await self.events.publish(DomainEvent(
            EventType.NDR_RESOLVED,
            {"ndr_id": str(ndr.id), "order_id": str(ndr.order_id), "action": resolution_action},
        ))
        return ndr

    async def cancel_ndr(
        self,
        ndr_id: uuid.UUID,
        reason: str,
        actor: Optional[str] = None,
    ) -> NDR:
        """Withdraw an NDR raised in error; it stops counting towards the order's ndr_count."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("Cancellation reason is required.")

        async def attempt() -> NDR:
            async with self.store.session() as session:
                ndr = await session.get_ndr(ndr_id)
                if not ndr.is_pending:
                    raise InvalidTransitionError(
                        f"Only pending NDRs can be cancelled; NDR {ndr_id} is {ndr.resolution_status}.",
                        ndr_id=str(ndr_id),
                    )
                order = await session.get_order(ndr.order_id)
                # Counted before this change is flushed, so it still includes this NDR
                active = await session.count_active_ndrs(order.id)

                ndr.resolution_status = NDRResolutionStatus.CANCELLED.value
                order.ndr_count = max(0, active - 1)
                order.updated_at = utc_now()

                session.add(OrderTimeline(
                    order_id=order.id,
                    event_type=TimelineEventType.NDR_CANCELLED.value,
                    event_description=f"NDR cancelled: {reason}",
                    event_data={"ndr_id": str(ndr.id), "reason": reason, "ndr_count": order.ndr_count},
                    created_by=actor,
                ))
            return ndr

        ndr = await run_with_retry(attempt, self.max_retries, f"Cancellation of NDR {ndr_id}")
        logger.info(f"NDR {ndr_id} cancelled: {reason}")
        await self.events.publish(DomainEvent(
            EventType.NDR_CANCELLED,
            {"ndr_id": str(ndr.id), "order_id": str(ndr.order_id), "reason": reason},
        ))
        return ndr

    # ==================== AUTO-RESOLUTION ====================

    async def auto_resolve_ndrs(self, stop_event: Optional[asyncio.Event] = None) -> AutoResolveResult:
        """
        Propose an action for every pending, not yet attempted NDR with a
        known reason, and contact the customer.

        Each NDR goes through claim (committed), dispatch (awaited) and
        record. ``stop_event`` is checked between NDRs only, so an abort
        never leaves one half-processed.
        """
        async with self.store.session() as session:
            candidates = await session.find_ndrs(
                resolution_status=NDRResolutionStatus.PENDING.value,
                auto_resolution_attempted=False,
            )
        pending = [(ndr.id, ndr.reason) for ndr in candidates]

        result = AutoResolveResult()
        for ndr_id, reason in pending:
            if stop_event is not None and stop_event.is_set():
                result.aborted = True
                remaining = len(pending) - result.processed - result.skipped - len(result.failures)
                logger.info(f"Auto-resolution stopped with {remaining} NDRs left")
                break

            rule = AUTO_RESOLUTION_RULES.get(reason)
            if rule is None:
                result.skipped += 1
                continue

            try:
                claimed = await self._auto_resolve_one(ndr_id, rule)
            except OrderCoreError as e:
                logger.warning(f"Auto-resolution of NDR {ndr_id} failed: {e.message}")
                result.failures.append(AutoResolveFailure(ndr_id=ndr_id, code=e.code, reason=e.message))
                continue
            except Exception as e:
                logger.exception(f"Auto-resolution of NDR {ndr_id} failed unexpectedly")
                result.failures.append(AutoResolveFailure(ndr_id=ndr_id, code="internal_error", reason=str(e)))
                continue

            if not claimed:
                result.skipped += 1
                continue
            result.processed += 1
            result.processed_ids.append(ndr_id)

        result.failed = len(result.failures)
        logger.info(
            f"Auto-resolution: {result.processed} processed, {result.skipped} skipped, "
            f"{result.failed} failed{' (aborted)' if result.aborted else ''}"
        )
        return result

    async def _auto_resolve_one(self, ndr_id: uuid.UUID, rule: dict) -> bool:
        """
        Claim, dispatch and record one NDR. Returns False when another
        worker claimed it first. Raises DispatchError after recording if a
        channel failed.
        """
        # Claim: optimistic lock on the NDR stops two batches claiming it twice
        try:
            async with self.store.session() as session:
                ndr = await session.get_ndr(ndr_id)
                if not ndr.is_pending or ndr.auto_resolution_attempted:
                    return False
                order = await session.get_order(ndr.order_id)

                ndr.auto_resolution_attempted = True
                ndr.next_action = rule["action"]
                session.add(OrderTimeline(
                    order_id=order.id,
                    event_type=TimelineEventType.NDR_AUTO_RESOLUTION.value,
                    event_description=f"Auto-resolution: {rule['action']}",
                    event_data={
                        "ndr_id": str(ndr.id),
                        "reason": ndr.ndr_reason,
                        "action": rule["action"],
                        "channels": [c.value for c in AUTO_RESOLUTION_CHANNELS],
                    },
                    created_by="auto-resolution",
                ))
        except ConcurrencyConflictError:
            logger.info(f"NDR {ndr_id} was claimed concurrently, skipping")
            return False

        # Dispatch
        try:
            dispatch = await self.dispatcher.send(
                order.id,
                rule["message"],
                AUTO_RESOLUTION_CHANNELS,
                email=order.customer_email,
                phone=order.customer_phone,
            )
        except Exception as e:
            logger.error(f"Dispatcher error for NDR {ndr_id}: {e}")
            dispatch = DispatchResult(
                order_id=order.id,
                results=[ChannelResult(channel=c, success=False, error=str(e)) for c in AUTO_RESOLUTION_CHANNELS],
            )

        # Record
        record = build_notification_record(order, rule["message"], NotificationType.NDR, dispatch)
        async with self.store.session() as session:
            session.add(record)

        await self.events.publish(DomainEvent(
            EventType.NDR_AUTO_RESOLVED,
            {
                "ndr_id": str(ndr_id),
                "order_id": str(order.id),
                "action": rule["action"],
                "notification_id": str(record.id),
                "notification_status": record.status,
            },
        ))
        await self.events.publish(DomainEvent(
            EventType.NOTIFICATION_SENT,
            {
                "notification_id": str(record.id),
                "order_id": str(order.id),
                "notification_type": NotificationType.NDR.value,
                "status": record.status,
                "channels": record.channel_results,
            },
        ))

        if dispatch.failed_channels:
            raise dispatch_error_for(dispatch)
        logger.info(f"NDR {ndr_id} auto-resolution: {rule['action']}")
        return True

    # ==================== QUERIES ====================

    async def get_severity(self, ndr_id: uuid.UUID) -> NDRSeverityResponse:
        async with self.store.session() as session:
            ndr = await session.get_ndr(ndr_id)
            order = await session.get_order(ndr.order_id)
        return NDRSeverityResponse(
            ndr_id=ndr.id,
            order_id=order.id,
            ndr_count=order.ndr_count,
            severity=self.severity_of(ndr.ndr_reason, order.ndr_count).value,
        )

    async def list_ndrs(
        self,
        resolution_status: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
    ) -> List[NDRResponse]:
        """NDRs oldest first, each with its current severity."""
        if resolution_status:
            status = resolution_status.strip().lower()
            if status not in {s.value for s in NDRResolutionStatus}:
                raise InvalidRequestError(f"'{resolution_status}' is not an NDR resolution status.")
            resolution_status = status

        async with self.store.session() as session:
            ndrs = await session.find_ndrs(resolution_status=resolution_status, order_id=order_id)
            counts: Dict[uuid.UUID, int] = {}
            for ndr in ndrs:
                if ndr.order_id not in counts:
                    counts[ndr.order_id] = (await session.get_order(ndr.order_id)).ndr_count

        responses = []
        for ndr in ndrs:
            response = NDRResponse.model_validate(ndr)
            response.severity = self.severity_of(ndr.ndr_reason, counts[ndr.order_id]).value
            responses.append(response)
        return responses

    async def get_ndr_stats(self) -> NDRStats:
        async with self.store.session() as session:
            ndrs = await session.find_ndrs()

        total = len(ndrs)
        resolved = sum(1 for n in ndrs if n.resolution_status == NDRResolutionStatus.RESOLVED.value)
        attempted = sum(1 for n in ndrs if n.auto_resolution_attempted)

        by_reason: Dict[str, int] = {}
        for n in ndrs:
            by_reason[n.ndr_reason] = by_reason.get(n.ndr_reason, 0) + 1

        return NDRStats(
            total=total,
            pending=sum(1 for n in ndrs if n.resolution_status == NDRResolutionStatus.PENDING.value),
            resolved=resolved,
            cancelled=sum(1 for n in ndrs if n.resolution_status == NDRResolutionStatus.CANCELLED.value),
            auto_attempted=attempted,
            resolution_rate=rounded_percentage(resolved, total),
            auto_resolution_rate=rounded_percentage(attempted, total),
            by_reason=by_reason,
        )
