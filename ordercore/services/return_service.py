"""
Return / Refund Service

Creates return requests against a ReturnPolicy and drives them through
QC, approval or rejection. Creating a return and moving the order to
return_requested happen in one transaction: either both exist or neither.
"""

import logging
import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from ordercore.core.datetime_utils import as_utc, utc_now
from ordercore.events import DomainEvent, EventBus, EventType
from ordercore.exceptions import InvalidRequestError, InvalidTransitionError, NotFoundError
from ordercore.models.order import Order, OrderStatus, OrderTimeline, TimelineEventType
from ordercore.models.return_order import QCStatus, ReturnPolicy, ReturnRequest, ReturnStatus
from ordercore.schemas.return_order import ReturnPolicyCreate
from ordercore.services.order_lifecycle_service import OrderLifecycleService, run_with_retry
from ordercore.stores.base import OrderStore, StoreSession


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def compute_refund_amount(
    total_amount: Decimal,
    shipping_amount: Optional[Decimal],
    policy: ReturnPolicy,
) -> Decimal:
    """
    total x refund_percentage / 100, plus shipping only when the policy
    refunds shipping charges. Rounded half-up to the cent.
    """
    refund = Decimal(str(total_amount)) * Decimal(str(policy.refund_percentage)) / Decimal("100")
    if policy.shipping_charges_refundable and shipping_amount:
        refund += Decimal(str(shipping_amount))
    return refund.quantize(CENT, rounding=ROUND_HALF_UP)


class ReturnService:
    """Service for return requests and return policies."""

    def __init__(
        self,
        store: OrderStore,
        lifecycle: OrderLifecycleService,
        events: Optional[EventBus] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.events = events or lifecycle.events
        self.max_retries = lifecycle.max_retries

    # ==================== RETURN POLICY ====================

    async def create_return_policy(self, data: ReturnPolicyCreate) -> ReturnPolicy:
        policy = ReturnPolicy(**data.model_dump())
        async with self.store.session() as session:
            session.add(policy)
        logger.info(f"Return policy '{policy.policy_name}' created ({policy.refund_percentage}% refund)")
        return policy

    async def list_return_policies(self, active_only: bool = True) -> List[ReturnPolicy]:
        async with self.store.session() as session:
            return await session.find_return_policies(active_only=active_only)

    # ==================== RETURN REQUEST ====================

    async def process_return_request(
        self,
        order_id: uuid.UUID,
        reason: str,
        policy_id: uuid.UUID,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ReturnRequest:
        """
        Open a return for a delivered order under ``policy_id``.

        QC is marked not required when the policy skips it. An auto-approve
        policy approves the return immediately and computes the refund.

        Raises:
            NotFoundError: unknown order, unknown or inactive policy
            InvalidRequestError: outside the policy's return window
            InvalidTransitionError: the order cannot move to return_requested
        """
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("Return reason is required.")

        async def attempt():
            async with self.store.session() as session:
                order = await session.get_order(order_id)
                # One open return per order; a second request would survive a rejection of the first
                if order.status != OrderStatus.DELIVERED.value:
                    raise InvalidTransitionError(
                        f"Returns can only be requested for delivered orders "
                        f"(order is '{order.status}').",
                        order_id=str(order_id),
                        from_status=order.status,
                        to_status=OrderStatus.RETURN_REQUESTED.value,
                    )
                policy = await session.get_return_policy(policy_id)
                if not policy.is_active:
                    raise NotFoundError(
                        "Return policy", policy_id,
                        message=f"Return policy {policy.policy_name} is not active",
                    )

                now = utc_now()
                if order.delivered_at:
                    deadline = as_utc(order.delivered_at) + timedelta(days=policy.return_window_days)
                    if now > deadline:
                        raise InvalidRequestError(
                            f"The {policy.return_window_days}-day return window for this order "
                            f"closed on {deadline:%Y-%m-%d}.",
                            order_id=str(order_id),
                        )

                return_request = ReturnRequest(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    seller_id=order.seller_id,
                    return_policy_id=policy.id,
                    reason=reason,
                    status=ReturnStatus.REQUESTED.value,
                    qc_status=(QCStatus.PENDING if policy.require_qc else QCStatus.NOT_REQUIRED).value,
                    notes=notes,
                    created_at=now,
                    updated_at=now,
                )
                if policy.auto_approve:
                    return_request.status = ReturnStatus.APPROVED.value
                    return_request.approved_at = now
                    return_request.refund_amount = compute_refund_amount(
                        order.total_amount, order.shipping_amount, policy
                    )
                session.add(return_request)

                # Last step: any failure here rolls back the return as well
                status_event = self.lifecycle.apply_status_change(
                    session,
                    order,
                    OrderStatus.RETURN_REQUESTED,
                    actor=actor,
                    event_type=TimelineEventType.RETURN_REQUESTED,
                    description=f"Return requested: {reason}",
                    extra_data={
                        "return_id": str(return_request.id),
                        "policy_id": str(policy.id),
                        "auto_approved": policy.auto_approve,
                        "refund_amount": (
                            str(return_request.refund_amount)
                            if return_request.refund_amount is not None else None
                        ),
                    },
                )
            return return_request, status_event

        return_request, status_event = await run_with_retry(
            attempt, self.max_retries, f"Return request for order {order_id}"
        )
        logger.info(
            f"Return {return_request.id} for order {order_id}: {return_request.status}, "
            f"QC {return_request.qc_status}"
        )

        events = [
            status_event,
            DomainEvent(EventType.RETURN_REQUESTED, self._event_data(return_request)),
        ]
        if return_request.status == ReturnStatus.APPROVED.value:
            events.append(DomainEvent(EventType.RETURN_APPROVED, self._event_data(return_request)))
        await self.events.publish_all(events)
        return return_request

    async def record_qc_result(
        self,
        return_id: uuid.UUID,
        passed: bool,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ReturnRequest:
        async def attempt() -> ReturnRequest:
            async with self.store.session() as session:
                return_request, order = await self._load(session, return_id)
                if return_request.qc_status != QCStatus.PENDING.value:
                    raise InvalidTransitionError(
                        f"QC for return {return_id} is already {return_request.qc_status}.",
                        return_id=str(return_id),
                    )

                qc_status = QCStatus.PASSED if passed else QCStatus.FAILED
                return_request.qc_status = qc_status.value
                return_request.qc_notes = notes
                return_request.updated_at = utc_now()
                self._touch(session, order, TimelineEventType.RETURN_QC,
                            f"Return QC {qc_status.value}" + (f": {notes}" if notes else ""),
                            return_request, actor)
            return return_request

        return_request = await run_with_retry(attempt, self.max_retries, f"QC of return {return_id}")
        logger.info(f"Return {return_id} QC {return_request.qc_status}")
        return return_request

    async def approve_return(self, return_id: uuid.UUID, actor: Optional[str] = None) -> ReturnRequest:
        """Approve a requested return; QC must have passed or not be required."""
        async def attempt() -> ReturnRequest:
            async with self.store.session() as session:
                return_request, order = await self._load(session, return_id)
                self._require_requested(return_request)
                if return_request.qc_status not in (QCStatus.PASSED.value, QCStatus.NOT_REQUIRED.value):
                    raise InvalidTransitionError(
                        f"Return {return_id} cannot be approved while QC is {return_request.qc_status}.",
                        return_id=str(return_id),
                    )
                if return_request.return_policy_id is None:
                    raise InvalidRequestError(
                        f"Return {return_id} has no return policy to compute a refund from."
                    )
                policy = await session.get_return_policy(return_request.return_policy_id)

                now = utc_now()
                return_request.status = ReturnStatus.APPROVED.value
                return_request.approved_at = now
                return_request.updated_at = now
                return_request.refund_amount = compute_refund_amount(
                    order.total_amount, order.shipping_amount, policy
                )
                self._touch(session, order, TimelineEventType.RETURN_APPROVED,
                            f"Return approved, refund {return_request.refund_amount}",
                            return_request, actor)
            return return_request

        return_request = await run_with_retry(attempt, self.max_retries, f"Approval of return {return_id}")
        logger.info(f"Return {return_id} approved, refund {return_request.refund_amount}")
        await self.events.publish(DomainEvent(EventType.RETURN_APPROVED, self._event_data(return_request)))
        return return_request

    async def reject_return(
        self,
        return_id: uuid.UUID,
        reason: str,
        actor: Optional[str] = None,
    ) -> ReturnRequest:
        """Reject a requested return; the order goes back to delivered."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("Rejection reason is required.")

        async def attempt():
            async with self.store.session() as session:
                return_request, order = await self._load(session, return_id)
                self._require_requested(return_request)

                now = utc_now()
                return_request.status = ReturnStatus.REJECTED.value
                return_request.rejected_at = now
                return_request.updated_at = now
                return_request.notes = reason

                status_event = self.lifecycle.apply_status_change(
                    session,
                    order,
                    OrderStatus.DELIVERED,
                    actor=actor,
                    event_type=TimelineEventType.RETURN_REJECTED,
                    description=f"Return rejected: {reason}",
                    extra_data={"return_id": str(return_request.id)},
                )
            return return_request, status_event

        return_request, status_event = await run_with_retry(
            attempt, self.max_retries, f"Rejection of return {return_id}"
        )
        logger.info(f"Return {return_id} rejected: {reason}")
        await self.events.publish_all([
            status_event,
            DomainEvent(EventType.RETURN_REJECTED, {**self._event_data(return_request), "reason": reason}),
        ])
        return return_request

    async def get_return(self, return_id: uuid.UUID) -> ReturnRequest:
        async with self.store.session() as session:
            return await session.get_return(return_id)

    async def list_returns(self, order_id: Optional[uuid.UUID] = None) -> List[ReturnRequest]:
        async with self.store.session() as session:
            return await session.find_returns(order_id=order_id)

    # ==================== HELPERS ====================

    async def _load(self, session: StoreSession, return_id: uuid.UUID):
        return_request = await session.get_return(return_id)
        order = await session.get_order(return_request.order_id)
        return return_request, order

    @staticmethod
    def _require_requested(return_request: ReturnRequest) -> None:
        if return_request.status != ReturnStatus.REQUESTED.value:
            raise InvalidTransitionError(
                f"Return {return_request.id} is already {return_request.status}.",
                return_id=str(return_request.id),
            )

    @staticmethod
    def _touch(
        session: StoreSession,
        order: Order,
        event_type: TimelineEventType,
        description: str,
        return_request: ReturnRequest,
        actor: Optional[str],
    ) -> None:
        """Timeline entry plus an order write, so the order's version guards the return."""
        order.updated_at = utc_now()
        session.add(OrderTimeline(
            order_id=order.id,
            event_type=event_type.value,
            event_description=description,
            event_data={
                "return_id": str(return_request.id),
                "status": return_request.status,
                "qc_status": return_request.qc_status,
            },
            created_by=actor,
        ))

    @staticmethod
    def _event_data(return_request: ReturnRequest) -> dict:
        return {
            "return_id": str(return_request.id),
            "order_id": str(return_request.order_id),
            "status": return_request.status,
            "qc_status": return_request.qc_status,
            "refund_amount": (
                str(return_request.refund_amount) if return_request.refund_amount is not None else None
            ),
        }
