import uuid
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import select, func, and_, or_, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ordercore.core.datetime_utils import as_utc
from ordercore.exceptions import ConcurrencyConflictError, NotFoundError
from ordercore.models import (
    NDR, NDRResolutionStatus, Order, OrderNotification, OrderTimeline,
    ReturnPolicy, ReturnRequest,
)
from ordercore.schemas.order import OrderFilters
from ordercore.stores.base import OrderStore, StoreSession


logger = logging.getLogger(__name__)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value.strip())
    except (ValueError, AttributeError):
        return None


def build_order_conditions(filters: Optional[OrderFilters]) -> list:
    """Translate OrderFilters into SQLAlchemy WHERE conditions (AND-combined)."""
    if filters is None:
        return []

    conditions = []

    if filters.seller_id:
        conditions.append(Order.seller_id == filters.seller_id)

    if filters.status:
        conditions.append(Order.status == filters.status.lower())

    if filters.payment_status:
        conditions.append(Order.payment_status == filters.payment_status.lower())

    if filters.priority:
        conditions.append(Order.priority == filters.priority.lower())

    if filters.order_source:
        conditions.append(Order.order_source == filters.order_source.lower())

    if filters.courier_partner:
        conditions.append(Order.courier_partner == filters.courier_partner)

    if filters.ndr_only:
        conditions.append(Order.ndr_count > 0)

    if filters.show_duplicates:
        conditions.append(Order.is_duplicate.is_(True))

    if filters.date_from:
        conditions.append(Order.created_at >= as_utc(filters.date_from))

    if filters.date_to:
        conditions.append(Order.created_at <= as_utc(filters.date_to))

    if filters.amount_min is not None:
        conditions.append(Order.total_amount >= filters.amount_min)

    if filters.amount_max is not None:
        conditions.append(Order.total_amount <= filters.amount_max)

    if filters.search:
        search_filter = f"%{filters.search}%"
        text_match = or_(
            Order.customer_name.ilike(search_filter),
            Order.customer_email.ilike(search_filter),
            Order.tracking_number.ilike(search_filter),
        )
        order_id = _parse_uuid(filters.search)
        conditions.append(or_(Order.id == order_id, text_match) if order_id else text_match)

    return conditions


class SQLAlchemyStoreSession(StoreSession):
    """StoreSession over one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def add(self, entity) -> None:
        self.db.add(entity)

    async def _get(self, model, entity_id: uuid.UUID, label: str):
        entity = await self.db.get(model, entity_id)
        if entity is None:
            raise NotFoundError(label, entity_id)
        return entity

    # ==================== ORDERS ====================

    async def get_order(self, order_id: uuid.UUID) -> Order:
        return await self._get(Order, order_id, "Order")

    async def find_orders(
        self,
        filters: Optional[OrderFilters] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Order]:
        stmt = select(Order).order_by(Order.created_at.desc())
        conditions = build_order_conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_orders(self, filters: Optional[OrderFilters] = None) -> int:
        stmt = select(func.count(Order.id))
        conditions = build_order_conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        return (await self.db.execute(stmt)).scalar() or 0

    # ==================== NDRS ====================

    async def get_ndr(self, ndr_id: uuid.UUID) -> NDR:
        return await self._get(NDR, ndr_id, "NDR")

    async def find_ndrs(
        self,
        resolution_status: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
        auto_resolution_attempted: Optional[bool] = None,
    ) -> List[NDR]:
        stmt = select(NDR).order_by(NDR.created_at.asc())
        if resolution_status:
            stmt = stmt.where(NDR.resolution_status == resolution_status)
        if order_id:
            stmt = stmt.where(NDR.order_id == order_id)
        if auto_resolution_attempted is not None:
            stmt = stmt.where(NDR.auto_resolution_attempted.is_(auto_resolution_attempted))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_active_ndrs(self, order_id: uuid.UUID) -> int:
        stmt = select(func.count(NDR.id)).where(
            NDR.order_id == order_id,
            NDR.resolution_status != NDRResolutionStatus.CANCELLED.value,
        )
        return (await self.db.execute(stmt)).scalar() or 0

    # ==================== NOTIFICATIONS ====================

    async def get_notification(self, notification_id: uuid.UUID) -> OrderNotification:
        return await self._get(OrderNotification, notification_id, "Notification")

    async def find_notifications(
        self,
        order_id: Optional[uuid.UUID] = None,
        notification_type: Optional[str] = None,
    ) -> List[OrderNotification]:
        stmt = select(OrderNotification).order_by(OrderNotification.sent_at.desc())
        if order_id:
            stmt = stmt.where(OrderNotification.order_id == order_id)
        if notification_type:
            stmt = stmt.where(OrderNotification.notification_type == notification_type)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ==================== TIMELINE ====================

    async def list_timeline(self, order_id: uuid.UUID) -> List[OrderTimeline]:
        stmt = (
            select(OrderTimeline)
            .where(OrderTimeline.order_id == order_id)
            .order_by(OrderTimeline.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ==================== RETURNS ====================

    async def get_return_policy(self, policy_id: uuid.UUID) -> ReturnPolicy:
        return await self._get(ReturnPolicy, policy_id, "Return policy")

    async def find_return_policies(self, active_only: bool = True) -> List[ReturnPolicy]:
        stmt = select(ReturnPolicy).order_by(ReturnPolicy.created_at.desc())
        if active_only:
            stmt = stmt.where(ReturnPolicy.is_active.is_(True))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_return(self, return_id: uuid.UUID) -> ReturnRequest:
        return await self._get(ReturnRequest, return_id, "Return")

    async def find_returns(self, order_id: Optional[uuid.UUID] = None) -> List[ReturnRequest]:
        stmt = select(ReturnRequest).order_by(ReturnRequest.created_at.desc())
        if order_id:
            stmt = stmt.where(ReturnRequest.order_id == order_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyOrderStore(OrderStore):
    """
    OrderStore backed by an async SQLAlchemy session factory.

    Optimistic locking comes from the ``version_id_col`` on Order and NDR:
    an UPDATE that matches no row (someone else committed first) raises
    StaleDataError, surfaced here as ConcurrencyConflictError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SQLAlchemyStoreSession]:
        async with self.session_factory() as db:
            try:
                yield SQLAlchemyStoreSession(db)
                await db.commit()
            except StaleDataError as e:
                await db.rollback()
                logger.warning(f"Optimistic lock conflict: {e}")
                raise ConcurrencyConflictError(
                    "The record was changed by another request. Please retry."
                ) from e
            except Exception:
                await db.rollback()
                raise

    async def ping(self) -> None:
        async with self.session_factory() as db:
            await db.execute(text("SELECT 1"))
