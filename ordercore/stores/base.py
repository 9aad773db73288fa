"""
Order Store Adapter interface.

The engines never talk to a database directly. They open a unit of work
with ``OrderStore.session()`` and read/write through the ``StoreSession``
it yields. One session is one transaction:

- clean exit commits every change made through the session
- an exception rolls everything back
- a write computed from stale state raises ConcurrencyConflictError at commit

Key principles:
- Lookups by id raise NotFoundError instead of returning None
- No business rules in stores
- Swappable backend via dependency injection
"""

import uuid
from abc import ABC, abstractmethod
from typing import AsyncContextManager, List, Optional

from ordercore.models import (
    NDR, Order, OrderNotification, OrderTimeline, ReturnPolicy, ReturnRequest,
)
from ordercore.schemas.order import OrderFilters


class StoreSession(ABC):
    """One unit of work against the backing store."""

    @abstractmethod
    def add(self, entity) -> None:
        """Stage a new entity (order, NDR, notification, timeline entry, policy, return)."""

    # ---- Orders ----

    @abstractmethod
    async def get_order(self, order_id: uuid.UUID) -> Order:
        ...

    @abstractmethod
    async def find_orders(
        self,
        filters: Optional[OrderFilters] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """Orders matching every filter, newest first."""

    @abstractmethod
    async def count_orders(self, filters: Optional[OrderFilters] = None) -> int:
        ...

    # ---- NDRs ----

    @abstractmethod
    async def get_ndr(self, ndr_id: uuid.UUID) -> NDR:
        ...

    @abstractmethod
    async def find_ndrs(
        self,
        resolution_status: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
        auto_resolution_attempted: Optional[bool] = None,
    ) -> List[NDR]:
        """NDRs matching every given criterion, oldest first."""

    @abstractmethod
    async def count_active_ndrs(self, order_id: uuid.UUID) -> int:
        """Number of NDRs for the order that are not cancelled."""

    # ---- Notifications ----

    @abstractmethod
    async def get_notification(self, notification_id: uuid.UUID) -> OrderNotification:
        ...

    @abstractmethod
    async def find_notifications(
        self,
        order_id: Optional[uuid.UUID] = None,
        notification_type: Optional[str] = None,
    ) -> List[OrderNotification]:
        """Notifications, most recently sent first."""

    # ---- Timeline ----

    @abstractmethod
    async def list_timeline(self, order_id: uuid.UUID) -> List[OrderTimeline]:
        """Timeline entries for an order, newest first."""

    # ---- Returns ----

    @abstractmethod
    async def get_return_policy(self, policy_id: uuid.UUID) -> ReturnPolicy:
        ...

    @abstractmethod
    async def find_return_policies(self, active_only: bool = True) -> List[ReturnPolicy]:
        ...

    @abstractmethod
    async def get_return(self, return_id: uuid.UUID) -> ReturnRequest:
        ...

    @abstractmethod
    async def find_returns(self, order_id: Optional[uuid.UUID] = None) -> List[ReturnRequest]:
        ...


class OrderStore(ABC):
    """Factory for units of work."""

    @abstractmethod
    def session(self) -> AsyncContextManager[StoreSession]:
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backing store is unreachable."""
