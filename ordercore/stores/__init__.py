from ordercore.stores.base import OrderStore, StoreSession
from ordercore.stores.sqlalchemy_store import SQLAlchemyOrderStore, SQLAlchemyStoreSession

__all__ = [
    "OrderStore",
    "StoreSession",
    "SQLAlchemyOrderStore",
    "SQLAlchemyStoreSession",
]
