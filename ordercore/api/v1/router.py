from fastapi import APIRouter

from ordercore.api.v1.endpoints import (
    # Order lifecycle
    orders,
    # Delivery exceptions
    ndrs,
    notifications,
    # Returns & refunds
    returns,
    # Reporting
    exports,
)


api_router = APIRouter()

api_router.include_router(orders.router)
api_router.include_router(ndrs.router)
api_router.include_router(notifications.router)
api_router.include_router(returns.router)
api_router.include_router(exports.router)
