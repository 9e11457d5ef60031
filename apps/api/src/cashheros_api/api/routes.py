from fastapi import APIRouter, Depends

from .endpoints import auth, cashback, cashback_offers, coupons, health, stores
from .middleware import bind_path_identifiers

api_router = APIRouter(prefix="/api", dependencies=[Depends(bind_path_identifiers)])
api_router.include_router(auth.router)
api_router.include_router(coupons.router)
api_router.include_router(stores.router)
api_router.include_router(cashback_offers.router)
api_router.include_router(cashback.router)

health_router = health.router

__all__ = ["api_router", "health_router"]
