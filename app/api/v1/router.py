from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Customer checkout & tracking
    orders,
    # Shopkeeper order handling & dispatch
    shop_orders,
    # Delivery partners
    delivery,
    # Returns
    returns,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Customer Orders ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Shop ====================
api_router.include_router(
    shop_orders.router,
    prefix="/shop",
    tags=["Shop Orders"]
)

# ==================== Delivery Partners ====================
api_router.include_router(
    delivery.router,
    prefix="/delivery",
    tags=["Delivery"]
)

# ==================== Returns ====================
api_router.include_router(
    returns.router,
    tags=["Returns"]
)
