from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Agency hierarchy
    agencies,
    branches,
    # Sales & settlement
    sales,
    payments,
)

api_router = APIRouter(prefix="/api/v1")

# ==================== Agencies & Branches ====================
api_router.include_router(
    agencies.router,
    prefix="/agencies",
    tags=["Agencies"]
)
api_router.include_router(
    branches.router,
    prefix="/branches",
    tags=["Branches"]
)

# ==================== Sales ====================
api_router.include_router(
    sales.router,
    prefix="/sales",
    tags=["Sales"]
)

# ==================== Payments (PayTR) ====================
api_router.include_router(
    payments.router,
    prefix="/payments",
)
