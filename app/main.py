from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import SettlementError, UpstreamUnavailableError
from app.database import init_db, async_session_factory


logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create missing tables (migrations are applied with Alembic)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    if not settings.paytr_configured:
        logger.warning("PayTR credentials are not set, card payments use mock tokens")

    yield

    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Agencies", "description": "Agencies, their commission rate and balance"},
    {"name": "Branches", "description": "Branches, capped by their agency's commission rate"},
    {"name": "Sales", "description": "Complete sale, gateway tokens, refunds"},
    {"name": "Payments", "description": "PayTR payment notifications"},
]

FULL_API_DESCRIPTION = """
## Agency Sales API

Sales of roadside assistance packages through agencies and their branches.

### Settlement

| Step | Description |
|------|-------------|
| **Complete sale** | Customer, vehicle, sale, commission and payment in one transaction |
| **Commission** | Branch share `P*Rb/100`, agency share `P*(Ra-Rb)/100` |
| **Balance payment** | Debited from the agency balance, settled immediately |
| **Card payment** | PayTR iframe; settled by the PayTR notification |
| **Refund** | Prorated over the remaining days, VAT excluded |

### Authentication

All endpoints except the PayTR notification require a JWT issued by the
auth service: `Authorization: Bearer <token>`.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Business rule violation (`code` names the rule) |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Insufficient role |
| 404 | Not Found - Resource doesn't exist |
| 503 | Payment gateway unavailable, safe to retry |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    """Business/validation errors: tagged, no retry implied."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "code": exc.code.value,
            "details": exc.details,
        },
    )


@app.exception_handler(UpstreamUnavailableError)
async def upstream_error_handler(request: Request, exc: UpstreamUnavailableError):
    """Gateway transport errors: nothing was written, the caller may retry."""
    logger.error(f"{request.method} {request.url.path} upstream failure: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "code": "UPSTREAM_UNAVAILABLE",
            "details": {"upstream_status": exc.upstream_status},
        },
        headers={"Retry-After": "5"},
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
