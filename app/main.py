from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings, setup_logging
from app.api.v1.router import api_router
from app.core.errors import OrderWorkflowError, OrderValidationError
from app.database import init_db, import_models, async_session_factory
from app.services.cache_service import init_cache

logger = logging.getLogger(__name__)

import_models()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create missing tables
    - Warm up the cache backend (Redis when configured)
    """
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    await init_cache()

    yield

    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Orders", "description": "Customer checkout, order tracking and cancellation"},
    {"name": "Shop Orders", "description": "Order acceptance, rejection and rider dispatch by the shop"},
    {"name": "Delivery", "description": "Delivery partner queue, OTP hand-over, availability and location"},
    {"name": "Returns", "description": "Return requests, approval, pickup and refunds"},
]

FULL_API_DESCRIPTION = """
## EZ Grocer Marketplace API

Order lifecycle backend for a multi-shop grocery delivery marketplace.

### Order lifecycle

`PENDING → CONFIRMED / PREPARING / READY → SHIPPED → DELIVERED`, with
`CANCELLED` reachable before delivery. Delivery requires the customer's OTP.

### Authentication

All endpoints require a JWT in the Authorization header: `Bearer <token>`

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Validation failed or wrong OTP |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Wrong role |
| 404 | Not Found - Resource doesn't exist or isn't yours |
| 409 | Conflict - Invalid transition, stock or duplicate return |
| 422 | Unprocessable Entity - Malformed request or business rule violation |
| 429 | Too Many Requests - Rate limit or OTP attempts exhausted |
| 500 | Internal Server Error |
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
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(OrderWorkflowError)
async def workflow_exception_handler(request: Request, exc: OrderWorkflowError):
    """Render expected workflow failures with their stable kind."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.kind}: {exc.message}")
    content = exc.to_dict()
    content.update({
        "path": str(request.url.path),
        "method": request.method,
    })
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies, paths and queries share the workflow error shape."""
    errors = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    first = errors[0] if errors else None
    message = (
        f"{'.'.join(first['loc'])}: {first['msg']}" if first else "Invalid request"
    )
    logger.info(f"{request.method} {request.url.path} -> 422 {OrderValidationError.kind}: {message}")
    return JSONResponse(
        status_code=422,
        content={
            "kind": OrderValidationError.kind,
            "error": message,
            "errors": errors,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected failures: log the traceback, keep it out of the response."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "error": str(exc) if settings.DEBUG else "Internal server error",
        "kind": "INTERNAL_ERROR",
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    # Get origin from request
    origin = request.headers.get("origin", "")

    # Build response with CORS headers for error responses
    response = JSONResponse(
        status_code=500,
        content=error_detail
    )

    # Add CORS headers if origin is allowed
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"

    return response


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
        logger.warning(f"Health check database failure: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
