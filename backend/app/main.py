from fastapi import FastAPI, Request, Depends, Header
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import init_db, close_db, get_db
from app.core.exceptions import SandboxPoolError, error_response
from app.core.logging_config import logger
from app.core.middleware import RequestLoggingMiddleware
from app.services.webhook_registry import webhook_registry


# HTTP status per error code; unknown codes are 500
ERROR_STATUS_CODES = {
    "PROJECT_NOT_FOUND": 404,
    "SANDBOX_NOT_FOUND": 410,
    "DUPLICATE_PROJECT_NAME": 409,
    "PORT_ALLOCATION_FAILED": 409,
    "SANDBOX_PROVIDER_UNAVAILABLE": 503,
    "SANDBOX_START_FAILED": 503,
    "SANDBOX_CREATION_FAILED": 502,
    "SANDBOX_PROVIDER_ERROR": 502,
}


def status_code_for(error: SandboxPoolError) -> int:
    return ERROR_STATUS_CODES.get(error.code, 500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info("=" * 60)

    if not settings.DAYTONA_API_KEY:
        logger.warning("[Startup] DAYTONA_API_KEY not set - sandbox operations will fail")
    if not settings.HELIUS_WEBHOOK_ID:
        logger.warning("[Startup] HELIUS_WEBHOOK_ID not set - webhook registry sync disabled")

    await init_db()
    logger.info("[Startup] Database tables ready")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Shared sandbox pool: assignment, port allocation and sandbox lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# Exception handlers
@app.exception_handler(SandboxPoolError)
async def sandbox_pool_exception_handler(request: Request, exc: SandboxPoolError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"[API] {exc.code}: {exc.message}")
    else:
        logger.info(f"[API] {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.post("/admin/webhook/sync", tags=["Admin"])
async def sync_webhook_addresses(
    x_admin_api_key: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Push every stored deposit address to the webhook registry"""
    if not settings.ADMIN_API_KEY or x_admin_api_key != settings.ADMIN_API_KEY:
        return JSONResponse(status_code=401, content={"error": "Unauthorized - Admin access required"})

    success, count = await webhook_registry.sync_all_addresses(db)
    if not success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to sync addresses to webhook", "count": count},
        )
    return {"success": True, "message": f"Synced {count} address(es) to webhook", "count": count}
