"""
Odoo -> Shopify bridge - FastAPI entrypoint
"""
import logging

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.exceptions import SyncBridgeError
from routes.api import register_routes

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Odoo Shopify Bridge",
    description="Catalog, price and inventory sync from Odoo to Shopify",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,  # Disable docs in production
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("🚀 Starting Odoo Shopify bridge")
logger.info("📊 Environment: %s", settings.ENV)

# Startup config validation (warn only; each endpoint fails fast on what it needs)
if settings.missing_odoo():
    logger.warning("⚠️ Odoo not configured: %s", ", ".join(settings.missing_odoo()))
if settings.missing_shopify():
    logger.warning("⚠️ Shopify not configured: %s", ", ".join(settings.missing_shopify()))
if not settings.SHOPIFY_LOCATION_ID:
    logger.warning("⚠️ SHOPIFY_LOCATION_ID is not set; stock endpoints will fail")

def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "ok": False,
            "error": "Validation error: Please check your request parameters",
            "detail": jsonable_errors(exc),
        },
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=exc.headers,
    )

@app.exception_handler(SyncBridgeError)
async def sync_bridge_exception_handler(request: Request, exc: SyncBridgeError):
    """Configuration, upstream and not-found errors from the services"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.details, "ok": False, "error": exc.message},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler so callers always get the JSON envelope"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "ok": False,
            "error": str(exc) if settings.IS_DEVELOPMENT else "Internal server error",
        },
    )

if settings.ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

register_routes(app, settings)

@app.get("/health")
async def health():
    """Health check endpoint. Reports which integrations are configured (no remote calls)."""
    return {
        "status": "ok",
        "service": "odoo-shopify-bridge",
        "environment": settings.ENV,
        "odoo_configured": not settings.missing_odoo(),
        "shopify_configured": not settings.missing_shopify(),
        "location_configured": bool(settings.SHOPIFY_LOCATION_ID),
    }

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower(),
    )
