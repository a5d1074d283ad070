"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import diagnostics, sync

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(sync.router, prefix="/api", tags=["sync"])
    app.include_router(diagnostics.router, prefix="/api", tags=["diagnostics"])
    logger.info("Routes registered (SKU prefix=%s, price-list=%s)", settings.ODOO_SKU_PREFIX, settings.ODOO_PRICELIST_ID)
