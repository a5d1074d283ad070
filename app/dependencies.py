"""
FastAPI dependencies: settings and the per-request services built from them.
Tests override these through app.dependency_overrides.
"""
from fastapi import Depends

from app.config import Settings, get_settings
from app.services.odoo_service import OdooService
from app.services.pricing import PricingPolicy
from app.services.shopify_service import ShopifyService
from app.services.sync_engine import SyncEngine


def get_odoo_service(settings: Settings = Depends(get_settings)) -> OdooService:
    settings.require_odoo()
    return OdooService(settings)


def get_shopify_service(settings: Settings = Depends(get_settings)) -> ShopifyService:
    settings.require_shopify()
    # New instance per request: the SKU index lives for exactly one pass
    return ShopifyService(settings)


def get_sync_engine(
    settings: Settings = Depends(get_settings),
    odoo: OdooService = Depends(get_odoo_service),
    shopify: ShopifyService = Depends(get_shopify_service),
) -> SyncEngine:
    return SyncEngine(odoo, shopify, settings, PricingPolicy.from_settings(settings))
