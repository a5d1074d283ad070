"""
Debug/diagnostic routes: look at one SKU (or the price list) on both sides.
Read-only except sync-single-price, which applies the resolved price unless ?apply=false.
"""
from fastapi import APIRouter, Depends, Query

from app.config import Settings, get_settings
from app.dependencies import get_odoo_service, get_shopify_service, get_sync_engine
from app.http.controllers.sync import required_sku
from app.services.odoo_service import OdooService
from app.services.pricing import PricingPolicy
from app.services.shopify_service import ShopifyService
from app.services.sync_engine import SyncEngine

router = APIRouter()


@router.get("/debug-sku")
async def debug_sku(sku: str = Query(""), engine: SyncEngine = Depends(get_sync_engine)):
    """Odoo product, stock, resolved price and every Shopify variant for the SKU"""
    return {"ok": True, **(await engine.debug_sku(required_sku(sku)))}


@router.get("/prices-diff")
async def prices_diff(engine: SyncEngine = Depends(get_sync_engine)):
    return {"ok": True, **(await engine.prices_diff())}


@router.api_route("/sync-single-price", methods=["GET", "POST"])
async def sync_single_price(
    sku: str = Query(""),
    apply: bool = Query(True),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return {"ok": True, **(await engine.sync_single_price(required_sku(sku), apply=apply))}


@router.get("/odoo-test")
async def odoo_test(sku: str = Query(""), odoo: OdooService = Depends(get_odoo_service)):
    products = await odoo.find_products_by_sku([required_sku(sku)])
    return {"ok": True, "products": [p.model_dump() for p in products]}


@router.get("/odoo-stock-test")
async def odoo_stock_test(sku: str = Query(""), odoo: OdooService = Depends(get_odoo_service)):
    sku = required_sku(sku)
    lines = await odoo.get_stock([sku])
    return {"ok": True, "sku": sku, "odoo_stock": [line.model_dump() for line in lines]}


@router.get("/odoo-price-test")
async def odoo_price_test(
    sku: str = Query(""),
    settings: Settings = Depends(get_settings),
    odoo: OdooService = Depends(get_odoo_service),
):
    """Price-list rules that apply to the SKU and the price/status they produce"""
    policy = PricingPolicy.from_settings(settings)
    report = await odoo.price_report(settings.ODOO_PRICELIST_ID, required_sku(sku), policy)
    return {"ok": True, **report}


@router.get("/shopify-test")
async def shopify_test(limit: int = Query(3, ge=1, le=50), shopify: ShopifyService = Depends(get_shopify_service)):
    products = await shopify.get_some_products(limit)
    return {"ok": True, "count": len(products), "products": products}
