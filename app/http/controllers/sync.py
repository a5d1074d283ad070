"""
Sync routes: products, prices and inventory from Odoo to Shopify.
Failures are raised as SyncBridgeError and formatted by the handlers in main.py.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_sync_engine
from app.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PAGE_LIMIT = 200


def required_sku(sku: str) -> str:
    sku = (sku or "").strip()
    if not sku:
        raise HTTPException(status_code=400, detail="Missing parameter ?sku=PAYXXX")
    return sku


def _page_limit(limit: int) -> int:
    return min(max(limit or 1, 1), MAX_PAGE_LIMIT)


@router.post("/sync-products")
async def sync_products(
    limit: int = Query(10),
    offset: int = Query(0, ge=0),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Create one page of Odoo products on Shopify (existing SKUs are skipped)"""
    result = await engine.create_products_page(_page_limit(limit), offset)
    return {"ok": True, **result}


@router.post("/sync-products-all")
async def sync_products_all(
    limit: int = Query(50),
    offset: int = Query(0, ge=0),
    all_pages: bool = Query(False, alias="all"),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Upsert products (create or update price/status without duplicating).
    One page per call by default; ?all=true walks every page from `offset`.
    """
    if all_pages:
        result = await engine.sync_products_all(_page_limit(limit), offset)
    else:
        result = await engine.sync_products_page(_page_limit(limit), offset)
    return {"ok": True, **result}


@router.api_route("/sync-prices-all", methods=["GET", "POST"])
async def sync_prices_all(engine: SyncEngine = Depends(get_sync_engine)):
    """Push the resolved price-list price of every managed SKU to Shopify"""
    return {"ok": True, **(await engine.sync_prices_all())}


@router.post("/sync-price-one")
async def sync_price_one(sku: str = Query(""), engine: SyncEngine = Depends(get_sync_engine)):
    return {"ok": True, **(await engine.sync_price_one(required_sku(sku)))}


@router.post("/sync-stock")
async def sync_stock(
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Inventory sync for one page of the Odoo catalog"""
    return {"ok": True, **(await engine.sync_stock_page(_page_limit(limit), offset))}


@router.api_route("/sync-stock-all", methods=["GET", "POST"])
async def sync_stock_all(engine: SyncEngine = Depends(get_sync_engine)):
    """Inventory sync for every managed SKU (one Shopify scan per call)"""
    return {"ok": True, **(await engine.sync_stock_all())}


@router.post("/sync-stock-sku")
async def sync_stock_sku(sku: str = Query(""), engine: SyncEngine = Depends(get_sync_engine)):
    return {"ok": True, **(await engine.sync_stock_sku(required_sku(sku)))}


@router.post("/sync-both")
async def sync_both(engine: SyncEngine = Depends(get_sync_engine)):
    """Stock, prices, then products; used by the external cron jobs"""
    result = await engine.sync_all()
    if not result["ok"]:
        logger.warning("sync-both finished with failed stage(s)")
    return result
