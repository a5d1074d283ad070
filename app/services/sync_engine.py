"""
Sync engine: Odoo catalog -> Shopify products, prices and inventory.

Each pass pages through the managed Odoo catalog (limit/offset) until an empty page or
the SYNC_MAX_OFFSET ceiling. Per page: resolve prices, read stock, decide status,
create-or-update each SKU on Shopify. Any failure for one SKU is recorded in `errors`
and the pass continues; only configuration errors and the first page fetch abort.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.exceptions import NotFoundError, SyncBridgeError
from app.models import (
    CatalogItem,
    PriceCheckStatus,
    SyncError,
    SyncItem,
    SyncResult,
    UpsertMode,
)
from app.services.odoo_service import OdooService
from app.services.pricing import PricingPolicy, format_price, normalize_price
from app.services.shopify_service import ShopifyService

logger = logging.getLogger(__name__)

PRICE_DIFF_CHUNK = 30
PRICE_TOLERANCE = 0.01


def _error_message(e: Exception) -> str:
    return getattr(e, "message", None) or str(e) or e.__class__.__name__


class SyncEngine:
    """Sequential reconciliation passes; one instance per request"""

    def __init__(
        self,
        odoo: OdooService,
        shopify: ShopifyService,
        settings,
        policy: Optional[PricingPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.odoo = odoo
        self.shopify = shopify
        self.settings = settings
        self.policy = policy or PricingPolicy.from_settings(settings)
        self.pricelist_id = settings.ODOO_PRICELIST_ID
        self.page_size = settings.SYNC_PAGE_SIZE
        self.max_offset = settings.SYNC_MAX_OFFSET
        self.write_delay = settings.SHOPIFY_WRITE_DELAY_MS / 1000.0
        self._sleep = sleep

    async def _pace(self) -> None:
        """Fixed pause between bulk Shopify writes, independent of 429 handling"""
        if self.write_delay > 0:
            await self._sleep(self.write_delay)

    def _drain_warnings(self, result: SyncResult) -> None:
        result.warnings.extend(self.shopify.side_effect_errors)
        self.shopify.side_effect_errors.clear()

    async def _prices_by_sku(self, skus: List[str]) -> Dict[str, float]:
        prices = await self.odoo.resolve_prices(self.pricelist_id, skus, self.policy.fallback)
        return {p.sku: p.price for p in prices}

    async def _stock_by_sku(self, skus: List[str]) -> Dict[str, float]:
        lines = await self.odoo.get_stock(skus)
        return {line.sku: line.qty_available for line in lines}

    async def _bulk_page(self, limit: int, offset: int, start_offset: int = 0) -> tuple[List[CatalogItem], Optional[str]]:
        """
        Catalog page for a multi-page pass. A failure on the first page propagates
        (nothing was written yet); a later one stops the pass and is returned as a message.
        """
        if offset == start_offset:
            return await self.odoo.list_catalog_page(limit, offset), None
        try:
            return await self.odoo.list_catalog_page(limit, offset), None
        except Exception as e:
            logger.error("Catalog page fetch failed at offset=%s, stopping the pass: %s", offset, e)
            return [], _error_message(e)

    # Products
    async def upsert_item(self, item: CatalogItem, price: Optional[float], qty: float) -> tuple[UpsertMode, SyncItem]:
        """Create the SKU on Shopify if absent, else update price (when valid) and status"""
        status = self.policy.decide_status(price, qty)
        price_sent = self.policy.price_to_send(price)
        record = SyncItem(
            odoo_id=item.id,
            sku=item.sku,
            product_status=status,
            odoo_price=price,
            price_sent=price_sent,
            odoo_qty=qty,
        )

        variants = await self.shopify.find_variants_by_sku(item.sku)
        if not variants:
            product = await self.shopify.create_product(item, status, price_override=price_sent)
            record.shopify_product_id = product["id"]
            return UpsertMode.CREATED, record

        if len(variants) > 1:
            logger.warning("SKU %s matches %s Shopify variants; using the first", item.sku, len(variants))
        variant = variants[0]
        if self.policy.is_valid_price(price):
            current = normalize_price(variant.price) if variant.price is not None else None
            if current != float(format_price(price_sent)):
                await self.shopify.update_variant_price_by_id(variant.id, price_sent)
        await self.shopify.update_product_status(variant.product_id, status)
        record.shopify_product_id = variant.product_id
        return UpsertMode.UPDATED, record

    async def sync_products_page(self, limit: int, offset: int = 0) -> dict:
        """
        Upsert one page of the Odoo catalog. `next_offset` is None once the page is empty.
        A failure fetching the page itself propagates (nothing was done yet).
        """
        items = await self.odoo.list_catalog_page(limit, offset)
        if not items:
            return {
                "limit": limit,
                "offset": offset,
                "next_offset": None,
                "message": "No more products in this range",
                **SyncResult().to_dict(),
            }
        result = await self._reconcile_items(items)
        return {"limit": limit, "offset": offset, "next_offset": offset + limit, **result.to_dict()}

    async def _reconcile_items(self, items: List[CatalogItem]) -> SyncResult:
        result = SyncResult(total_processed=len(items))
        skus = [p.sku for p in items]

        try:
            price_by_sku = await self._prices_by_sku(skus)
            stock_by_sku = await self._stock_by_sku(skus)
        except Exception as e:
            # Without prices/stock the status decision would demote live products; skip the page
            logger.error("Price/stock lookup failed for page (%s SKU(s)): %s", len(skus), e)
            result.errors.extend(SyncError(odoo_id=p.id, sku=p.sku, message=_error_message(e)) for p in items)
            return result

        for item in items:
            price = price_by_sku.get(item.sku)
            qty = stock_by_sku.get(item.sku, 0)
            try:
                mode, record = await self.upsert_item(item, price, qty)
            except Exception as e:
                logger.error("Upsert failed for %s: %s", item.sku, e)
                result.errors.append(SyncError(odoo_id=item.id, sku=item.sku, message=_error_message(e)))
                continue
            if mode is UpsertMode.CREATED:
                result.created.append(record)
            else:
                result.updated.append(record)

        self._drain_warnings(result)
        logger.info(
            "Products page: %s processed, %s created, %s updated, %s error(s)",
            result.total_processed, len(result.created), len(result.updated), len(result.errors),
        )
        return result

    async def sync_products_all(self, page_size: Optional[int] = None, start_offset: int = 0) -> dict:
        """All pages from `start_offset` until an empty page or the offset ceiling"""
        page_size = page_size or self.page_size
        total = SyncResult()
        offset = start_offset
        pages = 0
        truncated = False
        abort_error = None
        while True:
            if offset > self.max_offset:
                truncated = True
                logger.warning("Products sync stopped at safety ceiling offset=%s", offset)
                break
            items, abort_error = await self._bulk_page(page_size, offset, start_offset)
            if abort_error or not items:
                break
            pages += 1
            total.merge(await self._reconcile_items(items))
            offset += page_size
        return {
            "pages": pages,
            "page_size": page_size,
            "last_offset": offset,
            "truncated": truncated,
            "aborted_at_offset": offset if abort_error else None,
            "abort_error": abort_error,
            **total.to_dict(),
        }

    async def create_products_page(self, limit: int, offset: int = 0) -> dict:
        """
        Create-only pass for one page, priced from list_price. SKUs already on Shopify
        are skipped so repeated calls never duplicate products.
        """
        items = await self.odoo.list_catalog_page(limit, offset)
        created: List[dict] = []
        skipped: List[str] = []
        errors: List[dict] = []
        for item in items:
            try:
                if await self.shopify.find_variants_by_sku(item.sku):
                    skipped.append(item.sku)
                    continue
                status = self.policy.decide_status(item.list_price)
                product = await self.shopify.create_product(
                    item, status, price_override=self.policy.price_to_send(item.list_price)
                )
                created.append({"odoo_id": item.id, "shopify_id": product["id"], "sku": item.sku, "product_status": status.value})
            except Exception as e:
                logger.error("Create failed for %s: %s", item.sku, e)
                errors.append({"odoo_id": item.id, "sku": item.sku, "message": _error_message(e)})
        warnings = list(self.shopify.side_effect_errors)
        self.shopify.side_effect_errors.clear()
        return {
            "limit": limit,
            "offset": offset,
            "synced": len(created),
            "items": created,
            "skipped": skipped,
            "errors": errors,
            "warnings": warnings,
        }

    # Prices
    async def _push_price(self, sku: str, price: Optional[float]) -> dict:
        detail: Dict[str, Any] = {"sku": sku, "odoo_price": price, "variant_id": None, "new_shopify_price": None}
        if not self.policy.is_valid_price(price):
            detail["error"] = "No valid price in Odoo (price-list or list_price)"
            return detail
        variant = await self.shopify.update_variant_price(sku, price)
        if not variant:
            detail["error"] = "SKU not found in Shopify"
            return detail
        detail["variant_id"] = variant.get("id")
        detail["new_shopify_price"] = variant.get("price")
        return detail

    async def sync_prices_all(self) -> dict:
        offset = 0
        processed = 0
        updated = 0
        truncated = False
        abort_error = None
        details: List[dict] = []
        while True:
            if offset > self.max_offset:
                truncated = True
                break
            items, abort_error = await self._bulk_page(self.page_size, offset)
            if abort_error or not items:
                break
            skus = [p.sku for p in items]
            processed += len(skus)
            try:
                price_by_sku = await self._prices_by_sku(skus)
            except Exception as e:
                logger.error("Price lookup failed at offset=%s: %s", offset, e)
                details.extend({"sku": sku, "odoo_price": None, "error": _error_message(e)} for sku in skus)
                offset += self.page_size
                continue

            for sku in skus:
                try:
                    detail = await self._push_price(sku, price_by_sku.get(sku))
                except Exception as e:
                    logger.error("Price update failed for %s: %s", sku, e)
                    detail = {"sku": sku, "odoo_price": price_by_sku.get(sku), "error": _error_message(e)}
                if detail.get("variant_id"):
                    updated += 1
                    await self._pace()
                details.append(detail)
            offset += self.page_size
        logger.info("Prices sync: %s SKU(s) processed, %s updated", processed, updated)
        return {
            "pricelist_id": self.pricelist_id,
            "processed_skus": processed,
            "updated": updated,
            "truncated": truncated,
            "aborted_at_offset": offset if abort_error else None,
            "abort_error": abort_error,
            "details": details,
        }

    async def sync_price_one(self, sku: str) -> dict:
        price_by_sku = await self._prices_by_sku([sku])
        price = price_by_sku.get(sku)
        if not self.policy.is_valid_price(price):
            raise NotFoundError("No valid price in Odoo for this SKU", {"sku": sku, "odoo_price": price})
        variant = await self.shopify.update_variant_price(sku, price)
        if not variant:
            raise NotFoundError("SKU not found in Shopify", {"sku": sku, "odoo_price": price})
        return {
            "sku": sku,
            "odoo_price": price,
            "shopify_variant_id": variant.get("id"),
            "new_shopify_price": variant.get("price"),
        }

    # Stock
    async def _push_stock(self, sku: str, qty: float, inventory_items: Dict[str, int]) -> dict:
        detail: Dict[str, Any] = {
            "sku": sku,
            "odoo_qty": qty,
            "inventory_item_id": None,
            "shopify_available": None,
            "location_id": None,
        }
        inventory_item_id = inventory_items.get(sku)
        if not inventory_item_id:
            detail["error"] = "No Shopify variant for this SKU (product not synced yet?)"
            return detail
        detail["inventory_item_id"] = inventory_item_id
        level = await self.shopify.set_inventory_level(inventory_item_id, int(qty))
        detail["shopify_available"] = level.get("available")
        detail["location_id"] = level.get("location_id")
        return detail

    async def _sync_stock_items(self, skus: List[str], inventory_items: Dict[str, int]) -> tuple[int, List[dict]]:
        updated = 0
        details: List[dict] = []
        try:
            lines = await self.odoo.get_stock(skus)
        except Exception as e:
            logger.error("Stock lookup failed for %s SKU(s): %s", len(skus), e)
            return 0, [{"sku": sku, "odoo_qty": None, "error": _error_message(e)} for sku in skus]
        for line in lines:
            try:
                detail = await self._push_stock(line.sku, line.qty_available, inventory_items)
            except Exception as e:
                logger.error("Inventory update failed for %s: %s", line.sku, e)
                detail = {"sku": line.sku, "odoo_qty": line.qty_available, "error": _error_message(e)}
            if detail.get("inventory_item_id") and not detail.get("error"):
                updated += 1
                await self._pace()
            details.append(detail)
        return updated, details

    async def sync_stock_page(self, limit: int, offset: int = 0) -> dict:
        self.settings.require_location()
        items = await self.odoo.list_catalog_page(limit, offset)
        skus = [p.sku for p in items]
        if not skus:
            return {"processed_skus": 0, "updated": 0, "details": [], "message": "No products in this range"}
        inventory_items = await self.shopify.index_all_variants_by_sku()
        updated, details = await self._sync_stock_items(skus, inventory_items)
        return {"limit": limit, "offset": offset, "processed_skus": len(skus), "updated": updated, "details": details}

    async def sync_stock_all(self) -> dict:
        self.settings.require_location()
        # One Shopify scan for the whole pass instead of one per SKU
        inventory_items = await self.shopify.index_all_variants_by_sku()
        offset = 0
        processed = 0
        updated = 0
        truncated = False
        abort_error = None
        details: List[dict] = []
        while True:
            if offset > self.max_offset:
                truncated = True
                break
            items, abort_error = await self._bulk_page(self.page_size, offset)
            if abort_error or not items:
                break
            skus = [p.sku for p in items]
            processed += len(skus)
            page_updated, page_details = await self._sync_stock_items(skus, inventory_items)
            updated += page_updated
            details.extend(page_details)
            offset += self.page_size
        logger.info("Stock sync: %s SKU(s) processed, %s updated", processed, updated)
        return {
            "processed_skus": processed,
            "updated": updated,
            "truncated": truncated,
            "aborted_at_offset": offset if abort_error else None,
            "abort_error": abort_error,
            "details": details,
        }

    async def sync_stock_sku(self, sku: str) -> dict:
        self.settings.require_location()
        lines = await self.odoo.get_stock([sku])
        if not lines:
            raise NotFoundError("SKU not found in Odoo", {"sku": sku})
        line = lines[0]
        inventory_item_id = await self.shopify.get_inventory_item_id(sku)
        if not inventory_item_id:
            raise NotFoundError(
                "No Shopify variant for this SKU (run the products sync first)",
                {"sku": sku, "odoo_qty": line.qty_available},
            )
        level = await self.shopify.set_inventory_level(inventory_item_id, int(line.qty_available))
        return {
            "sku": sku,
            "odoo_qty": line.qty_available,
            "inventory_item_id": inventory_item_id,
            "shopify_available": level.get("available"),
            "location_id": level.get("location_id"),
        }

    # Orchestration
    async def sync_all(self) -> dict:
        """Stock, then prices, then products; a failing stage is reported, the next still runs"""
        started = datetime.now(timezone.utc)
        results: Dict[str, Any] = {}
        for name, run in (
            ("stock", self.sync_stock_all),
            ("prices", self.sync_prices_all),
            ("products", self.sync_products_all),
        ):
            try:
                results[name] = {"ok": True, **(await run())}
            except Exception as e:
                logger.exception("sync-both stage %s failed", name)
                results[name] = {"ok": False, "error": _error_message(e)}
            # Later stages must see what earlier ones changed
            self.shopify.index.invalidate()
        results["ok"] = all(results[name]["ok"] for name in ("stock", "prices", "products"))
        results["started_at"] = started.isoformat()
        results["finished_at"] = datetime.now(timezone.utc).isoformat()
        return results

    # Diagnostics
    def classify_price(self, odoo_price: Optional[float], shopify_price: Optional[float]) -> PriceCheckStatus:
        if odoo_price is None:
            return PriceCheckStatus.NO_ODOO_PRICE
        if shopify_price is None:
            return PriceCheckStatus.NO_SHOPIFY_VARIANT
        if abs(shopify_price - float(format_price(odoo_price))) < PRICE_TOLERANCE:
            return PriceCheckStatus.OK
        return PriceCheckStatus.PRICE_MISMATCH

    async def prices_diff(self) -> dict:
        """Compare the resolved Odoo price with the live Shopify price for every managed SKU"""
        products: List[CatalogItem] = []
        offset = 0
        while offset <= self.max_offset:
            page = await self.odoo.list_catalog_page(self.page_size, offset)
            if not page:
                break
            products.extend(page)
            offset += self.page_size

        items: List[dict] = []
        for i in range(0, len(products), PRICE_DIFF_CHUNK):
            chunk = products[i:i + PRICE_DIFF_CHUNK]
            price_by_sku = await self._prices_by_sku([p.sku for p in chunk])
            for p in chunk:
                odoo_price = price_by_sku.get(p.sku)
                try:
                    shopify_price = await self.shopify.get_variant_price(p.sku)
                except SyncBridgeError as e:
                    logger.warning("Shopify price lookup failed for %s: %s", p.sku, e)
                    shopify_price = None
                items.append({
                    "sku": p.sku,
                    "odoo_id": p.id,
                    "name": p.name,
                    "odoo_price": odoo_price,
                    "shopify_price": shopify_price,
                    "status": self.classify_price(odoo_price, shopify_price).value,
                })

        summary = {"total_products": len(products)}
        for status in PriceCheckStatus:
            summary[status.value] = sum(1 for item in items if item["status"] == status.value)
        return {"pricelist_id": self.pricelist_id, "summary": summary, "items": items}

    async def debug_sku(self, sku: str) -> dict:
        """State of one SKU on both sides, including every Shopify variant sharing it"""
        odoo_products = await self.odoo.find_products_by_sku([sku])
        odoo_product = odoo_products[0] if odoo_products else None
        variants = await self.shopify.find_variants_by_sku(sku)
        if not odoo_product and not variants:
            raise NotFoundError("SKU not found in Odoo or Shopify", {"sku": sku})

        odoo_info = None
        resolved_price = None
        if odoo_product:
            stock = await self._stock_by_sku([sku])
            resolved_price = (await self._prices_by_sku([sku])).get(sku)
            qty = stock.get(sku, 0)
            odoo_info = {
                "id": odoo_product.id,
                "name": odoo_product.name,
                "default_code": odoo_product.sku,
                "list_price": odoo_product.list_price,
                "resolved_price": resolved_price,
                "qty_available": qty,
                "expected_status": self.policy.decide_status(resolved_price, qty).value,
            }

        shopify_price = normalize_price(variants[0].price) if variants and variants[0].price is not None else None
        return {
            "sku": sku,
            "odoo": odoo_info,
            "shopify": [
                {
                    "product_id": v.product_id,
                    "variant_id": v.id,
                    "inventory_item_id": v.inventory_item_id,
                    "price": v.price,
                }
                for v in variants
            ],
            "duplicate_sku": len(variants) > 1,
            "price_check": self.classify_price(resolved_price, shopify_price).value if odoo_info else None,
        }

    async def sync_single_price(self, sku: str, apply: bool = True) -> dict:
        """Before/after view of one SKU's Shopify price against the resolved Odoo price"""
        odoo_products = await self.odoo.find_products_by_sku([sku])
        if not odoo_products:
            raise NotFoundError("SKU not found in Odoo", {"sku": sku})
        product = odoo_products[0]
        price = (await self._prices_by_sku([sku])).get(sku)
        qty = (await self._stock_by_sku([sku])).get(sku)
        odoo_info = {
            "id": product.id,
            "name": product.name,
            "list_price": product.list_price,
            "resolved_price": price,
            "qty_available": qty,
        }

        variants = await self.shopify.find_variants_by_sku(sku)
        if not variants:
            raise NotFoundError("SKU not found in Shopify", {"sku": sku, "odoo": odoo_info})
        variant = variants[0]
        before = await self.shopify.get_variant_price(sku)
        after = before
        if apply and self.policy.is_valid_price(price):
            updated = await self.shopify.update_variant_price_by_id(variant.id, price)
            after = normalize_price(updated.get("price")) if updated.get("price") is not None else await self.shopify.get_variant_price(sku)

        def shopify_view(p):
            return {
                "product_id": variant.product_id,
                "variant_id": variant.id,
                "inventory_item_id": variant.inventory_item_id,
                "price": p,
            }

        return {
            "sku": sku,
            "odoo": odoo_info,
            "applied": apply and self.policy.is_valid_price(price),
            "shopify_before": shopify_view(before),
            "shopify_after": shopify_view(after),
            "diff": {
                "price_before": before,
                "price_after": after,
                "delta": (after - before) if before is not None and after is not None else None,
            },
        }

