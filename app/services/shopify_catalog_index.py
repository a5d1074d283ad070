"""
In-memory SKU index over the whole Shopify catalog.
Built with one since_id scan of products.json and reused for every lookup in a pass,
instead of re-scanning the catalog per SKU. Call invalidate() or refresh() when the
store may have changed outside this process; products created through ShopifyService
are added in place.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from app.models import ShopifyVariant

logger = logging.getLogger(__name__)

# (since_id) -> list of raw product dicts with at least id + variants
FetchPage = Callable[[int], Awaitable[List[dict]]]


class ShopifyCatalogIndex:
    def __init__(self, fetch_page: FetchPage):
        self._fetch_page = fetch_page
        self._by_sku: Optional[Dict[str, List[ShopifyVariant]]] = None
        self.scans = 0

    @property
    def is_loaded(self) -> bool:
        return self._by_sku is not None

    def invalidate(self) -> None:
        self._by_sku = None

    async def refresh(self) -> None:
        by_sku: Dict[str, List[ShopifyVariant]] = {}
        since_id = 0
        pages = 0
        while True:
            products = await self._fetch_page(since_id)
            if not products:
                break
            pages += 1
            for product in products:
                for variant in _variants_of(product):
                    by_sku.setdefault(variant.sku, []).append(variant)
            since_id = products[-1]["id"]
        self._by_sku = by_sku
        self.scans += 1
        duplicates = [sku for sku, matches in by_sku.items() if len(matches) > 1]
        if duplicates:
            logger.warning("Shopify SKU(s) shared by several variants: %s", ", ".join(sorted(duplicates)[:20]))
        logger.info("Shopify catalog index: %s SKU(s) across %s page(s)", len(by_sku), pages)

    async def ensure_loaded(self) -> None:
        if self._by_sku is None:
            await self.refresh()

    async def find(self, sku: str) -> List[ShopifyVariant]:
        """All variants whose SKU matches exactly (usually 0 or 1)"""
        await self.ensure_loaded()
        return list(self._by_sku.get(sku, []))

    async def inventory_items_by_sku(self) -> Dict[str, int]:
        """SKU -> inventory_item_id; for duplicated SKUs the first variant wins"""
        await self.ensure_loaded()
        return {
            sku: matches[0].inventory_item_id
            for sku, matches in self._by_sku.items()
            if matches and matches[0].inventory_item_id is not None
        }

    def add_product(self, product: dict) -> None:
        """Record a product this process just created; no-op if the index is not built yet"""
        if self._by_sku is None:
            return
        for variant in _variants_of(product):
            self._by_sku.setdefault(variant.sku, []).append(variant)

    def update_price(self, variant_id: int, price: Optional[str]) -> None:
        if self._by_sku is None:
            return
        for matches in self._by_sku.values():
            for variant in matches:
                if variant.id == variant_id:
                    variant.price = price


def _variants_of(product: dict) -> List[ShopifyVariant]:
    out = []
    for v in product.get("variants") or []:
        sku = (v.get("sku") or "").strip()
        if not sku:
            continue
        out.append(
            ShopifyVariant(
                id=v["id"],
                product_id=v.get("product_id") or product["id"],
                sku=sku,
                inventory_item_id=v.get("inventory_item_id"),
                price=v.get("price"),
            )
        )
    return out
