"""
Shopify Admin API service - authenticated REST requests.
Uses API version 2024-01 (stable) unless SHOPIFY_API_VERSION says otherwise.
Every request goes through one executor: 429 is retried per RetryPolicy (Retry-After),
any other non-2xx raises ShopifyError immediately, 204 is an empty body.
Never expose access_token in responses or logs.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.exceptions import ShopifyError
from app.models import CatalogItem, ProductStatus, ShopifyVariant
from app.services.http_client import RetryPolicy, request_with_retry
from app.services.pricing import format_price, normalize_price
from app.services.shopify_catalog_index import ShopifyCatalogIndex

logger = logging.getLogger(__name__)

PAGE_LIMIT = 250


def _log_shopify_response(method: str, path: str, status: int, body_preview: str = "") -> None:
    """Log every Shopify API call for debugging. No sensitive data."""
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, path, status, body_preview[:200] if body_preview else "")
    else:
        logger.info("Shopify API %s %s -> %s", method, path, status)


def _base_url(shop_domain: str, api_version: str) -> str:
    shop = shop_domain.lower().strip()
    if shop.startswith("https://"):
        shop = shop[len("https://"):]
    shop = shop.rstrip("/")
    if not shop.endswith(".myshopify.com") and "." not in shop:
        shop = f"{shop}.myshopify.com"
    return f"https://{shop}/admin/api/{api_version}"


def _headers(access_token: str) -> dict:
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


class ShopifyService:
    def __init__(
        self,
        settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.settings = settings
        self.base_url = _base_url(settings.SHOPIFY_STORE_DOMAIN, settings.SHOPIFY_API_VERSION)
        self.headers = _headers(settings.SHOPIFY_ACCESS_TOKEN)
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.SHOPIFY_MAX_RETRIES,
            default_delay=settings.SHOPIFY_RETRY_AFTER_DEFAULT,
        )
        self.index = ShopifyCatalogIndex(self.list_products_page)
        # Best-effort side effects that failed (metafields); never raised to callers
        self.side_effect_errors: List[dict] = []

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await request_with_retry(
                method,
                url,
                params=params,
                json=json,
                headers=self.headers,
                timeout=self.timeout,
                retry_policy=self.retry_policy,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            logger.error("Shopify API %s %s transport error: %s", method, path, e)
            raise ShopifyError(f"Shopify request failed: {e}") from e

        body = response.text[:300] if response.text else ""
        _log_shopify_response(method, path, response.status_code, body)

        if response.status_code == 429:
            raise ShopifyError(
                f"Shopify rate limit: still 429 after {self.retry_policy.max_retries} retries",
                http_status=429,
            )
        if response.status_code >= 400:
            raise ShopifyError(f"Shopify request failed: {response.status_code}", http_status=response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Catalog
    async def list_products_page(self, since_id: int = 0, limit: int = PAGE_LIMIT) -> List[dict]:
        """One page of products (id + variants only), ordered by id, after `since_id`"""
        params: Dict[str, Any] = {"limit": limit, "fields": "id,variants"}
        if since_id:
            params["since_id"] = since_id
        data = await self.request("GET", "products.json", params=params)
        return (data or {}).get("products") or []

    async def get_some_products(self, limit: int = 3) -> List[dict]:
        data = await self.request("GET", "products.json", params={"limit": limit})
        return (data or {}).get("products") or []

    async def find_variants_by_sku(self, sku: str) -> List[ShopifyVariant]:
        """All variants with this exact SKU. Shopify does not enforce SKU uniqueness."""
        return await self.index.find(sku)

    async def index_all_variants_by_sku(self) -> Dict[str, int]:
        """SKU -> inventory_item_id for the whole store, from a single scan"""
        return await self.index.inventory_items_by_sku()

    async def get_inventory_item_id(self, sku: str) -> Optional[int]:
        variants = await self.find_variants_by_sku(sku)
        if not variants:
            return None
        return variants[0].inventory_item_id

    # Products
    async def create_product(
        self,
        item: CatalogItem,
        status: ProductStatus,
        price_override: Optional[float] = None,
    ) -> dict:
        """
        Create a product with exactly one variant (SKU = item.sku, stock 0; inventory is
        synced separately). The display metafield is written afterwards, best-effort.
        """
        price = price_override if price_override is not None else (item.list_price or 0)
        payload = {
            "product": {
                "title": item.name or item.sku,
                "body_html": item.description or "",
                "vendor": self.settings.SHOPIFY_VENDOR,
                "status": ProductStatus(status).value,
                "variants": [
                    {
                        "sku": item.sku,
                        "price": format_price(price),
                        "inventory_management": "shopify",
                        "inventory_policy": "deny",
                        "inventory_quantity": 0,
                    }
                ],
            }
        }
        data = await self.request("POST", "products.json", json=payload)
        product = (data or {}).get("product") or {}
        if not product.get("id"):
            raise ShopifyError(f"Shopify did not return a product for {item.sku}")
        self.index.add_product(product)
        logger.info("Shopify product created: sku=%s id=%s status=%s", item.sku, product["id"], payload["product"]["status"])

        if item.display_attr:
            await self._write_display_metafield(product["id"], item)
        return product

    async def _write_display_metafield(self, product_id: int, item: CatalogItem) -> None:
        try:
            await self.upsert_display_metafield(product_id, item.display_attr)
        except ShopifyError as e:
            logger.warning("Metafield write failed for %s (product %s): %s", item.sku, product_id, e)
            self.side_effect_errors.append({
                "sku": item.sku,
                "shopify_product_id": product_id,
                "effect": "display_metafield",
                "message": e.message,
            })

    async def upsert_display_metafield(self, product_id: int, value: str) -> dict:
        """Read the namespace+key metafield on the product, then update it or create it"""
        namespace = self.settings.SHOPIFY_METAFIELD_NAMESPACE
        key = self.settings.SHOPIFY_METAFIELD_KEY
        data = await self.request(
            "GET",
            f"products/{product_id}/metafields.json",
            params={"namespace": namespace, "key": key},
        )
        existing = [
            m for m in (data or {}).get("metafields") or []
            if m.get("namespace") == namespace and m.get("key") == key
        ]
        if existing:
            metafield_id = existing[0]["id"]
            data = await self.request(
                "PUT",
                f"metafields/{metafield_id}.json",
                json={"metafield": {"id": metafield_id, "value": value}},
            )
        else:
            data = await self.request(
                "POST",
                f"products/{product_id}/metafields.json",
                json={
                    "metafield": {
                        "namespace": namespace,
                        "key": key,
                        "type": "single_line_text_field",
                        "value": value,
                    }
                },
            )
        return (data or {}).get("metafield") or {}

    async def update_product_status(self, product_id: int, status: ProductStatus) -> dict:
        payload = {"product": {"id": product_id, "status": ProductStatus(status).value}}
        data = await self.request("PUT", f"products/{product_id}.json", json=payload)
        return (data or {}).get("product") or {}

    # Variants
    async def get_variant(self, variant_id: int) -> dict:
        data = await self.request("GET", f"variants/{variant_id}.json")
        return (data or {}).get("variant") or {}

    async def update_variant_price_by_id(self, variant_id: int, price: float) -> dict:
        price_str = format_price(price)
        payload = {"variant": {"id": variant_id, "price": price_str}}
        data = await self.request("PUT", f"variants/{variant_id}.json", json=payload)
        self.index.update_price(variant_id, price_str)
        return (data or {}).get("variant") or {}

    async def update_variant_price(self, sku: str, price: float) -> Optional[dict]:
        """Update only the price of the (first) variant with this SKU; None if the SKU is unknown"""
        variants = await self.find_variants_by_sku(sku)
        if not variants:
            return None
        if len(variants) > 1:
            logger.warning("SKU %s matches %s Shopify variants; updating the first", sku, len(variants))
        return await self.update_variant_price_by_id(variants[0].id, price)

    async def get_variant_price(self, sku: str) -> Optional[float]:
        """Current Shopify price for the SKU (read-only); None if unknown or unpriced"""
        variants = await self.find_variants_by_sku(sku)
        if not variants:
            return None
        variant = await self.get_variant(variants[0].id)
        raw = variant.get("price")
        if raw in (None, ""):
            return None
        return normalize_price(raw)

    # Inventory
    async def set_inventory_level(self, inventory_item_id: int, available: int) -> dict:
        """Absolute available quantity at the configured location"""
        location_id = self.settings.require_location()
        payload = {
            "location_id": location_id,
            "inventory_item_id": inventory_item_id,
            "available": int(available),
        }
        data = await self.request("POST", "inventory_levels/set.json", json=payload)
        return (data or {}).get("inventory_level") or {}
