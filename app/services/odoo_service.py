"""
Odoo JSON-RPC service.
Every call goes through POST {ODOO_URL}/jsonrpc with service=object, method=execute_kw.
No retries here: a failed call raises OdooError and the caller decides whether the
failure is per-item (sync loops) or fatal (single-SKU endpoints).
"""
import itertools
import logging
from typing import Any, List, Optional

import httpx

from app.exceptions import NotFoundError, OdooError
from app.models import CatalogItem, PriceListRule, ResolvedPrice, StockLine
from app.services.http_client import post_no_retry
from app.services.pricing import PriceFallback, PricingPolicy, format_price, resolve_prices

logger = logging.getLogger(__name__)

PRODUCT_MODEL = "product.product"
PRICELIST_ITEM_MODEL = "product.pricelist.item"

PRODUCT_FIELDS = ["id", "name", "default_code", "list_price", "description_sale", "product_tmpl_id", "categ_id"]
STOCK_FIELDS = ["default_code", "qty_available"]
RULE_FIELDS = ["id", "pricelist_id", "product_id", "product_tmpl_id", "categ_id", "compute_price", "fixed_price"]

_request_ids = itertools.count(1)


def _rpc_error_message(error: Any) -> str:
    """Most specific human-readable message in an Odoo error payload"""
    if isinstance(error, dict):
        data = error.get("data")
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        if error.get("message"):
            return str(error["message"])
    elif isinstance(error, str) and error:
        return error
    return "Odoo RPC error"


class OdooService:
    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.url = f"{settings.ODOO_URL}/jsonrpc"
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport
        self.product_fields = list(PRODUCT_FIELDS)
        if settings.ODOO_DISPLAY_FIELD:
            self.product_fields.append(settings.ODOO_DISPLAY_FIELD)

    async def rpc(self, model: str, method: str, args: Optional[list] = None, kwargs: Optional[dict] = None) -> Any:
        """Generic execute_kw call; returns the `result` member of the response"""
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {
                "service": "object",
                "method": "execute_kw",
                "args": [
                    self.settings.ODOO_DB,
                    self.settings.ODOO_UID,
                    self.settings.ODOO_API_KEY,
                    model,
                    method,
                    args or [],
                    kwargs or {},
                ],
            },
            "id": next(_request_ids),
        }
        try:
            response = await post_no_retry(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            logger.error("Odoo %s.%s transport error: %s", model, method, e)
            raise OdooError(f"Odoo request failed: {e}") from e

        if response.status_code >= 400:
            logger.error("Odoo %s.%s -> HTTP %s", model, method, response.status_code)
            raise OdooError(f"Odoo request failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise OdooError("Odoo returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise OdooError("Odoo returned an unexpected response")

        if data.get("error"):
            message = _rpc_error_message(data["error"])
            logger.error("Odoo %s.%s error: %s", model, method, message)
            raise OdooError(message)
        return data.get("result")

    async def search_read(self, model: str, domain: list, fields: List[str], **kwargs: Any) -> List[dict]:
        result = await self.rpc(model, "search_read", [domain, fields], kwargs)
        return result or []

    async def list_catalog_page(self, limit: int = 20, offset: int = 0) -> List[CatalogItem]:
        """
        One page of managed products (default_code starting with ODOO_SKU_PREFIX).
        An empty list means the catalog is exhausted.
        """
        domain = [["default_code", "=ilike", f"{self.settings.ODOO_SKU_PREFIX}%"]]
        rows = await self.search_read(
            PRODUCT_MODEL, domain, self.product_fields, limit=limit, offset=offset, order="id asc"
        )
        items = self._to_items(rows)
        logger.info("Odoo catalog page offset=%s limit=%s: %s product(s)", offset, limit, len(items))
        return items

    async def find_products_by_sku(self, skus: List[str]) -> List[CatalogItem]:
        if not skus:
            return []
        rows = await self.search_read(PRODUCT_MODEL, [["default_code", "in", list(skus)]], self.product_fields)
        return self._to_items(rows)

    async def get_stock(self, skus: List[str]) -> List[StockLine]:
        """qty_available per SKU; SKUs unknown to Odoo are simply absent"""
        if not skus:
            return []
        rows = await self.search_read(PRODUCT_MODEL, [["default_code", "in", list(skus)]], STOCK_FIELDS)
        return [StockLine.from_odoo(r) for r in rows if r.get("default_code")]

    async def get_pricelist_rules(self, pricelist_id: int, products: List[CatalogItem]) -> List[PriceListRule]:
        """
        Rules of the price-list that may apply to `products`: variant, template or
        category scoped to them, plus global rules (no product/template/category).
        """
        product_ids = [p.id for p in products]
        template_ids = sorted({p.template_id for p in products if p.template_id is not None})
        category_ids = sorted({p.category_id for p in products if p.category_id is not None})
        domain = [
            ["pricelist_id", "=", pricelist_id],
            "|", "|", "|",
            ["product_id", "in", product_ids],
            ["product_tmpl_id", "in", template_ids],
            ["categ_id", "in", category_ids],
            "&", "&",
            ["product_id", "=", False],
            ["product_tmpl_id", "=", False],
            ["categ_id", "=", False],
        ]
        rows = await self.search_read(PRICELIST_ITEM_MODEL, domain, RULE_FIELDS, order="id asc")
        return [PriceListRule.from_odoo(r, pricelist_id) for r in rows]

    async def resolve_prices(
        self,
        pricelist_id: int,
        skus: List[str],
        fallback: PriceFallback = PriceFallback.LIST_PRICE,
    ) -> List[ResolvedPrice]:
        """One effective price per SKU from the price-list (see app/services/pricing.py)"""
        if not skus:
            return []
        products = await self.find_products_by_sku(skus)
        if not products:
            return []
        rules = await self.get_pricelist_rules(pricelist_id, products)
        prices = resolve_prices(products, rules, fallback)
        logger.debug(
            "Price-list %s: %s rule(s), %s/%s SKU(s) priced", pricelist_id, len(rules), len(prices), len(skus)
        )
        return prices

    def _to_items(self, rows: List[dict]) -> List[CatalogItem]:
        items = []
        for row in rows:
            item = CatalogItem.from_odoo(row, self.settings.ODOO_DISPLAY_FIELD)
            if not item.sku:
                logger.warning("Odoo product %s has no default_code; skipped", row.get("id"))
                continue
            items.append(item)
        return items

    async def price_report(self, pricelist_id: int, sku: str, policy: PricingPolicy) -> dict:
        """Rules, resolved price and resulting status for one SKU (price-list debugging)"""
        products = await self.find_products_by_sku([sku])
        if not products:
            raise NotFoundError("SKU not found in Odoo", {"sku": sku})
        product = products[0]
        rules = await self.get_pricelist_rules(pricelist_id, [product])
        resolved = resolve_prices([product], rules, policy.fallback)
        price = resolved[0].price if resolved else None
        return {
            "sku": sku,
            "pricelist_id": pricelist_id,
            "policy": policy.describe(),
            "list_price": product.list_price,
            "rules": [
                {"id": r.id, "scope": r.scope.value, "compute_price": r.compute_price, "fixed_price": r.fixed_price}
                for r in rules
            ],
            "resolved_price": price,
            "source": resolved[0].source.value if resolved else None,
            "price_sent": format_price(policy.price_to_send(price)),
            "status": policy.decide_status(price).value,
        }
