"""
Shared fixtures: settings from a clean environment, an in-memory Odoo catalog and a
fake Shopify store served through httpx.MockTransport.
"""
import copy
import itertools
import json
import re
from typing import Dict, List, Optional

import httpx
import pytest

from app.config import Settings
from app.exceptions import OdooError
from app.models import CatalogItem, PriceListRule, StockLine
from app.services.http_client import RetryPolicy
from app.services.pricing import PriceFallback, resolve_prices
from app.services.shopify_service import ShopifyService
from app.services.sync_engine import SyncEngine

BASE_ENV = {
    "ENV": "DEV",
    "ODOO_URL": "https://odoo.test",
    "ODOO_DB": "paytton",
    "ODOO_UID": "2",
    "ODOO_API_KEY": "odoo-key",
    "ODOO_PRICELIST_ID": "3",
    "SHOPIFY_STORE_DOMAIN": "paytton-test",
    "SHOPIFY_ACCESS_TOKEN": "shpat_test",
    "SHOPIFY_LOCATION_ID": "777",
}

# Anything the developer's shell or .env might carry that changes behaviour
MANAGED_ENV = list(BASE_ENV) + [
    "ODOO_SKU_PREFIX", "ODOO_DISPLAY_FIELD",
    "SHOPIFY_API_VERSION", "SHOPIFY_VENDOR", "SHOPIFY_METAFIELD_NAMESPACE", "SHOPIFY_METAFIELD_KEY",
    "SHOPIFY_MAX_RETRIES", "SHOPIFY_RETRY_AFTER_DEFAULT", "SHOPIFY_WRITE_DELAY_MS",
    "SYNC_PAGE_SIZE", "SYNC_MAX_OFFSET", "SYNC_STATUS_POLICY", "SYNC_PRICE_FALLBACK", "SYNC_MIN_VALID_PRICE",
    "HTTP_TIMEOUT_SECONDS", "LOG_LEVEL", "ALLOWED_ORIGINS", "PORT", "HOST",
    "RENDER", "VERCEL", "DYNO",
]


@pytest.fixture
def make_settings(monkeypatch):
    """Build Settings from BASE_ENV plus overrides; a value of None unsets the variable"""
    def _make(**overrides):
        for name in MANAGED_ENV:
            monkeypatch.delenv(name, raising=False)
        env = {**BASE_ENV, **overrides}
        for name, value in env.items():
            if value is None:
                monkeypatch.delenv(name, raising=False)
            else:
                monkeypatch.setenv(name, str(value))
        return Settings()
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


class FakeOdoo:
    """In-memory stand-in for OdooService with the same async surface"""

    def __init__(self):
        self.products: List[CatalogItem] = []
        self.rules: List[PriceListRule] = []
        self.stock: Dict[str, float] = {}
        self.pages: List[tuple] = []
        self.fail_prices = None
        self.fail_pages_from: Optional[int] = None

    def add(self, sku: str, list_price: Optional[float] = None, qty: float = 0, **fields) -> CatalogItem:
        item = CatalogItem(id=fields.pop("id", len(self.products) + 1), sku=sku, name=fields.pop("name", sku),
                           list_price=list_price, **fields)
        self.products.append(item)
        self.stock[sku] = qty
        return item

    def add_rule(self, fixed_price: float, compute_price: str = "fixed", **scope) -> PriceListRule:
        rule = PriceListRule(id=len(self.rules) + 1, pricelist_id=3, compute_price=compute_price,
                             fixed_price=fixed_price, **scope)
        self.rules.append(rule)
        return rule

    async def list_catalog_page(self, limit: int = 20, offset: int = 0) -> List[CatalogItem]:
        self.pages.append((limit, offset))
        if self.fail_pages_from is not None and offset >= self.fail_pages_from:
            raise OdooError("Odoo timed out")
        managed = sorted((p for p in self.products if p.sku.upper().startswith("PAY")), key=lambda p: p.id)
        return managed[offset:offset + limit]

    async def find_products_by_sku(self, skus: List[str]) -> List[CatalogItem]:
        return [p for p in self.products if p.sku in skus]

    async def get_stock(self, skus: List[str]) -> List[StockLine]:
        return [StockLine(sku=p.sku, qty_available=max(self.stock.get(p.sku, 0), 0)) for p in self.products if p.sku in skus]

    async def resolve_prices(self, pricelist_id: int, skus: List[str], fallback=PriceFallback.LIST_PRICE):
        if self.fail_prices:
            raise self.fail_prices
        return resolve_prices(await self.find_products_by_sku(skus), self.rules, fallback)


class FakeShopifyStore:
    """
    Just enough of the Admin REST API for the bridge: products, variants,
    product metafields and inventory_levels/set. Every request is logged.
    """

    def __init__(self, api_version: str = "2024-01"):
        self.prefix = f"/admin/api/{api_version}/"
        self.products: Dict[int, dict] = {}
        self.metafields: Dict[int, List[dict]] = {}
        self.inventory: Dict[int, int] = {}
        self.requests: List[tuple] = []
        self.bodies: List[dict] = []
        # (method, path regex) -> status code returned instead of handling
        self.failures: Dict[tuple, int] = {}
        self._ids = itertools.count(1001)

    def add_product(self, sku: str, price: str = "0", status: str = "draft") -> dict:
        product_id = next(self._ids)
        product = {
            "id": product_id,
            "title": sku,
            "status": status,
            "variants": [{
                "id": next(self._ids),
                "product_id": product_id,
                "sku": sku,
                "price": price,
                "inventory_item_id": next(self._ids),
            }],
        }
        self.products[product_id] = product
        return product

    def fail(self, method: str, pattern: str, status: int = 500) -> None:
        self.failures[(method, pattern)] = status

    def variants(self, sku: str) -> List[dict]:
        return [v for p in self.products.values() for v in p["variants"] if v["sku"] == sku]

    def product_of(self, sku: str) -> dict:
        variant = self.variants(sku)[0]
        return self.products[variant["product_id"]]

    def writes(self) -> List[tuple]:
        return [r for r in self.requests if r[0] != "GET"]

    def _variant_by_id(self, variant_id: int) -> Optional[dict]:
        for product in self.products.values():
            for variant in product["variants"]:
                if variant["id"] == variant_id:
                    return variant
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path[len(self.prefix):]
        self.requests.append((method, path))
        body = json.loads(request.content) if request.content else {}
        self.bodies.append(body)

        for (fail_method, pattern), status in self.failures.items():
            if fail_method == method and re.fullmatch(pattern, path):
                return httpx.Response(status, json={"errors": "failure injected"})

        if path == "products.json" and method == "GET":
            limit = int(request.url.params.get("limit", 50))
            since_id = int(request.url.params.get("since_id", 0))
            page = [copy.deepcopy(self.products[pid]) for pid in sorted(self.products) if pid > since_id][:limit]
            return httpx.Response(200, json={"products": page})

        if path == "products.json" and method == "POST":
            data = body["product"]
            product_id = next(self._ids)
            variants = []
            for v in data.get("variants") or []:
                variants.append({**v, "id": next(self._ids), "product_id": product_id, "inventory_item_id": next(self._ids)})
            product = {**data, "id": product_id, "variants": variants}
            self.products[product_id] = product
            return httpx.Response(201, json={"product": copy.deepcopy(product)})

        match = re.fullmatch(r"products/(\d+)\.json", path)
        if match and method == "PUT":
            product = self.products.get(int(match.group(1)))
            if product is None:
                return httpx.Response(404, json={"errors": "Not Found"})
            product.update({k: v for k, v in body["product"].items() if k != "id"})
            return httpx.Response(200, json={"product": copy.deepcopy(product)})

        match = re.fullmatch(r"variants/(\d+)\.json", path)
        if match:
            variant = self._variant_by_id(int(match.group(1)))
            if variant is None:
                return httpx.Response(404, json={"errors": "Not Found"})
            if method == "PUT":
                variant.update({k: v for k, v in body["variant"].items() if k != "id"})
            return httpx.Response(200, json={"variant": copy.deepcopy(variant)})

        match = re.fullmatch(r"products/(\d+)/metafields\.json", path)
        if match:
            product_id = int(match.group(1))
            fields = self.metafields.setdefault(product_id, [])
            if method == "GET":
                return httpx.Response(200, json={"metafields": copy.deepcopy(fields)})
            metafield = {**body["metafield"], "id": next(self._ids), "owner_id": product_id}
            fields.append(metafield)
            return httpx.Response(201, json={"metafield": metafield})

        match = re.fullmatch(r"metafields/(\d+)\.json", path)
        if match and method == "PUT":
            for fields in self.metafields.values():
                for metafield in fields:
                    if metafield["id"] == int(match.group(1)):
                        metafield["value"] = body["metafield"]["value"]
                        return httpx.Response(200, json={"metafield": metafield})
            return httpx.Response(404, json={"errors": "Not Found"})

        if path == "inventory_levels/set.json" and method == "POST":
            self.inventory[body["inventory_item_id"]] = body["available"]
            return httpx.Response(200, json={"inventory_level": {**body, "updated_at": "2026-01-01T00:00:00Z"}})

        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture
def fake_odoo():
    return FakeOdoo()


@pytest.fixture
def store():
    return FakeShopifyStore()


@pytest.fixture
def sleeps():
    """Every delay requested by retries or write pacing, in order"""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def shopify(settings, store, fake_sleep):
    return ShopifyService(
        settings,
        transport=httpx.MockTransport(store.handle),
        retry_policy=RetryPolicy(max_retries=3, default_delay=2.0, sleep=fake_sleep),
    )


@pytest.fixture
def engine(settings, fake_odoo, shopify, fake_sleep):
    return SyncEngine(fake_odoo, shopify, settings, sleep=fake_sleep)
