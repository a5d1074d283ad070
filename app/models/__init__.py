"""
Domain models for the Odoo -> Shopify bridge.
All model and enum definitions live here for simplicity and to avoid circular imports.
Nothing here is persisted; every pass rebuilds them from the two remote systems.
"""
import enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# Enums
class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class RuleScope(str, enum.Enum):
    VARIANT = "variant"
    TEMPLATE = "template"
    CATEGORY = "category"
    GLOBAL = "global"


class PriceSource(str, enum.Enum):
    VARIANT = "variant"
    TEMPLATE = "template"
    CATEGORY = "category"
    GLOBAL = "global"
    LIST_PRICE = "list_price"


class PriceCheckStatus(str, enum.Enum):
    OK = "ok"
    NO_ODOO_PRICE = "no_odoo_price"
    NO_SHOPIFY_VARIANT = "no_shopify_variant"
    PRICE_MISMATCH = "price_mismatch"


class UpsertMode(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"


def odoo_value(value: Any) -> Any:
    """Odoo returns False for empty scalar fields"""
    return None if value is False else value


def many2one_id(value: Any) -> Optional[int]:
    """Odoo many2one values come back as [id, display_name], a bare id, or False"""
    if value is None or value is False:
        return None
    if isinstance(value, (list, tuple)):
        return int(value[0]) if value else None
    return int(value)


# Odoo side
class CatalogItem(BaseModel):
    id: int
    name: str = ""
    sku: str
    list_price: Optional[float] = None
    description: Optional[str] = None
    display_attr: Optional[str] = None
    template_id: Optional[int] = None
    category_id: Optional[int] = None

    @classmethod
    def from_odoo(cls, row: dict, display_field: str = "") -> "CatalogItem":
        price = odoo_value(row.get("list_price"))
        display = odoo_value(row.get(display_field)) if display_field else None
        if isinstance(display, (list, tuple)):
            # many2one: keep the display name
            display = display[1] if len(display) > 1 else None
        return cls(
            id=row["id"],
            name=odoo_value(row.get("name")) or "",
            sku=(odoo_value(row.get("default_code")) or "").strip(),
            list_price=float(price) if price is not None else None,
            description=odoo_value(row.get("description_sale")),
            display_attr=str(display) if display not in (None, "") else None,
            template_id=many2one_id(row.get("product_tmpl_id")),
            category_id=many2one_id(row.get("categ_id")),
        )


class StockLine(BaseModel):
    sku: str
    qty_available: float = 0

    @classmethod
    def from_odoo(cls, row: dict) -> "StockLine":
        qty = odoo_value(row.get("qty_available")) or 0
        return cls(sku=(row.get("default_code") or "").strip(), qty_available=max(float(qty), 0.0))


class PriceListRule(BaseModel):
    id: Optional[int] = None
    pricelist_id: int
    compute_price: str = "fixed"
    fixed_price: float = 0
    product_id: Optional[int] = None
    template_id: Optional[int] = None
    category_id: Optional[int] = None

    @property
    def scope(self) -> RuleScope:
        if self.product_id is not None:
            return RuleScope.VARIANT
        if self.template_id is not None:
            return RuleScope.TEMPLATE
        if self.category_id is not None:
            return RuleScope.CATEGORY
        return RuleScope.GLOBAL

    @property
    def is_fixed(self) -> bool:
        return self.compute_price == "fixed"

    @classmethod
    def from_odoo(cls, row: dict, pricelist_id: int) -> "PriceListRule":
        return cls(
            id=row.get("id"),
            pricelist_id=many2one_id(row.get("pricelist_id")) or pricelist_id,
            compute_price=odoo_value(row.get("compute_price")) or "",
            fixed_price=float(odoo_value(row.get("fixed_price")) or 0),
            product_id=many2one_id(row.get("product_id")),
            template_id=many2one_id(row.get("product_tmpl_id")),
            category_id=many2one_id(row.get("categ_id")),
        )


class ResolvedPrice(BaseModel):
    sku: str
    price: float
    source: PriceSource


# Shopify side
class ShopifyVariant(BaseModel):
    id: int
    product_id: int
    sku: str
    inventory_item_id: Optional[int] = None
    price: Optional[str] = None


# Sync results
class SyncItem(BaseModel):
    odoo_id: int
    shopify_product_id: Optional[int] = None
    sku: str
    product_status: ProductStatus
    odoo_price: Optional[float] = None
    price_sent: float = 0
    odoo_qty: float = 0


class SyncError(BaseModel):
    odoo_id: Optional[int] = None
    sku: str
    message: str


class SyncResult(BaseModel):
    created: List[SyncItem] = Field(default_factory=list)
    updated: List[SyncItem] = Field(default_factory=list)
    errors: List[SyncError] = Field(default_factory=list)
    warnings: List[dict] = Field(default_factory=list)
    total_processed: int = 0

    def merge(self, other: "SyncResult") -> None:
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.total_processed += other.total_processed

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["created_count"] = len(self.created)
        data["updated_count"] = len(self.updated)
        data["error_count"] = len(self.errors)
        return data
