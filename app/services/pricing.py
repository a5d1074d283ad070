"""
Price resolution and publish-status rules.

Resolution order for one SKU inside a price-list (fixed-price rules only):
    variant rule -> template rule -> category rule -> last global rule -> fallback
The fallback is either the product's list_price or "no price" (SKU omitted),
chosen by PriceFallback. Percentage/formula rules are ignored, never approximated.

Status: a price is valid when it is finite and strictly above the policy minimum
(0 and 1 are placeholders in Odoo, not prices). StatusPolicy decides whether
stock alone is enough to publish.
"""
import enum
import logging
import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from app.exceptions import ConfigurationError
from app.models import (
    CatalogItem,
    PriceListRule,
    PriceSource,
    ProductStatus,
    ResolvedPrice,
    RuleScope,
)

logger = logging.getLogger(__name__)


class PriceFallback(str, enum.Enum):
    LIST_PRICE = "list_price"
    OMIT = "omit"


class StatusPolicy(str, enum.Enum):
    PRICE_ONLY = "price_only"
    PRICE_OR_STOCK = "price_or_stock"


_NUMERIC_JUNK = re.compile(r"[^0-9,.\-+eE]")


def normalize_price(value: Any) -> float:
    """
    Parse a price coming from outside (Shopify strings, CSV, user input).
    "1.234,56" and "1234,56" are read as European decimals, "1234.56" as plain.
    Anything unparsable or non-finite becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    text = _NUMERIC_JUNK.sub("", str(value).strip())
    if not text:
        return 0.0
    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def format_price(value: float) -> str:
    """Shopify price string: rounded half-up to a whole number, no decimals"""
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return "0"
    if not number.is_finite():
        return "0"
    return str(int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def resolve_prices(
    products: Iterable[CatalogItem],
    rules: Iterable[PriceListRule],
    fallback: PriceFallback = PriceFallback.LIST_PRICE,
) -> List[ResolvedPrice]:
    """
    Apply the fallback chain to each product. Output keeps the order of `products`.
    Within one bucket a later rule replaces an earlier one for the same key;
    among global rules the last one seen wins.
    """
    by_product: Dict[int, float] = {}
    by_template: Dict[int, float] = {}
    by_category: Dict[int, float] = {}
    global_price: Optional[float] = None

    for rule in rules:
        if not rule.is_fixed:
            continue
        scope = rule.scope
        if scope is RuleScope.VARIANT:
            by_product[rule.product_id] = rule.fixed_price
        elif scope is RuleScope.TEMPLATE:
            by_template[rule.template_id] = rule.fixed_price
        elif scope is RuleScope.CATEGORY:
            by_category[rule.category_id] = rule.fixed_price
        else:
            global_price = rule.fixed_price

    result: List[ResolvedPrice] = []
    for p in products:
        if p.id in by_product:
            result.append(ResolvedPrice(sku=p.sku, price=by_product[p.id], source=PriceSource.VARIANT))
        elif p.template_id is not None and p.template_id in by_template:
            result.append(ResolvedPrice(sku=p.sku, price=by_template[p.template_id], source=PriceSource.TEMPLATE))
        elif p.category_id is not None and p.category_id in by_category:
            result.append(ResolvedPrice(sku=p.sku, price=by_category[p.category_id], source=PriceSource.CATEGORY))
        elif global_price is not None:
            result.append(ResolvedPrice(sku=p.sku, price=global_price, source=PriceSource.GLOBAL))
        elif fallback is PriceFallback.LIST_PRICE and p.list_price is not None:
            result.append(ResolvedPrice(sku=p.sku, price=p.list_price, source=PriceSource.LIST_PRICE))
        else:
            logger.debug("No price for %s in price-list (fallback=%s)", p.sku, fallback.value)
    return result


class PricingPolicy:
    """Named, overridable business rules for price validity and publish status"""

    def __init__(
        self,
        status_policy: StatusPolicy = StatusPolicy.PRICE_ONLY,
        fallback: PriceFallback = PriceFallback.LIST_PRICE,
        min_valid_price: float = 1.0,
    ):
        self.status_policy = status_policy
        self.fallback = fallback
        self.min_valid_price = min_valid_price

    @classmethod
    def from_settings(cls, settings) -> "PricingPolicy":
        try:
            status_policy = StatusPolicy(settings.SYNC_STATUS_POLICY)
        except ValueError:
            raise ConfigurationError(
                f"SYNC_STATUS_POLICY must be one of {[p.value for p in StatusPolicy]}, "
                f"got {settings.SYNC_STATUS_POLICY!r}"
            )
        try:
            fallback = PriceFallback(settings.SYNC_PRICE_FALLBACK)
        except ValueError:
            raise ConfigurationError(
                f"SYNC_PRICE_FALLBACK must be one of {[f.value for f in PriceFallback]}, "
                f"got {settings.SYNC_PRICE_FALLBACK!r}"
            )
        return cls(status_policy, fallback, settings.SYNC_MIN_VALID_PRICE)

    def is_valid_price(self, price: Optional[float]) -> bool:
        if price is None:
            return False
        try:
            number = float(price)
        except (TypeError, ValueError):
            return False
        return math.isfinite(number) and number > self.min_valid_price

    def decide_status(self, price: Optional[float], stock_qty: float = 0) -> ProductStatus:
        if self.is_valid_price(price):
            return ProductStatus.ACTIVE
        if self.status_policy is StatusPolicy.PRICE_OR_STOCK and (stock_qty or 0) > 0:
            return ProductStatus.ACTIVE
        return ProductStatus.DRAFT

    def price_to_send(self, price: Optional[float]) -> float:
        """Placeholder prices are never pushed as if they were real"""
        return float(price) if self.is_valid_price(price) else 0.0

    def describe(self) -> dict:
        return {
            "status_policy": self.status_policy.value,
            "price_fallback": self.fallback.value,
            "min_valid_price": self.min_valid_price,
        }
