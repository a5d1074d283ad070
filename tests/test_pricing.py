"""
Price resolution and status policy tests
"""
import pytest

from app.exceptions import ConfigurationError
from app.models import CatalogItem, PriceListRule, PriceSource, ProductStatus
from app.services.pricing import (
    PriceFallback,
    PricingPolicy,
    StatusPolicy,
    format_price,
    normalize_price,
    resolve_prices,
)


def product(id=1, sku="PAY001", list_price=45.0, template_id=10, category_id=100):
    return CatalogItem(id=id, sku=sku, name=sku, list_price=list_price, template_id=template_id, category_id=category_id)


def rule(fixed_price, compute_price="fixed", **scope):
    return PriceListRule(pricelist_id=3, compute_price=compute_price, fixed_price=fixed_price, **scope)


class TestNormalizePrice:
    @pytest.mark.parametrize("raw", ["1.234,56", "1234,56", "1234.56"])
    def test_decimal_conventions(self, raw):
        assert normalize_price(raw) == pytest.approx(1234.56)

    def test_currency_symbols_and_spaces(self):
        assert normalize_price(" $ 99.90 ") == pytest.approx(99.9)

    @pytest.mark.parametrize("raw", [None, "", "abc", "nan", "inf", float("nan"), True])
    def test_unparsable_is_zero(self, raw):
        assert normalize_price(raw) == 0.0

    def test_numbers_pass_through(self):
        assert normalize_price(120) == 120.0
        assert normalize_price(45.5) == 45.5


class TestFormatPrice:
    def test_rounds_half_up(self):
        assert format_price(119.5) == "120"
        assert format_price(119.49) == "119"
        assert format_price(0.5) == "1"

    def test_whole_number_string(self):
        assert format_price(120.0) == "120"
        assert format_price(0) == "0"

    def test_non_finite(self):
        assert format_price(float("nan")) == "0"


class TestResolvePrices:
    def test_variant_rule_beats_everything(self):
        p = product()
        rules = [
            rule(300, category_id=100),
            rule(200, template_id=10),
            rule(400),
            rule(120, product_id=1),
        ]
        [resolved] = resolve_prices([p], rules)
        assert resolved.price == 120
        assert resolved.source == PriceSource.VARIANT

    def test_template_beats_category_and_global(self):
        [resolved] = resolve_prices([product()], [rule(300, category_id=100), rule(200, template_id=10), rule(400)])
        assert (resolved.price, resolved.source) == (200, PriceSource.TEMPLATE)

    def test_category_rule_when_only_category_matches(self):
        [resolved] = resolve_prices([product()], [rule(300, category_id=100), rule(999, template_id=11)])
        assert (resolved.price, resolved.source) == (300, PriceSource.CATEGORY)

    def test_last_global_rule_wins(self):
        [resolved] = resolve_prices([product()], [rule(400), rule(410)])
        assert (resolved.price, resolved.source) == (410, PriceSource.GLOBAL)

    def test_non_fixed_rules_never_price(self):
        rules = [
            rule(50, compute_price="percentage", product_id=1),
            rule(60, compute_price="formula", template_id=10),
        ]
        [resolved] = resolve_prices([product()], rules, PriceFallback.LIST_PRICE)
        assert (resolved.price, resolved.source) == (45.0, PriceSource.LIST_PRICE)
        assert resolve_prices([product()], rules, PriceFallback.OMIT) == []

    def test_fallback_list_price(self):
        [resolved] = resolve_prices([product(list_price=45.0)], [], PriceFallback.LIST_PRICE)
        assert resolved.price == 45.0
        assert resolved.source == PriceSource.LIST_PRICE

    def test_fallback_omit(self):
        assert resolve_prices([product(list_price=45.0)], [], PriceFallback.OMIT) == []

    def test_rules_for_other_products_ignored(self):
        products = [product(id=1, sku="PAY001"), product(id=2, sku="PAY002", template_id=20, category_id=200)]
        resolved = resolve_prices(products, [rule(120, product_id=2)], PriceFallback.OMIT)
        assert [(r.sku, r.price) for r in resolved] == [("PAY002", 120)]

    def test_order_follows_products(self):
        products = [product(id=2, sku="PAY002"), product(id=1, sku="PAY001")]
        resolved = resolve_prices(products, [])
        assert [r.sku for r in resolved] == ["PAY002", "PAY001"]


class TestPricingPolicy:
    @pytest.mark.parametrize("price,valid", [(None, False), (0, False), (1, False), (1.01, True), (45, True),
                                             (float("inf"), False), ("abc", False)])
    def test_valid_price(self, price, valid):
        assert PricingPolicy().is_valid_price(price) is valid

    def test_price_only_ignores_stock(self):
        policy = PricingPolicy(StatusPolicy.PRICE_ONLY)
        assert policy.decide_status(45) == ProductStatus.ACTIVE
        assert policy.decide_status(1, stock_qty=10) == ProductStatus.DRAFT
        assert policy.decide_status(None) == ProductStatus.DRAFT

    def test_price_or_stock(self):
        policy = PricingPolicy(StatusPolicy.PRICE_OR_STOCK)
        assert policy.decide_status(None, stock_qty=3) == ProductStatus.ACTIVE
        assert policy.decide_status(0, stock_qty=0) == ProductStatus.DRAFT

    def test_price_to_send_zero_for_placeholders(self):
        policy = PricingPolicy()
        assert policy.price_to_send(1) == 0.0
        assert policy.price_to_send(None) == 0.0
        assert policy.price_to_send(120) == 120.0

    def test_custom_minimum(self):
        policy = PricingPolicy(min_valid_price=10)
        assert not policy.is_valid_price(10)
        assert policy.is_valid_price(10.5)

    def test_from_settings(self, make_settings):
        settings = make_settings(SYNC_STATUS_POLICY="price_or_stock", SYNC_PRICE_FALLBACK="omit", SYNC_MIN_VALID_PRICE="5")
        policy = PricingPolicy.from_settings(settings)
        assert policy.status_policy is StatusPolicy.PRICE_OR_STOCK
        assert policy.fallback is PriceFallback.OMIT
        assert policy.min_valid_price == 5.0

    def test_from_settings_rejects_unknown_values(self, make_settings):
        with pytest.raises(ConfigurationError):
            PricingPolicy.from_settings(make_settings(SYNC_STATUS_POLICY="always"))
        with pytest.raises(ConfigurationError):
            PricingPolicy.from_settings(make_settings(SYNC_PRICE_FALLBACK="cost"))
