"""Invoice totals calculation: pure function, no database."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from billing.services.invoice_calculator import (
    LineItemInput,
    compute_totals,
    parse_line_items,
)
from billing.validation import ValidationError


def _catalog(**products):
    return {
        int(pid.lstrip("p")): SimpleNamespace(rate=Decimal(rate), gst_percentage=gst)
        for pid, (rate, gst) in products.items()
    }


class TestComputeTotals:
    def test_scheme_discount_and_free_quantity(self):
        """5 sold, 1 free, 5% scheme discount on 120.00 at 12% GST."""
        items = [LineItemInput(product_id=1, quantity_sold=5, free_quantity=1,
                               rate_per_unit=Decimal("120"), scheme_discount=Decimal("5"))]
        totals = compute_totals(items, _catalog(p1=("120.00", 12)))

        assert totals.sub_total == Decimal("456.00")
        assert totals.total_gst == Decimal("54.72")
        assert totals.net_total == Decimal("510.72")
        assert totals.lines[0].line_total == Decimal("510.72")

    def test_rate_defaults_to_product_rate(self):
        items = [LineItemInput(product_id=1, quantity_sold=2)]
        totals = compute_totals(items, _catalog(p1=("99.50", 5)))

        assert totals.sub_total == Decimal("199.00")
        assert totals.total_gst == Decimal("9.95")
        assert totals.net_total == Decimal("208.95")

    def test_rounding_applied_once_at_invoice_level(self):
        """Three lines of 0.335 GST each: per-line rounding would give 1.02."""
        items = [
            LineItemInput(product_id=1, quantity_sold=1, rate_per_unit=Decimal("6.70")),
            LineItemInput(product_id=1, quantity_sold=1, rate_per_unit=Decimal("6.70")),
            LineItemInput(product_id=1, quantity_sold=1, rate_per_unit=Decimal("6.70")),
        ]
        totals = compute_totals(items, _catalog(p1=("6.70", 5)))

        assert totals.total_gst == Decimal("1.01")
        assert totals.net_total == Decimal("21.11")

    def test_half_up_rounding(self):
        items = [LineItemInput(product_id=1, quantity_sold=1, rate_per_unit=Decimal("0.10"))]
        totals = compute_totals(items, _catalog(p1=("0.10", 5)))

        # 0.005 GST rounds up, not to even
        assert totals.total_gst == Decimal("0.01")

    def test_cgst_sgst_halves_sum_to_gst(self):
        items = [LineItemInput(product_id=1, quantity_sold=1, rate_per_unit=Decimal("10.05"))]
        totals = compute_totals(items, _catalog(p1=("10.05", 18)))

        assert totals.total_cgst + totals.total_sgst == totals.total_gst

    def test_all_free_line_has_zero_value(self):
        items = [LineItemInput(product_id=1, quantity_sold=3, free_quantity=3)]
        totals = compute_totals(items, _catalog(p1=("50.00", 12)))

        assert totals.net_total == Decimal("0.00")

    def test_net_total_matches_sum_of_line_totals(self):
        catalog = _catalog(p1=("12.34", 5), p2=("99.99", 12), p3=("0.33", 18), p4=("1234.56", 28))
        items = [
            LineItemInput(product_id=1, quantity_sold=7, free_quantity=2, scheme_discount=Decimal("3.5")),
            LineItemInput(product_id=2, quantity_sold=3, scheme_discount=Decimal("12.25")),
            LineItemInput(product_id=3, quantity_sold=101, free_quantity=1),
            LineItemInput(product_id=4, quantity_sold=1, scheme_discount=Decimal("100")),
            LineItemInput(product_id=2, quantity_sold=11, free_quantity=4, rate_per_unit=Decimal("87.13")),
        ]
        totals = compute_totals(items, catalog)

        line_sum = sum((line.line_total for line in totals.lines), Decimal("0"))
        assert abs(totals.net_total - line_sum) <= Decimal("0.01")
        assert abs(totals.net_total - (totals.sub_total + totals.total_gst)) <= Decimal("0.01")

    def test_missing_product_raises(self):
        items = [LineItemInput(product_id=42, quantity_sold=1)]
        with pytest.raises(ValidationError):
            compute_totals(items, _catalog(p1=("10.00", 5)))

    def test_does_not_mutate_inputs(self):
        catalog = _catalog(p1=("10.00", 5))
        items = [LineItemInput(product_id=1, quantity_sold=2)]
        first = compute_totals(items, catalog)
        second = compute_totals(items, catalog)

        assert first.net_total == second.net_total
        assert catalog[1].rate == Decimal("10.00")


class TestParseLineItems:
    def test_accepts_camel_case(self):
        items = parse_line_items([{
            "productId": 1, "quantitySold": 5, "freeQuantity": 1,
            "ratePerUnit": 120, "schemeDiscount": 5,
        }])

        assert items[0].product_id == 1
        assert items[0].quantity_sold == 5
        assert items[0].free_quantity == 1
        assert items[0].rate_per_unit == Decimal("120")
        assert items[0].scheme_discount == Decimal("5")

    def test_float_rate_keeps_decimal_precision(self):
        items = parse_line_items([{"product_id": 1, "quantity_sold": 1, "rate_per_unit": 0.1}])
        assert items[0].rate_per_unit == Decimal("0.1")

    @pytest.mark.parametrize("raw", [
        {"product_id": 1, "quantity_sold": 0},
        {"product_id": 1, "quantity_sold": -2},
        {"product_id": 1, "quantity_sold": 2, "free_quantity": 3},
        {"product_id": 1, "quantity_sold": 2, "free_quantity": -1},
        {"product_id": 1, "quantity_sold": 2, "scheme_discount": 101},
        {"product_id": 1, "quantity_sold": 2, "scheme_discount": -1},
        {"product_id": 1, "quantity_sold": 1.5},
        {"quantity_sold": 1},
        {"product_id": 1},
    ])
    def test_rejects_invalid_line(self, raw):
        with pytest.raises(ValidationError):
            parse_line_items([raw])

    @pytest.mark.parametrize("raw", [None, [], {}, "items", [1]])
    def test_rejects_invalid_items(self, raw):
        with pytest.raises(ValidationError):
            parse_line_items(raw)
