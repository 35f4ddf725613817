# Overview: Pure invoice totals calculation (discount, GST, CGST/SGST split, half-up rounding).

"""
Invoice Totals Calculator

Per line:
    base      = (quantity_sold - free_quantity) * rate_per_unit
    discount  = base * scheme_discount / 100
    taxable   = max(base - discount, 0)
    gst       = taxable * gst_percentage / 100
    line_total = taxable + gst

Invoice totals are sums of the UNROUNDED line values, rounded half-up to
2 dp once at invoice level. Per-line amounts are rounded for display only.

No database access and no side effects: the caller supplies a catalog of
products keyed by id, so the same function serves preview and creation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from billing.money import ZERO, round_money
from billing.validation import ValidationError, to_decimal, to_int, MAX_AMOUNT

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItemInput:
    product_id: int
    quantity_sold: int
    free_quantity: int = 0
    rate_per_unit: Decimal | None = None
    scheme_discount: Decimal = ZERO


@dataclass(frozen=True)
class LineAmounts:
    product_id: int
    quantity_sold: int
    free_quantity: int
    rate_per_unit: Decimal
    scheme_discount: Decimal
    gst_percentage: int
    base_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    gst_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Totals:
    lines: list[LineAmounts]
    base_amount: Decimal
    total_discount: Decimal
    sub_total: Decimal
    total_gst: Decimal
    total_cgst: Decimal
    total_sgst: Decimal
    net_total: Decimal

    def to_dict(self) -> dict:
        return {
            "base_amount": str(self.base_amount),
            "total_discount": str(self.total_discount),
            "sub_total": str(self.sub_total),
            "total_gst": str(self.total_gst),
            "total_cgst": str(self.total_cgst),
            "total_sgst": str(self.total_sgst),
            "net_total": str(self.net_total),
            "lines": [
                {
                    "product_id": line.product_id,
                    "quantity_sold": line.quantity_sold,
                    "free_quantity": line.free_quantity,
                    "rate_per_unit": str(round_money(line.rate_per_unit)),
                    "scheme_discount": str(line.scheme_discount),
                    "gst_percentage": line.gst_percentage,
                    "taxable_amount": str(round_money(line.taxable_amount)),
                    "gst_amount": str(round_money(line.gst_amount)),
                    "line_total": str(round_money(line.line_total)),
                }
                for line in self.lines
            ],
        }


def _pick(raw: dict, *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def parse_line_items(raw_items: Any) -> list[LineItemInput]:
    """
    Validate client line items. Accepts camelCase (productId, quantitySold,
    freeQuantity, ratePerUnit, schemeDiscount) or snake_case keys.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items: list[LineItemInput] = []
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"item {idx} must be an object")

        product_id = _pick(raw, "product_id", "productId")
        if product_id is None:
            raise ValidationError(f"item {idx}: product_id is required")
        product_id = to_int(product_id, "product_id")

        quantity = _pick(raw, "quantity_sold", "quantitySold", "quantity")
        if quantity is None:
            raise ValidationError(f"item {idx}: quantity_sold is required")
        quantity = to_int(quantity, "quantity_sold")
        if quantity <= 0:
            raise ValidationError(f"item {idx}: quantity_sold must be > 0")

        free = _pick(raw, "free_quantity", "freeQuantity")
        free = 0 if free is None else to_int(free, "free_quantity")
        if free < 0:
            raise ValidationError(f"item {idx}: free_quantity must be >= 0")
        if free > quantity:
            raise ValidationError(f"item {idx}: free_quantity cannot exceed quantity_sold")

        rate = _pick(raw, "rate_per_unit", "ratePerUnit")
        if rate is not None:
            rate = to_decimal(rate, "rate_per_unit")
            if rate < 0 or rate > MAX_AMOUNT:
                raise ValidationError(f"item {idx}: rate_per_unit out of range")

        discount = _pick(raw, "scheme_discount", "schemeDiscount")
        discount = ZERO if discount is None else to_decimal(discount, "scheme_discount")
        if discount < 0 or discount > HUNDRED:
            raise ValidationError(f"item {idx}: scheme_discount must be between 0 and 100")

        items.append(LineItemInput(
            product_id=product_id,
            quantity_sold=quantity,
            free_quantity=free,
            rate_per_unit=rate,
            scheme_discount=discount,
        ))
    return items


def compute_line(item: LineItemInput, product: Any) -> LineAmounts:
    rate = item.rate_per_unit if item.rate_per_unit is not None else Decimal(product.rate)
    gst_percentage = int(product.gst_percentage or 0)

    base = Decimal(item.quantity_sold - item.free_quantity) * rate
    discount = base * item.scheme_discount / HUNDRED
    taxable = max(base - discount, ZERO)
    gst = taxable * Decimal(gst_percentage) / HUNDRED

    return LineAmounts(
        product_id=item.product_id,
        quantity_sold=item.quantity_sold,
        free_quantity=item.free_quantity,
        rate_per_unit=rate,
        scheme_discount=item.scheme_discount,
        gst_percentage=gst_percentage,
        base_amount=base,
        discount_amount=base - taxable,
        taxable_amount=taxable,
        gst_amount=gst,
        line_total=taxable + gst,
    )


def compute_totals(items: list[LineItemInput], catalog: Mapping[int, Any]) -> Totals:
    """
    Compute invoice totals. `catalog` maps product_id to an object exposing
    `rate` and `gst_percentage` (a Product row works).
    """
    if not items:
        raise ValidationError("items must be a non-empty list")

    lines: list[LineAmounts] = []
    for item in items:
        if item.quantity_sold <= 0:
            raise ValidationError("quantity_sold must be > 0")
        if item.free_quantity < 0 or item.free_quantity > item.quantity_sold:
            raise ValidationError("free_quantity must be between 0 and quantity_sold")
        if item.scheme_discount < 0 or item.scheme_discount > HUNDRED:
            raise ValidationError("scheme_discount must be between 0 and 100")
        product = catalog.get(item.product_id)
        if product is None:
            raise ValidationError(f"Product {item.product_id} not found")
        lines.append(compute_line(item, product))

    base_amount = sum((line.base_amount for line in lines), ZERO)
    discount = sum((line.discount_amount for line in lines), ZERO)
    taxable = sum((line.taxable_amount for line in lines), ZERO)
    gst = sum((line.gst_amount for line in lines), ZERO)

    total_gst = round_money(gst)
    total_cgst = round_money(total_gst / 2)

    return Totals(
        lines=lines,
        base_amount=round_money(base_amount),
        total_discount=round_money(discount),
        sub_total=round_money(taxable),
        total_gst=total_gst,
        total_cgst=total_cgst,
        total_sgst=total_gst - total_cgst,
        net_total=round_money(taxable + gst),
    )
