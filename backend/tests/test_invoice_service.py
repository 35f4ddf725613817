"""Invoice lifecycle: creation, status transitions, cancellation and rollback."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from billing.extensions import db
from billing.models import ActivityEvent, BalanceEntry, Invoice, InvoiceLine, StockMovement
from billing.services import invoice_service, payment_service
from billing.services.inventory_service import InsufficientStockError
from billing.services.invoice_service import ReversalError
from billing.services.lifecycle_service import LifecycleError
from billing.services.reconciliation_service import (
    customer_ledger_balance,
    product_ledger_quantity,
)
from billing.validation import NotFoundError, ValidationError


SCENARIO_LINE = {
    "productId": None,
    "quantitySold": 5,
    "ratePerUnit": 120,
    "freeQuantity": 1,
    "schemeDiscount": 5,
}


def _line(product, **overrides):
    line = dict(SCENARIO_LINE, productId=product.id)
    line.update(overrides)
    return line


def _refresh(*objs):
    for obj in objs:
        db.session.refresh(obj)


class TestCreateInvoice:
    def test_credit_invoice_scenario(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit", actor="cashier")
        _refresh(product, customer)

        assert invoice.status == "DRAFT"
        assert invoice.payment_type == "CREDIT"
        assert invoice.sub_total == Decimal("456.00")
        assert invoice.total_gst == Decimal("54.72")
        assert invoice.net_total == Decimal("510.72")
        assert invoice.total_cgst + invoice.total_sgst == invoice.total_gst
        assert product.current_stock_qty == 95
        assert Decimal(customer.outstanding_balance) == Decimal("510.72")

        entry = db_session.query(BalanceEntry).filter_by(invoice_id=invoice.id).one()
        assert entry.kind == "INVOICE"
        assert entry.amount == Decimal("510.72")
        assert entry.exclude_from_analytics is False

    def test_line_snapshot(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        line = db_session.query(InvoiceLine).filter_by(invoice_id=invoice.id).one()
        assert line.product_name == "Paracetamol 500mg"
        assert line.quantity_sold == 5
        assert line.free_quantity == 1
        assert line.taxable_amount == Decimal("456.00")
        assert line.line_total == Decimal("510.72")

        movement = db_session.query(StockMovement).filter_by(invoice_id=invoice.id).one()
        assert movement.quantity_delta == -5
        assert movement.invoice_line_id == line.id

    def test_cash_invoice_does_not_touch_balance(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Cash")
        _refresh(product, customer)

        assert invoice.payment_type == "CASH"
        assert invoice.payment_status == "PAID"
        assert product.current_stock_qty == 95
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")
        assert db_session.query(BalanceEntry).count() == 0

    def test_payment_type_defaults_to_customer(self, db_session, product, make_customer):
        cash_customer = make_customer(payment_type="CASH")

        invoice = invoice_service.create_invoice(cash_customer.id, [_line(product)])

        assert invoice.payment_type == "CASH"

    def test_invoice_numbers_are_sequential(self, db_session, product, customer):
        first = invoice_service.create_invoice(customer.id, [_line(product, quantitySold=1, freeQuantity=0)], "Cash")
        second = invoice_service.create_invoice(customer.id, [_line(product, quantitySold=1, freeQuantity=0)], "Cash")

        prefix, year, number = first.invoice_number.split("-")
        assert prefix == "INV"
        assert number == "0001"
        assert second.invoice_number == f"INV-{year}-0002"

    def test_customer_stats_updated(self, db_session, product, customer):
        invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        _refresh(customer)

        assert customer.invoice_count == 1
        assert Decimal(customer.total_purchases) == Decimal("510.72")
        assert customer.last_invoice_at is not None

    def test_records_activity(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit", actor="cashier")

        event = db_session.query(ActivityEvent).filter_by(event_type="invoice.created").one()
        assert event.invoice_id == invoice.id
        assert event.actor == "cashier"

    def test_insufficient_stock_scenario(self, db_session, make_product, customer):
        product = make_product(stock=3)

        with pytest.raises(InsufficientStockError):
            invoice_service.create_invoice(customer.id, [_line(product, quantitySold=10, freeQuantity=0)], "Credit")
        _refresh(product, customer)

        assert product.current_stock_qty == 3
        assert db_session.query(BalanceEntry).count() == 0
        assert db_session.query(Invoice).count() == 0

    def test_second_line_failure_rolls_back_first(self, db_session, make_product, customer):
        plenty = make_product(stock=50)
        scarce = make_product(stock=1)

        with pytest.raises(InsufficientStockError):
            invoice_service.create_invoice(
                customer.id,
                [
                    _line(plenty, quantitySold=10, freeQuantity=0),
                    _line(scarce, quantitySold=2, freeQuantity=0),
                ],
                "Credit",
            )
        _refresh(plenty, scarce, customer)

        assert plenty.current_stock_qty == 50
        assert scarce.current_stock_qty == 1
        assert db_session.query(StockMovement).filter_by(reason="SALE").count() == 0
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(InvoiceLine).count() == 0
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")

    def test_failure_after_deduction_rolls_back(self, db_session, product, customer):
        """A balance posting failure undoes stock already deducted."""
        with patch(
            "billing.services.invoice_service.balance_service.post",
            side_effect=ValidationError("posting failed"),
        ):
            with pytest.raises(ValidationError):
                invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        _refresh(product, customer)

        assert product.current_stock_qty == 100
        assert product_ledger_quantity(product.id) == 100
        assert db_session.query(Invoice).count() == 0

    def test_duplicate_product_lines_checked_together(self, db_session, make_product, customer):
        product = make_product(stock=5)

        with pytest.raises(InsufficientStockError) as exc_info:
            invoice_service.create_invoice(
                customer.id,
                [
                    _line(product, quantitySold=3, freeQuantity=0),
                    _line(product, quantitySold=3, freeQuantity=0),
                ],
                "Cash",
            )

        assert exc_info.value.details["required"] == 6
        _refresh(product)
        assert product.current_stock_qty == 5

    def test_unknown_customer(self, db_session, product):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(99999, [_line(product)], "Credit")

    def test_inactive_customer(self, db_session, product, make_customer):
        inactive = make_customer(is_active=False)

        with pytest.raises(ValidationError):
            invoice_service.create_invoice(inactive.id, [_line(product)], "Credit")

    def test_unknown_product(self, db_session, customer):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [{"productId": 99999, "quantitySold": 1}], "Credit")

    def test_invalid_payment_type(self, db_session, product, customer):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [_line(product)], "Barter")

    def test_totals_snapshot_survives_price_change(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(
            customer.id, [_line(product, ratePerUnit=None)], "Credit"
        )
        product.rate = Decimal("999.00")
        product.gst_percentage = 28
        db_session.commit()

        db_session.refresh(invoice)
        assert invoice.net_total == Decimal("510.72")


class TestStatusTransitions:
    def test_draft_to_printed(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        updated = invoice_service.update_invoice_status(invoice.id, "Printed")
        _refresh(product, customer)

        assert updated.status == "PRINTED"
        assert updated.printed_at is not None
        assert product.current_stock_qty == 95
        assert Decimal(customer.outstanding_balance) == Decimal("510.72")

    def test_printed_cannot_return_to_draft(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.update_invoice_status(invoice.id, "PRINTED")

        with pytest.raises(LifecycleError):
            invoice_service.update_invoice_status(invoice.id, "DRAFT")

    def test_same_status_is_noop(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        updated = invoice_service.update_invoice_status(invoice.id, "draft")

        assert not db.session().in_transaction()
        assert updated.status == "DRAFT"
        assert db_session.query(ActivityEvent).filter_by(event_type="invoice.status_changed").count() == 0

    def test_status_cancelled_reverses_ledgers(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        updated = invoice_service.update_invoice_status(invoice.id, "Cancelled", reason="Wrong customer")
        _refresh(product, customer)

        assert updated.status == "CANCELLED"
        assert updated.cancel_reason == "Wrong customer"
        assert product.current_stock_qty == 100
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")

    def test_unknown_status(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        with pytest.raises(ValidationError):
            invoice_service.update_invoice_status(invoice.id, "ARCHIVED")

    def test_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            invoice_service.update_invoice_status(99999, "PRINTED")


class TestCancelInvoice:
    def test_round_trip_restores_stock_and_balance(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        _refresh(product, customer)
        assert Decimal(customer.outstanding_balance) == Decimal("510.72")

        invoice_service.cancel_invoice(invoice.id, "Customer returned goods", actor="manager")
        _refresh(product, customer)

        assert product.current_stock_qty == 100
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")
        assert product_ledger_quantity(product.id) == 100
        assert customer_ledger_balance(customer.id) == Decimal("0.00")

    def test_cancel_printed_invoice(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.update_invoice_status(invoice.id, "PRINTED")

        cancelled = invoice_service.cancel_invoice(invoice.id)

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancelled_at is not None

    def test_cancel_twice_is_rejected_without_double_reversal(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.cancel_invoice(invoice.id)

        with pytest.raises(LifecycleError):
            invoice_service.cancel_invoice(invoice.id)
        _refresh(product, customer)

        assert product.current_stock_qty == 100
        assert db_session.query(StockMovement).filter_by(reason="REVERSAL").count() == 1
        assert db_session.query(BalanceEntry).filter_by(kind="REVERSAL").count() == 1

    def test_ledger_reversal_is_idempotent(self, db_session, product, customer):
        from billing.services import balance_service, inventory_service

        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.cancel_invoice(invoice.id)

        assert inventory_service.reverse(invoice_id=invoice.id) == []
        assert balance_service.reverse(invoice_id=invoice.id) == []
        db_session.commit()
        _refresh(product, customer)
        assert product.current_stock_qty == 100
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")

    def test_cancel_cash_invoice_restores_stock_only(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Cash")

        invoice_service.cancel_invoice(invoice.id)
        _refresh(product, customer)

        assert product.current_stock_qty == 100
        assert db_session.query(BalanceEntry).count() == 0

    def test_cancel_voids_payments(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        payment = payment_service.record_payment(invoice.id, "200.00", "UPI")

        cancelled = invoice_service.cancel_invoice(invoice.id)
        _refresh(customer, payment)

        assert payment.status == "VOIDED"
        assert cancelled.paid_amount == Decimal("0.00")
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")
        assert customer_ledger_balance(customer.id) == Decimal("0.00")

    def test_cancel_rolls_back_customer_stats(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        invoice_service.cancel_invoice(invoice.id)
        _refresh(customer)

        assert customer.invoice_count == 0
        assert Decimal(customer.total_purchases) == Decimal("0.00")
        assert customer.last_invoice_at is None

    def test_delete_is_soft_cancel(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        invoice_service.delete_invoice(invoice.id, actor="manager")

        kept = db_session.get(Invoice, invoice.id)
        assert kept is not None
        assert kept.status == "CANCELLED"
        assert kept.cancel_reason == invoice_service.DELETE_REASON

    def test_delete_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            invoice_service.delete_invoice(99999)

    def test_reversal_failure_is_retryable(self, db_session, product, customer):
        invoice = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")

        with patch(
            "billing.services.invoice_service.balance_service.reverse",
            side_effect=ValidationError("ledger unavailable"),
        ):
            with pytest.raises(ReversalError) as exc_info:
                invoice_service.cancel_invoice(invoice.id)

        assert exc_info.value.retryable is True
        assert exc_info.value.details["invoice_id"] == invoice.id
        _refresh(invoice, product, customer)
        # Nothing was half-applied: still DRAFT, stock still deducted
        assert invoice.status == "DRAFT"
        assert product.current_stock_qty == 95
        assert Decimal(customer.outstanding_balance) == Decimal("510.72")

        # Retry succeeds
        invoice_service.cancel_invoice(invoice.id)
        _refresh(invoice, product, customer)
        assert invoice.status == "CANCELLED"
        assert product.current_stock_qty == 100
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")


class TestPreviewAndListing:
    def test_preview_writes_nothing(self, db_session, product):
        totals = invoice_service.preview_invoice([_line(product)])

        assert totals.net_total == Decimal("510.72")
        assert db_session.query(StockMovement).filter_by(reason="SALE").count() == 0

    def test_list_invoices_by_status(self, db_session, product, customer):
        first = invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.create_invoice(customer.id, [_line(product)], "Credit")
        invoice_service.cancel_invoice(first.id)

        result = invoice_service.list_invoices(status="cancelled")

        assert result["pagination"]["total"] == 1
        assert result["items"][0]["id"] == first.id
