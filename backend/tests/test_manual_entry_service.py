"""Manual (opening balance) entries: balance only, never stock, excluded from analytics."""

from datetime import timedelta
from decimal import Decimal

import pytest

from billing.extensions import db
from billing.models import BalanceEntry, ManualEntry, StockMovement
from billing.services import balance_service, manual_entry_service
from billing.services.lifecycle_service import LifecycleError
from billing.services.reconciliation_service import customer_ledger_balance
from billing.time_utils import utcnow
from billing.validation import NotFoundError, ValidationError


class TestCreateManualEntry:
    def test_opening_balance_scenario(self, db_session, product, customer):
        movements_before = db_session.query(StockMovement).count()

        entry = manual_entry_service.create_manual_entry(
            customer.id, 5000, "2025-03-31", "Balance carried from paper ledger", actor="admin"
        )
        db.session.refresh(customer)

        assert entry.kind == "MANUAL_OPENING_BALANCE"
        assert entry.amount == Decimal("5000.00")
        assert entry.exclude_from_analytics is True
        assert Decimal(customer.outstanding_balance) == Decimal("5000.00")
        assert db_session.query(StockMovement).count() == movements_before
        assert customer_ledger_balance(customer.id) == Decimal("5000.00")

    def test_manual_entry_record(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, "1250.50", None, "Old dues", "From 2024 book")

        manual = db_session.get(ManualEntry, entry.manual_entry_id)
        assert manual.status == "ACTIVE"
        assert manual.customer_name == customer.name
        assert manual.outstanding_before == Decimal("0.00")
        assert manual.notes == "From 2024 book"

    def test_excluded_from_analytics(self, db_session, customer):
        manual_entry_service.create_manual_entry(customer.id, 5000, None, "Opening balance")

        assert balance_service.analytics_entries_query().count() == 0

    @pytest.mark.parametrize("amount", [0, -100, "", "ten", None])
    def test_rejects_non_positive_amount(self, db_session, customer, amount):
        with pytest.raises(ValidationError):
            manual_entry_service.create_manual_entry(customer.id, amount, None, "Opening balance")

    @pytest.mark.parametrize("description", [None, "", "   "])
    def test_requires_description(self, db_session, customer, description):
        with pytest.raises(ValidationError):
            manual_entry_service.create_manual_entry(customer.id, 100, None, description)

        assert db_session.query(BalanceEntry).count() == 0

    def test_rejects_future_date(self, db_session, customer):
        future = (utcnow() + timedelta(days=2)).date().isoformat()

        with pytest.raises(ValidationError):
            manual_entry_service.create_manual_entry(customer.id, 100, future, "Opening balance")

    @pytest.mark.parametrize("entry_date", ["   ", "31/03/2025", "2025-13-01", 20250331])
    def test_rejects_malformed_date(self, db_session, customer, entry_date):
        with pytest.raises(ValidationError):
            manual_entry_service.create_manual_entry(customer.id, "10", entry_date, "Opening balance")

        assert db_session.query(BalanceEntry).count() == 0

    def test_date_only_is_midnight(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 10, "2025-03-31", "Opening balance")

        manual = db_session.get(ManualEntry, entry.manual_entry_id)
        assert (manual.entry_date.year, manual.entry_date.month, manual.entry_date.day) == (2025, 3, 31)
        assert (manual.entry_date.hour, manual.entry_date.minute) == (0, 0)

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            manual_entry_service.create_manual_entry(99999, 100, None, "Opening balance")


class TestManualEntryPaymentsAndVoid:
    def test_payment_reduces_remaining(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 5000, None, "Opening balance")

        manual = manual_entry_service.record_manual_entry_payment(entry.manual_entry_id, 1500)
        db.session.refresh(customer)

        assert manual.paid_amount == Decimal("1500.00")
        assert manual.payment_status == "PARTIAL"
        assert Decimal(customer.outstanding_balance) == Decimal("3500.00")
        payment_entry = db_session.query(BalanceEntry).filter_by(kind="PAYMENT").one()
        assert payment_entry.exclude_from_analytics is True

    def test_payment_cannot_exceed_remaining(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 100, None, "Opening balance")

        with pytest.raises(ValidationError):
            manual_entry_service.record_manual_entry_payment(entry.manual_entry_id, "100.01")

    def test_void_reverses_entry_and_payments(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 5000, None, "Opening balance")
        manual_entry_service.record_manual_entry_payment(entry.manual_entry_id, 1000)

        manual = manual_entry_service.void_manual_entry(entry.manual_entry_id, "Entered twice", actor="admin")
        db.session.refresh(customer)

        assert manual.status == "VOIDED"
        assert Decimal(customer.outstanding_balance) == Decimal("0.00")
        assert customer_ledger_balance(customer.id) == Decimal("0.00")
        assert db_session.query(BalanceEntry).filter_by(kind="REVERSAL").count() == 2

    def test_void_twice_rejected(self, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 100, None, "Opening balance")
        manual_entry_service.void_manual_entry(entry.manual_entry_id)

        with pytest.raises(LifecycleError):
            manual_entry_service.void_manual_entry(entry.manual_entry_id)

    def test_list_hides_voided_by_default(self, db_session, customer):
        kept = manual_entry_service.create_manual_entry(customer.id, 100, None, "Opening balance")
        gone = manual_entry_service.create_manual_entry(customer.id, 200, None, "Duplicate")
        manual_entry_service.void_manual_entry(gone.manual_entry_id)

        active = manual_entry_service.list_manual_entries(customer_id=customer.id)
        everything = manual_entry_service.list_manual_entries(customer_id=customer.id, include_voided=True)

        assert [m.id for m in active] == [kept.manual_entry_id]
        assert len(everything) == 2


class TestUnpaidOpeningBalances:
    def test_only_entries_with_remaining_amount(self, db_session, customer, make_customer):
        settled = manual_entry_service.create_manual_entry(customer.id, 100, "2025-01-31", "Settled")
        partial = manual_entry_service.create_manual_entry(customer.id, 300, "2025-02-28", "Partly paid")
        open_entry = manual_entry_service.create_manual_entry(customer.id, 200, "2025-03-31", "Untouched")
        voided = manual_entry_service.create_manual_entry(customer.id, 50, None, "Entered twice")
        other = make_customer()
        manual_entry_service.create_manual_entry(other.id, 75, None, "Other customer")

        manual_entry_service.record_manual_entry_payment(settled.manual_entry_id, 100)
        manual_entry_service.record_manual_entry_payment(partial.manual_entry_id, 120)
        manual_entry_service.void_manual_entry(voided.manual_entry_id)

        unpaid = manual_entry_service.list_manual_entries(customer_id=customer.id, unpaid_only=True)

        assert [m.id for m in unpaid] == [open_entry.manual_entry_id, partial.manual_entry_id]
        assert unpaid[1].remaining_amount == Decimal("180.00")

    def test_unpaid_route(self, client, db_session, customer):
        entry = manual_entry_service.create_manual_entry(customer.id, 500, None, "Opening balance")
        manual_entry_service.record_manual_entry_payment(entry.manual_entry_id, 200)

        body = client.get(f"/api/manual-entries/customer/{customer.id}/unpaid").get_json()

        assert body["count"] == 1
        assert body["items"][0]["remaining_amount"] == "300.00"
        assert client.get("/api/manual-entries/customer/99999/unpaid").status_code == 404
