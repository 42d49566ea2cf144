"""Tests for invoices, line items and tax rates."""

import re
from datetime import date

import pytest
from sqlalchemy import func, select

from projectledger.db.tables import invoice_line_items, invoices
from projectledger.exceptions import (
    CompensationFailure,
    DependencyFailure,
    NotFoundError,
    ValidationError,
)
from projectledger.services import calculate_invoice_total

LINE_ITEMS = [
    {"description": "Design", "unit_price": 10000},
    {"description": "Build", "quantity": 2, "unit_price": 10000},
]


def count_rows(db, table) -> int:
    with db.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar()


class TestCalculateInvoiceTotal:
    """Tests for calculate_invoice_total."""

    def test_discount_then_tax(self):
        """30000 less 5000 at 8.5% gives 2125 tax and 27125 total."""
        totals = calculate_invoice_total(
            [{"total": 10000}, {"total": 20000}], discount_amount=5000, tax_rate=8.5
        )
        assert totals.subtotal == 30000
        assert totals.discount_amount == 5000
        assert totals.tax_amount == 2125
        assert totals.total == 27125

    def test_no_tax(self):
        totals = calculate_invoice_total([{"total": 1234}])
        assert totals.tax_amount == 0
        assert totals.total == 1234

    def test_tax_rounds_half_up(self):
        """0.5 cent of tax rounds up."""
        totals = calculate_invoice_total([{"total": 10}], tax_rate=5)
        assert totals.tax_amount == 1

    def test_negative_discount(self):
        with pytest.raises(ValidationError):
            calculate_invoice_total([{"total": 100}], discount_amount=-1)


class TestCreateInvoice:
    """Tests for invoice creation."""

    def test_creates_with_line_items(self, billing_service, client_user, project):
        """Line totals default to quantity x unit price."""
        result = billing_service.create_invoice(
            client_user.id, LINE_ITEMS, project_id=project.id, discount_amount=5000,
            tax_rate=8.5, due_date=date(2025, 6, 30),
        )

        invoice = result.invoice
        assert re.fullmatch(r"INV-\d{8}-\d{4}", invoice.invoice_number)
        assert invoice.status == "draft"
        assert (invoice.subtotal, invoice.tax_amount, invoice.total) == (30000, 2125, 27125)
        assert invoice.currency == "usd"
        assert [li.total for li in result.line_items] == [10000, 20000]
        assert result.line_items[0].quantity == 1

    def test_explicit_subtotal_is_taxed(self, billing_service, client_user):
        """Tax and total follow the subtotal that is stored."""
        invoice = billing_service.create_invoice(
            client_user.id, LINE_ITEMS, subtotal=40000, discount_amount=5000, tax_rate=10,
        ).invoice

        assert invoice.subtotal == 40000
        assert invoice.tax_amount == 3500
        assert invoice.total == 38500

    def test_empty_line_items_writes_nothing(self, db, billing_service, client_user):
        """No line items is a validation error and no invoice row exists."""
        with pytest.raises(ValidationError) as exc_info:
            billing_service.create_invoice(client_user.id, [])
        assert exc_info.value.field == "line_items"
        assert count_rows(db, invoices) == 0

    def test_line_item_without_description(self, db, billing_service, client_user):
        with pytest.raises(ValidationError):
            billing_service.create_invoice(client_user.id, [{"description": " ", "unit_price": 1}])
        assert count_rows(db, invoices) == 0

    def test_unknown_client(self, billing_service):
        with pytest.raises(NotFoundError):
            billing_service.create_invoice(9999, LINE_ITEMS)

    def test_line_item_failure_removes_invoice(
        self, db, billing_service, client_user, monkeypatch
    ):
        """If line items cannot be written the invoice is deleted again."""

        def broken(invoice_id, items):
            raise RuntimeError("disk full")

        monkeypatch.setattr(db, "insert_line_items", broken)

        with pytest.raises(DependencyFailure):
            billing_service.create_invoice(client_user.id, LINE_ITEMS)

        assert count_rows(db, invoices) == 0
        assert count_rows(db, invoice_line_items) == 0

    def test_failed_compensation(self, db, billing_service, client_user, monkeypatch):
        """A failed cleanup surfaces as CompensationFailure."""

        def broken(*args, **kwargs):
            raise RuntimeError("store gone")

        monkeypatch.setattr(db, "insert_line_items", broken)
        monkeypatch.setattr(db, "delete_invoice", broken)

        with pytest.raises(CompensationFailure) as exc_info:
            billing_service.create_invoice(client_user.id, LINE_ITEMS)
        assert exc_info.value.operation == "create_invoice"

    def test_created_as_sent_notifies(
        self, billing_service, client_user, project, notifications, activity
    ):
        """An invoice created as sent notifies the client."""
        billing_service.create_invoice(
            client_user.id, LINE_ITEMS, project_id=project.id, status="sent"
        )

        assert [n["type"] for n in notifications.calls] == ["invoice_sent"]
        assert [a["event_type"] for a in activity.calls] == ["invoice_created", "invoice_sent"]


class TestInvoiceLifecycle:
    """Tests for status transitions."""

    @pytest.fixture
    def invoice(self, billing_service, client_user, project):
        return billing_service.create_invoice(
            client_user.id, LINE_ITEMS, project_id=project.id, due_date=date(2025, 1, 31)
        ).invoice

    def test_send(self, billing_service, invoice, notifications):
        """Sending stamps sent_at and notifies the client."""
        sent = billing_service.send_invoice(invoice.id)
        assert sent.status == "sent"
        assert sent.sent_at is not None
        assert notifications.calls[0]["title"] == "New Invoice"

    def test_illegal_transition(self, billing_service, invoice):
        """draft cannot jump to paid."""
        with pytest.raises(ValidationError):
            billing_service.transition_invoice(invoice.id, "paid")

    def test_cancelled_is_terminal(self, billing_service, invoice):
        billing_service.cancel_invoice(invoice.id)
        with pytest.raises(ValidationError):
            billing_service.send_invoice(invoice.id)

    def test_mark_overdue(self, billing_service, invoice):
        """Sent invoices past due become overdue."""
        billing_service.send_invoice(invoice.id)

        updated = billing_service.mark_overdue(today=date(2025, 2, 1))

        assert [i.id for i in updated] == [invoice.id]
        assert billing_service.get_invoice(invoice.id).status == "overdue"

    def test_not_overdue_on_due_date(self, billing_service, invoice):
        billing_service.send_invoice(invoice.id)
        assert billing_service.mark_overdue(today=date(2025, 1, 31)) == []

    def test_replace_line_items(self, billing_service, invoice):
        """Drafts can have their items swapped and totals recomputed."""
        result = billing_service.replace_line_items(
            invoice.id, [{"description": "Consulting", "unit_price": 5000}], tax_rate=10
        )
        assert [li.description for li in result.line_items] == ["Consulting"]
        assert result.invoice.subtotal == 5000
        assert result.invoice.tax_amount == 500
        assert result.invoice.total == 5500

    def test_replace_line_items_requires_draft(self, billing_service, invoice):
        billing_service.send_invoice(invoice.id)
        with pytest.raises(ValidationError):
            billing_service.replace_line_items(
                invoice.id, [{"description": "Consulting", "unit_price": 5000}]
            )

    def test_delete(self, db, billing_service, invoice):
        """Deleting an invoice removes its line items."""
        billing_service.delete_invoice(invoice.id)
        assert db.get_invoice(invoice.id) is None
        assert db.get_line_items(invoice.id) == []


class TestTaxRates:
    """Tests for tax rate management."""

    def test_create_and_list(self, billing_service):
        billing_service.create_tax_rate("State", 6.25, country="US", state="MA")
        billing_service.create_tax_rate("Old", 5, is_active=False)

        assert [r.name for r in billing_service.list_tax_rates(active_only=True)] == ["State"]

    @pytest.mark.parametrize("rate", [-1, 101])
    def test_rate_bounds(self, billing_service, rate):
        with pytest.raises(ValidationError):
            billing_service.create_tax_rate("Bad", rate)

    def test_update_missing(self, billing_service):
        with pytest.raises(NotFoundError):
            billing_service.update_tax_rate(9999, rate=5)
