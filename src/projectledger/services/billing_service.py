"""Invoices, line items, status lifecycle and tax rates."""

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from .. import audit
from ..config import BillingConfig
from ..db import Database
from ..db.repository import Invoice, InvoiceLineItem, TaxRate
from ..exceptions import (
    CompensationFailure,
    ConflictError,
    DependencyFailure,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from ..logging import get_logger
from ..processing.rounding import round_half_up
from .dispatcher import SideEffectDispatcher

logger = get_logger(__name__)

INVOICE_STATUSES = (
    "draft",
    "sent",
    "paid",
    "partially_paid",
    "overdue",
    "refunded",
    "cancelled",
)

# Allowed moves for transition_invoice; update_invoice_status does not check these.
INVOICE_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"sent", "cancelled"}),
    "sent": frozenset({"paid", "partially_paid", "overdue"}),
    "partially_paid": frozenset({"paid", "overdue", "refunded"}),
    "overdue": frozenset({"paid", "partially_paid"}),
    "paid": frozenset({"refunded"}),
    "refunded": frozenset(),
    "cancelled": frozenset(),
}

OPEN_STATUSES = ("sent", "partially_paid", "overdue")

_INVOICE_FIELDS = {
    "project_id",
    "client_id",
    "invoice_number",
    "status",
    "subtotal",
    "discount_amount",
    "tax_amount",
    "total",
    "currency",
    "due_date",
    "sent_at",
    "paid_at",
    "notes",
}


@dataclass
class InvoiceTotals:
    """Monetary totals of an invoice, in cents."""

    subtotal: int
    discount_amount: int
    tax_amount: int
    total: int

    def as_dict(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "tax_amount": self.tax_amount,
            "total": self.total,
        }


@dataclass
class InvoiceWithLines:
    """Invoice together with its line items."""

    invoice: Invoice
    line_items: list[InvoiceLineItem] = field(default_factory=list)


@dataclass
class BillingSummary:
    """Money owed and paid by one client, in cents."""

    client_id: int
    outstanding: int = 0
    paid: int = 0
    overdue: int = 0
    open_invoices: int = 0
    overdue_invoices: int = 0


def _line_total(item: Any) -> int:
    return item["total"] if isinstance(item, Mapping) else item.total


def _check_rate(rate: float) -> float:
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0 <= rate <= 100:
        raise ValidationError(f"Tax rate must be between 0 and 100, got {rate!r}", field="rate")
    return float(rate)


def calculate_invoice_total(
    line_items: Iterable[Any],
    discount_amount: int = 0,
    tax_rate: float | None = None,
) -> InvoiceTotals:
    """Compute subtotal, tax and total from line item totals.

    Tax is applied to the discounted subtotal and rounded half-up to the
    cent. ``[{total: 10000}, {total: 20000}]`` with a 5000 discount at 8.5%
    gives tax 2125 and total 27125.
    """
    subtotal = sum(_line_total(item) for item in line_items)
    discount = discount_amount or 0
    if discount < 0:
        raise ValidationError("Discount cannot be negative", field="discount_amount")
    after_discount = subtotal - discount
    tax = 0
    if tax_rate:
        tax = round_half_up(Decimal(after_discount) * Decimal(str(_check_rate(tax_rate))) / 100)
    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total=after_discount + tax,
    )


def _normalize_line_items(line_items: list[Mapping]) -> list[dict]:
    """Validate line items and fill in quantity and total."""
    if not line_items:
        raise ValidationError("At least one line item is required", field="line_items")

    normalized = []
    for index, item in enumerate(line_items):
        description = (item.get("description") or "").strip()
        if not description:
            raise ValidationError(
                f"Line item {index + 1}: description is required", field="line_items"
            )
        quantity = item.get("quantity")
        quantity = 1 if quantity is None else quantity
        if quantity <= 0:
            raise ValidationError(
                f"Line item {index + 1}: quantity must be positive", field="line_items"
            )
        unit_price = item.get("unit_price")
        if unit_price is None or unit_price < 0:
            raise ValidationError(
                f"Line item {index + 1}: unit price is required and cannot be negative",
                field="line_items",
            )
        total = item.get("total")
        if total is None:
            total = round_half_up(Decimal(str(quantity)) * unit_price)
        if total < 0:
            raise ValidationError(
                f"Line item {index + 1}: total cannot be negative", field="line_items"
            )
        normalized.append(
            {
                "description": description,
                "quantity": quantity,
                "unit_price": unit_price,
                "total": total,
                "phase_id": item.get("phase_id"),
                "task_id": item.get("task_id"),
            }
        )
    return normalized


class BillingService:
    """Service for invoice and tax rate operations."""

    def __init__(
        self,
        db: Database,
        dispatcher: SideEffectDispatcher | None = None,
        config: BillingConfig | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or SideEffectDispatcher(db)
        self.config = config or BillingConfig()

    def generate_invoice_number(self, today: date | None = None) -> str:
        """Generate an unused number in the form ``INV-YYYYMMDD-XXXX``.

        Raises:
            ConflictError: If every attempt collided with an existing number.
        """
        stamp = (today or date.today()).strftime("%Y%m%d")
        for _ in range(self.config.invoice_number_max_attempts):
            number = f"INV-{stamp}-{1000 + secrets.randbelow(9000)}"
            if not self.db.invoice_number_exists(number):
                return number
        raise ConflictError(
            f"Could not generate a unique invoice number after "
            f"{self.config.invoice_number_max_attempts} attempts",
            constraint="invoices.invoice_number",
        )

    def create_invoice(
        self,
        client_id: int,
        line_items: list[Mapping],
        project_id: int | None = None,
        invoice_number: str | None = None,
        status: str = "draft",
        subtotal: int | None = None,
        discount_amount: int = 0,
        tax_amount: int | None = None,
        tax_rate: float | None = None,
        total: int | None = None,
        currency: str | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> InvoiceWithLines:
        """Create an invoice and its line items.

        Line items are written after the invoice row. If they fail, the
        invoice is deleted again; if that delete fails as well a
        CompensationFailure is raised.
        """
        if client_id is None:
            raise ValidationError("Client is required", field="client_id")
        items = _normalize_line_items(line_items)
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid invoice status: {status}", field="status")

        # An explicit subtotal is the taxable base, not the line item sum
        computed = calculate_invoice_total(
            items if subtotal is None else [{"total": subtotal}], discount_amount, tax_rate
        )
        subtotal = computed.subtotal
        tax_amount = computed.tax_amount if tax_amount is None else tax_amount
        total = subtotal - computed.discount_amount + tax_amount if total is None else total
        for name, value in (("subtotal", subtotal), ("tax_amount", tax_amount), ("total", total)):
            if value < 0:
                raise ValidationError(f"{name} cannot be negative", field=name)

        if self.db.get_user(client_id) is None:
            raise NotFoundError("user", client_id)
        if project_id is not None and self.db.get_project(project_id) is None:
            raise NotFoundError("project", project_id)

        invoice_number = (invoice_number or "").strip() or self.generate_invoice_number()
        now = datetime.now()
        invoice = self.db.insert_invoice(
            {
                "project_id": project_id,
                "client_id": client_id,
                "invoice_number": invoice_number,
                "status": status,
                "subtotal": subtotal,
                "discount_amount": computed.discount_amount,
                "tax_amount": tax_amount,
                "total": total,
                "currency": (currency or self.config.default_currency).lower(),
                "due_date": due_date,
                "notes": notes,
                "sent_at": now if status == "sent" else None,
                "paid_at": now if status == "paid" else None,
            }
        )

        try:
            created_items = self.db.insert_line_items(invoice.id, items)
        except Exception as e:
            logger.error("invoice_line_items_failed", invoice_id=invoice.id, error=str(e))
            try:
                self.db.delete_invoice(invoice.id)
            except Exception as rollback_error:
                logger.critical(
                    "invoice_compensation_failed",
                    invoice_id=invoice.id,
                    error=str(e),
                    rollback_error=str(rollback_error),
                )
                raise CompensationFailure("create_invoice", e, rollback_error) from rollback_error
            if isinstance(e, LedgerError):
                raise
            raise DependencyFailure("invoice_line_items", str(e)) from e

        audit.log_invoice_created(
            invoice.id, invoice.invoice_number, client_id, invoice.total, invoice.currency,
            len(created_items),
        )
        self.dispatcher.invoice_created(invoice)
        if invoice.status == "sent":
            self.dispatcher.invoice_sent(invoice)
        return InvoiceWithLines(invoice=invoice, line_items=created_items)

    def get_invoice(self, invoice_id: int) -> Invoice:
        """Get an invoice or raise NotFoundError."""
        invoice = self.db.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def get_invoice_with_lines(self, invoice_id: int) -> InvoiceWithLines:
        """Get an invoice and its line items."""
        invoice = self.get_invoice(invoice_id)
        return InvoiceWithLines(invoice=invoice, line_items=self.db.get_line_items(invoice_id))

    def list_invoices(
        self,
        client_id: int | None = None,
        status: str | None = None,
    ) -> list[Invoice]:
        """All invoices, or one client's, newest first."""
        return self.db.list_invoices(client_id=client_id, statuses=[status] if status else None)

    def update_invoice(self, invoice_id: int, **fields) -> Invoice:
        """Update top-level invoice fields.

        Status is not checked here; callers that need the lifecycle rules
        use transition_invoice.
        """
        unknown = set(fields) - _INVOICE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown invoice fields: {sorted(unknown)}")
        if "status" in fields and fields["status"] not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid invoice status: {fields['status']}", field="status")
        if not fields:
            return self.get_invoice(invoice_id)
        invoice = self.db.update_invoice(invoice_id, fields)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def update_invoice_status(self, invoice_id: int, status: str) -> Invoice:
        """Set status, stamping sent_at or paid_at, and dispatch on ``sent``.

        Setting the status an invoice already has changes nothing.
        """
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid invoice status: {status}", field="status")
        current = self.get_invoice(invoice_id)
        if current.status == status:
            return current

        values: dict[str, Any] = {"status": status}
        if status == "sent":
            values["sent_at"] = datetime.now()
        elif status == "paid":
            values["paid_at"] = datetime.now()
        invoice = self.update_invoice(invoice_id, **values)

        audit.log_invoice_status_changed(
            invoice.id, invoice.invoice_number, current.status, invoice.status
        )
        logger.info(
            "invoice_status_changed",
            invoice_id=invoice.id,
            old_status=current.status,
            new_status=invoice.status,
        )
        if status == "sent":
            self.dispatcher.invoice_sent(invoice)
        return invoice

    def transition_invoice(self, invoice_id: int, status: str) -> Invoice:
        """Move an invoice along the lifecycle, rejecting moves it does not allow."""
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid invoice status: {status}", field="status")
        current = self.get_invoice(invoice_id)
        if status not in INVOICE_TRANSITIONS[current.status]:
            raise ValidationError(
                f"Cannot move invoice {current.invoice_number} from {current.status} to {status}",
                field="status",
            )
        return self.update_invoice_status(invoice_id, status)

    def send_invoice(self, invoice_id: int) -> Invoice:
        """draft -> sent."""
        return self.transition_invoice(invoice_id, "sent")

    def cancel_invoice(self, invoice_id: int) -> Invoice:
        """draft -> cancelled."""
        return self.transition_invoice(invoice_id, "cancelled")

    def replace_line_items(
        self,
        invoice_id: int,
        line_items: list[Mapping],
        discount_amount: int | None = None,
        tax_rate: float | None = None,
    ) -> InvoiceWithLines:
        """Swap the line items of a draft invoice and recompute its totals.

        Without a tax rate the current tax amount is kept.
        """
        invoice = self.get_invoice(invoice_id)
        if invoice.status != "draft":
            raise ValidationError(
                f"Only draft invoices can have their line items edited "
                f"(invoice {invoice.invoice_number} is {invoice.status})",
                field="status",
            )
        items = _normalize_line_items(line_items)
        discount = invoice.discount_amount if discount_amount is None else discount_amount
        totals = calculate_invoice_total(items, discount, tax_rate)
        if tax_rate is None:
            totals.tax_amount = invoice.tax_amount
            totals.total = totals.subtotal - totals.discount_amount + totals.tax_amount

        created = self.db.replace_line_items(invoice_id, items, totals.as_dict())
        return InvoiceWithLines(invoice=self.get_invoice(invoice_id), line_items=created)

    def settle_invoice(self, invoice_id: int) -> Invoice:
        """Set ``paid``, ``partially_paid`` or ``refunded`` from net payments.

        Net is succeeded payments minus succeeded refunds. An invoice whose
        payments are fully refunded becomes ``refunded``; a partial refund
        leaves a paid invoice paid.
        """
        invoice = self.get_invoice(invoice_id)
        if invoice.status in ("draft", "cancelled", "refunded"):
            return invoice

        received = self.db.sum_payments(invoice_id, status="succeeded")
        if received <= 0:
            return invoice
        refunded = self.db.sum_refunds(invoice_id=invoice_id)
        net = received - refunded

        if refunded and net <= 0:
            new_status = "refunded"
        elif net >= invoice.total:
            new_status = "paid"
        elif invoice.status == "paid":
            return invoice
        else:
            new_status = "partially_paid"
        return self.update_invoice_status(invoice_id, new_status)

    def mark_overdue(self, today: date | None = None) -> list[Invoice]:
        """Flag unpaid invoices whose due date has passed."""
        due = self.db.list_invoices(
            statuses=("sent", "partially_paid"), due_before=today or date.today()
        )
        return [self.update_invoice_status(invoice.id, "overdue") for invoice in due]

    def billing_summary(self, client_id: int) -> BillingSummary:
        """Outstanding, paid and overdue amounts for a client."""
        summary = BillingSummary(client_id=client_id)
        for invoice in self.db.list_invoices(client_id=client_id):
            received = self.db.sum_payments(invoice.id, status="succeeded")
            refunded = self.db.sum_refunds(invoice_id=invoice.id)
            summary.paid += received - refunded
            if invoice.status in OPEN_STATUSES:
                balance = max(invoice.total - received, 0)
                summary.outstanding += balance
                summary.open_invoices += 1
                if invoice.status == "overdue":
                    summary.overdue += balance
                    summary.overdue_invoices += 1
        return summary

    def delete_invoice(self, invoice_id: int) -> None:
        """Delete an invoice with its line items, payments and refunds."""
        if not self.db.delete_invoice(invoice_id):
            raise NotFoundError("invoice", invoice_id)

    # Tax rates

    def create_tax_rate(
        self,
        name: str,
        rate: float,
        country: str | None = None,
        state: str | None = None,
        is_active: bool = True,
    ) -> TaxRate:
        """Create a tax rate (percentage between 0 and 100)."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Tax rate name is required", field="name")
        return self.db.create_tax_rate(
            {
                "name": name,
                "rate": _check_rate(rate),
                "country": country,
                "state": state,
                "is_active": is_active,
            }
        )

    def get_tax_rate(self, tax_rate_id: int) -> TaxRate:
        """Get a tax rate or raise NotFoundError."""
        tax_rate = self.db.get_tax_rate(tax_rate_id)
        if tax_rate is None:
            raise NotFoundError("tax rate", tax_rate_id)
        return tax_rate

    def list_tax_rates(self, active_only: bool = False) -> list[TaxRate]:
        """Tax rates ordered by name."""
        return self.db.list_tax_rates(active_only=active_only)

    def update_tax_rate(self, tax_rate_id: int, **fields) -> TaxRate:
        """Update name, rate, scope or active flag."""
        unknown = set(fields) - {"name", "rate", "country", "state", "is_active"}
        if unknown:
            raise ValidationError(f"Unknown tax rate fields: {sorted(unknown)}")
        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()
            if not fields["name"]:
                raise ValidationError("Tax rate name is required", field="name")
        if "rate" in fields:
            fields["rate"] = _check_rate(fields["rate"])
        if not fields:
            return self.get_tax_rate(tax_rate_id)
        tax_rate = self.db.update_tax_rate(tax_rate_id, fields)
        if tax_rate is None:
            raise NotFoundError("tax rate", tax_rate_id)
        return tax_rate

    def delete_tax_rate(self, tax_rate_id: int) -> None:
        """Delete a tax rate."""
        if not self.db.delete_tax_rate(tax_rate_id):
            raise NotFoundError("tax rate", tax_rate_id)
