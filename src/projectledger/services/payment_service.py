"""Payments and refunds recorded against invoices.

Status values come from the payment processor; this module records them and
fires the matching client notifications. A payment's own status does not
change when it is refunded.
"""

from datetime import datetime
from typing import Any

from .. import audit
from ..db import Database
from ..db.repository import Payment, Refund
from ..exceptions import NotFoundError, ValidationError
from ..logging import get_logger
from .billing_service import BillingService
from .dispatcher import SideEffectDispatcher

logger = get_logger(__name__)

PAYMENT_STATUSES = ("pending", "succeeded", "failed", "refunded", "partially_refunded")
REFUND_STATUSES = ("pending", "succeeded", "failed")


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(
            f"Amount must be a positive number of cents, got {amount!r}", field="amount"
        )
    return amount


def _clean_id(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


class PaymentService:
    """Service for payment and refund records."""

    def __init__(self, db: Database, dispatcher: SideEffectDispatcher | None = None):
        self.db = db
        self.dispatcher = dispatcher or SideEffectDispatcher(db)

    # Payments

    def create_payment(
        self,
        invoice_id: int,
        amount: int,
        currency: str,
        status: str = "pending",
        processor_payment_intent_id: str | None = None,
        processor_charge_id: str | None = None,
        paid_at: datetime | None = None,
    ) -> Payment:
        """Record a payment; a payment created as succeeded is announced at once.

        Raises:
            ValidationError: Missing invoice, non-positive amount or missing currency.
            NotFoundError: If the invoice does not exist.
            ConflictError: If a processor id is already recorded.
        """
        if invoice_id is None:
            raise ValidationError("Invoice is required", field="invoice_id")
        _check_amount(amount)
        currency = (currency or "").strip().lower()
        if not currency:
            raise ValidationError("Currency is required", field="currency")
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}", field="status")
        if self.db.get_invoice(invoice_id) is None:
            raise NotFoundError("invoice", invoice_id)

        if status == "succeeded" and paid_at is None:
            paid_at = datetime.now()
        payment = self.db.insert_payment(
            {
                "invoice_id": invoice_id,
                "amount": amount,
                "currency": currency,
                "status": status,
                "processor_payment_intent_id": _clean_id(processor_payment_intent_id),
                "processor_charge_id": _clean_id(processor_charge_id),
                "paid_at": paid_at,
            }
        )
        audit.log_payment_recorded(payment.id, invoice_id, amount, currency, status)

        if payment.status == "succeeded":
            self.dispatcher.payment_succeeded(payment)
        return payment

    def get_payment(self, payment_id: int) -> Payment:
        """Get a payment or raise NotFoundError."""
        payment = self.db.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        return payment

    def list_payments(self, invoice_id: int) -> list[Payment]:
        """Payments for an invoice, newest first."""
        return self.db.list_payments(invoice_id)

    def update_payment_status(
        self,
        payment_id: int,
        status: str,
        processor_charge_id: str | None = None,
        paid_at: datetime | None = None,
    ) -> Payment:
        """Apply a processor status and notify the client on success or failure.

        Processors retry their callbacks, so repeating the current status
        records any new processor id but notifies nobody.
        """
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}", field="status")
        current = self.get_payment(payment_id)
        changed = current.status != status

        values: dict[str, Any] = {"status": status}
        if _clean_id(processor_charge_id):
            values["processor_charge_id"] = _clean_id(processor_charge_id)
        if paid_at is not None:
            values["paid_at"] = paid_at
        elif status == "succeeded" and changed:
            values["paid_at"] = datetime.now()

        payment = self.db.update_payment(payment_id, values)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        if not changed:
            logger.info("payment_status_unchanged", payment_id=payment.id, status=status)
            return payment
        audit.log_payment_status_changed(payment.id, payment.invoice_id, status)

        if status == "succeeded":
            self.dispatcher.payment_succeeded(payment)
        elif status == "failed":
            self.dispatcher.payment_failed(payment)
        return payment

    # Refunds

    def refundable_amount(self, payment: Payment, exclude_refund_id: int | None = None) -> int:
        """Payment amount minus refunds that are pending or already succeeded."""
        claimed = self.db.sum_refunds(
            payment_id=payment.id,
            statuses=("pending", "succeeded"),
            exclude_refund_id=exclude_refund_id,
        )
        return payment.amount - claimed

    def _check_refundable(
        self, payment: Payment, amount: int, exclude_refund_id: int | None = None
    ) -> None:
        if payment.status != "succeeded":
            raise ValidationError(
                f"Payment {payment.id} is {payment.status}; only succeeded payments "
                f"can be refunded",
                field="payment_id",
            )
        refundable = self.refundable_amount(payment, exclude_refund_id)
        if amount > refundable:
            raise ValidationError(
                f"Refund of {amount} exceeds refundable amount {refundable}", field="amount"
            )

    def create_refund(
        self,
        payment_id: int,
        invoice_id: int,
        amount: int,
        reason: str | None = None,
        processor_refund_id: str | None = None,
        status: str = "pending",
    ) -> Refund:
        """Record a refund against a succeeded payment of the given invoice.

        Raises:
            ValidationError: Bad amount, unknown status, a payment that belongs
                to another invoice or has not succeeded, or more than the
                refundable amount.
            NotFoundError: If the payment or invoice does not exist.
            ConflictError: If the processor refund id is already recorded.
        """
        if payment_id is None or invoice_id is None:
            raise ValidationError("Payment and invoice are required")
        _check_amount(amount)
        if status not in REFUND_STATUSES:
            raise ValidationError(f"Invalid refund status: {status}", field="status")

        payment = self.get_payment(payment_id)
        if self.db.get_invoice(invoice_id) is None:
            raise NotFoundError("invoice", invoice_id)
        if payment.invoice_id != invoice_id:
            raise ValidationError(
                f"Payment {payment_id} does not belong to invoice {invoice_id}",
                field="invoice_id",
            )
        self._check_refundable(payment, amount)

        refund = self.db.insert_refund(
            {
                "payment_id": payment_id,
                "invoice_id": invoice_id,
                "amount": amount,
                "reason": (reason or "").strip() or None,
                "processor_refund_id": _clean_id(processor_refund_id),
                "status": status,
            }
        )
        audit.log_refund_recorded(refund.id, payment_id, invoice_id, amount, status, refund.reason)

        if refund.status == "succeeded":
            self._refund_succeeded(refund)
        return refund

    def get_refund(self, refund_id: int) -> Refund:
        """Get a refund or raise NotFoundError."""
        refund = self.db.get_refund(refund_id)
        if refund is None:
            raise NotFoundError("refund", refund_id)
        return refund

    def list_refunds(self, invoice_id: int) -> list[Refund]:
        """Refunds for an invoice, newest first."""
        return self.db.list_refunds(invoice_id=invoice_id)

    def update_refund_status(
        self,
        refund_id: int,
        status: str,
        processor_refund_id: str | None = None,
    ) -> Refund:
        """Apply a processor status; a refund that becomes succeeded notifies the client.

        Raises:
            ValidationError: If succeeding the refund would take more than the
                payment's refundable amount.
        """
        if status not in REFUND_STATUSES:
            raise ValidationError(f"Invalid refund status: {status}", field="status")
        current = self.get_refund(refund_id)
        changed = current.status != status
        if changed and status == "succeeded":
            self._check_refundable(
                self.get_payment(current.payment_id), current.amount, exclude_refund_id=current.id
            )

        values: dict[str, Any] = {"status": status}
        if _clean_id(processor_refund_id):
            values["processor_refund_id"] = _clean_id(processor_refund_id)

        refund = self.db.update_refund(refund_id, values)
        if refund is None:
            raise NotFoundError("refund", refund_id)
        if not changed:
            logger.info("refund_status_unchanged", refund_id=refund.id, status=status)
            return refund
        audit.log_refund_status_changed(refund.id, refund.invoice_id, status)

        if status == "succeeded":
            self._refund_succeeded(refund)
        return refund

    def _refund_succeeded(self, refund: Refund) -> None:
        """Re-settle the invoice against net payments, then notify."""
        BillingService(self.db, self.dispatcher).settle_invoice(refund.invoice_id)
        self.dispatcher.refund_succeeded(refund)
