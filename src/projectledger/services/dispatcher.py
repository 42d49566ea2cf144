"""Notifications and activity-log entries that follow billing state changes.

The dispatcher runs after the billing write has committed. Each side effect
is isolated: a failing sink is logged and skipped, and nothing is raised to
the caller.
"""

from typing import Any, Callable, Protocol

from ..db import Database
from ..db.repository import Invoice, Payment, Refund
from ..logging import get_logger

logger = get_logger(__name__)


class NotificationSink(Protocol):
    """Receives in-app notifications addressed to a user."""

    def notify(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> None: ...


class ActivityLogSink(Protocol):
    """Receives append-only project activity entries."""

    def append(
        self,
        project_id: int,
        event_type: str,
        event_data: dict[str, Any],
        user_id: int | None = None,
    ) -> None: ...


class DatabaseNotificationSink:
    """Stores notifications in the ``notifications`` table."""

    def __init__(self, db: Database):
        self.db = db

    def notify(self, user_id, type, title, message, data) -> None:
        self.db.create_notification(user_id, type, title, message, data)


class DatabaseActivityLogSink:
    """Stores entries in the ``activity_log`` table."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, project_id, event_type, event_data, user_id=None) -> None:
        self.db.log_activity(project_id, event_type, event_data, user_id=user_id)


def format_amount(cents: int, currency: str) -> str:
    """Format cents for a message, e.g. ``125.50 USD``."""
    return f"{cents / 100:.2f} {currency.upper()}"


class SideEffectDispatcher:
    """Turns billing transitions into client notifications and activity entries."""

    def __init__(
        self,
        db: Database,
        notifications: NotificationSink | None = None,
        activity: ActivityLogSink | None = None,
    ):
        self.db = db
        self.notifications = notifications or DatabaseNotificationSink(db)
        self.activity = activity or DatabaseActivityLogSink(db)

    def _guarded(self, effect: str, action: Callable[[], None], **context: Any) -> None:
        try:
            action()
        except Exception as e:
            logger.warning("side_effect_failed", effect=effect, error=str(e), **context)

    def _parent_invoice(self, invoice_id: int, effect: str) -> Invoice | None:
        invoice = self.db.get_invoice(invoice_id)
        if invoice is None:
            logger.warning("side_effect_skipped", effect=effect, invoice_id=invoice_id,
                           reason="invoice not found")
        return invoice

    def invoice_created(self, invoice: Invoice) -> None:
        """Activity entry on the invoice's project, if it has one."""
        if invoice.project_id is None:
            return
        self._guarded(
            "invoice_created.activity",
            lambda: self.activity.append(
                invoice.project_id,
                "invoice_created",
                {
                    "invoice_id": invoice.id,
                    "invoice_number": invoice.invoice_number,
                    "total": invoice.total,
                    "currency": invoice.currency,
                },
            ),
            invoice_id=invoice.id,
        )

    def invoice_sent(self, invoice: Invoice) -> None:
        """Notify the client and log the send on the project."""
        self._guarded(
            "invoice_sent.notification",
            lambda: self.notifications.notify(
                invoice.client_id,
                "invoice_sent",
                "New Invoice",
                f"Invoice {invoice.invoice_number} for "
                f"{format_amount(invoice.total, invoice.currency)} has been sent",
                {
                    "invoice_id": invoice.id,
                    "project_id": invoice.project_id,
                    "amount": invoice.total,
                    "currency": invoice.currency,
                },
            ),
            invoice_id=invoice.id,
        )
        if invoice.project_id is not None:
            self._guarded(
                "invoice_sent.activity",
                lambda: self.activity.append(
                    invoice.project_id,
                    "invoice_sent",
                    {
                        "invoice_id": invoice.id,
                        "invoice_number": invoice.invoice_number,
                        "total": invoice.total,
                        "currency": invoice.currency,
                    },
                ),
                invoice_id=invoice.id,
            )

    def payment_succeeded(self, payment: Payment) -> None:
        """Notify ``payment_received`` and log it on the invoice's project."""

        def run() -> None:
            invoice = self._parent_invoice(payment.invoice_id, "payment_received")
            if invoice is None:
                return
            self._guarded(
                "payment_received.notification",
                lambda: self.notifications.notify(
                    invoice.client_id,
                    "payment_received",
                    "Payment Received",
                    f"Payment of {format_amount(payment.amount, payment.currency)} "
                    f"received for Invoice {invoice.invoice_number}",
                    {
                        "payment_id": payment.id,
                        "invoice_id": invoice.id,
                        "project_id": invoice.project_id,
                        "amount": payment.amount,
                        "currency": payment.currency,
                    },
                ),
                payment_id=payment.id,
            )
            if invoice.project_id is not None:
                self._guarded(
                    "payment_received.activity",
                    lambda: self.activity.append(
                        invoice.project_id,
                        "payment_received",
                        {
                            "payment_id": payment.id,
                            "amount": payment.amount,
                            "currency": payment.currency,
                            "invoice_number": invoice.invoice_number,
                        },
                    ),
                    payment_id=payment.id,
                )

        self._guarded("payment_received", run, payment_id=payment.id)

    def payment_failed(self, payment: Payment) -> None:
        """Notify ``payment_failed``; failures leave no activity entry."""

        def run() -> None:
            invoice = self._parent_invoice(payment.invoice_id, "payment_failed")
            if invoice is None:
                return
            self.notifications.notify(
                invoice.client_id,
                "payment_failed",
                "Payment Failed",
                f"Payment for Invoice {invoice.invoice_number} failed. Please try again.",
                {
                    "payment_id": payment.id,
                    "invoice_id": invoice.id,
                    "project_id": invoice.project_id,
                    "amount": payment.amount,
                    "currency": payment.currency,
                },
            )

        self._guarded("payment_failed", run, payment_id=payment.id)

    def refund_succeeded(self, refund: Refund) -> None:
        """Notify ``refund_processed`` and log it on the invoice's project."""

        def run() -> None:
            invoice = self._parent_invoice(refund.invoice_id, "refund_processed")
            if invoice is None:
                return
            self._guarded(
                "refund_processed.notification",
                lambda: self.notifications.notify(
                    invoice.client_id,
                    "refund_processed",
                    "Refund Processed",
                    f"Refund of {format_amount(refund.amount, invoice.currency)} "
                    f"processed for Invoice {invoice.invoice_number}",
                    {
                        "refund_id": refund.id,
                        "invoice_id": invoice.id,
                        "project_id": invoice.project_id,
                        "amount": refund.amount,
                        "currency": invoice.currency,
                    },
                ),
                refund_id=refund.id,
            )
            if invoice.project_id is not None:
                self._guarded(
                    "refund_processed.activity",
                    lambda: self.activity.append(
                        invoice.project_id,
                        "refund_processed",
                        {
                            "refund_id": refund.id,
                            "amount": refund.amount,
                            "invoice_number": invoice.invoice_number,
                        },
                    ),
                    refund_id=refund.id,
                )

        self._guarded("refund_processed", run, refund_id=refund.id)
