"""Tests for payments, refunds and invoice settlement."""

import pytest

from projectledger.exceptions import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def invoice(billing_service, client_user, project):
    """A sent invoice for 30000 cents."""
    created = billing_service.create_invoice(
        client_user.id,
        [{"description": "Build", "unit_price": 30000}],
        project_id=project.id,
        status="sent",
    )
    return created.invoice


@pytest.fixture
def fresh_sinks(notifications, activity):
    """Clear side effects recorded while setting up the invoice."""
    notifications.calls.clear()
    activity.calls.clear()
    return notifications, activity


class TestPaymentStatus:
    """Tests for payment status changes and their side effects."""

    def test_succeeded_notifies_and_logs(self, payment_service, invoice, fresh_sinks):
        """One notification and one activity entry on success."""
        notifications, activity = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd")

        payment_service.update_payment_status(payment.id, "succeeded", processor_charge_id="ch_1")

        assert len(notifications.calls) == 1
        assert notifications.calls[0]["type"] == "payment_received"
        assert notifications.calls[0]["message"] == (
            f"Payment of 300.00 USD received for Invoice {invoice.invoice_number}"
        )
        assert len(activity.calls) == 1
        assert activity.calls[0]["event_type"] == "payment_received"

    def test_failed_notifies_without_activity(self, payment_service, invoice, fresh_sinks):
        """A failed payment notifies but leaves no activity entry."""
        notifications, activity = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd")

        payment_service.update_payment_status(payment.id, "failed")

        assert len(notifications.calls) == 1
        assert notifications.calls[0]["type"] == "payment_failed"
        assert notifications.calls[0]["message"] == (
            f"Payment for Invoice {invoice.invoice_number} failed. Please try again."
        )
        assert activity.calls == []

    def test_pending_is_quiet(self, payment_service, invoice, fresh_sinks):
        notifications, activity = fresh_sinks
        payment_service.create_payment(invoice.id, 100, "usd")
        assert notifications.calls == []
        assert activity.calls == []

    def test_succeeded_sets_paid_at(self, payment_service, invoice):
        payment = payment_service.create_payment(invoice.id, 100, "usd")
        updated = payment_service.update_payment_status(payment.id, "succeeded")
        assert updated.paid_at is not None

    def test_invalid_status(self, payment_service, invoice):
        payment = payment_service.create_payment(invoice.id, 100, "usd")
        with pytest.raises(ValidationError):
            payment_service.update_payment_status(payment.id, "bounced")

    def test_missing_payment(self, payment_service):
        with pytest.raises(NotFoundError):
            payment_service.update_payment_status(9999, "succeeded")


class TestCreatePayment:
    """Tests for payment validation."""

    @pytest.mark.parametrize("amount", [0, -5, 10.5])
    def test_amount_must_be_positive_cents(self, payment_service, invoice, amount):
        with pytest.raises(ValidationError):
            payment_service.create_payment(invoice.id, amount, "usd")

    def test_unknown_invoice(self, payment_service):
        with pytest.raises(NotFoundError):
            payment_service.create_payment(9999, 100, "usd")

    def test_duplicate_processor_id(self, payment_service, invoice):
        """Processor ids are unique."""
        payment_service.create_payment(
            invoice.id, 100, "usd", processor_payment_intent_id="pi_1"
        )
        with pytest.raises(ConflictError):
            payment_service.create_payment(
                invoice.id, 100, "usd", processor_payment_intent_id="pi_1"
            )


class TestRefunds:
    """Tests for refunds."""

    @pytest.fixture
    def payment(self, payment_service, invoice):
        return payment_service.create_payment(invoice.id, 30000, "usd", status="succeeded")

    def test_partial_refunds_up_to_amount(self, payment_service, invoice, payment):
        """Succeeded refunds reduce what can still be refunded."""
        payment_service.create_refund(payment.id, invoice.id, 10000, status="succeeded")

        assert payment_service.refundable_amount(payment) == 20000
        with pytest.raises(ValidationError):
            payment_service.create_refund(payment.id, invoice.id, 20001)

    def test_payment_must_match_invoice(
        self, billing_service, payment_service, client_user, payment
    ):
        other = billing_service.create_invoice(
            client_user.id, [{"description": "Other", "unit_price": 100}]
        ).invoice
        with pytest.raises(ValidationError):
            payment_service.create_refund(payment.id, other.id, 100)

    def test_succeeded_refund_notifies(self, payment_service, invoice, payment, fresh_sinks):
        notifications, activity = fresh_sinks
        refund = payment_service.create_refund(payment.id, invoice.id, 5000, reason="Scope cut")

        payment_service.update_refund_status(refund.id, "succeeded")

        assert [n["type"] for n in notifications.calls] == ["refund_processed"]
        assert [a["event_type"] for a in activity.calls] == ["refund_processed"]

    def test_payment_status_unchanged_by_refund(self, payment_service, invoice, payment):
        payment_service.create_refund(payment.id, invoice.id, 30000, status="succeeded")
        assert payment_service.get_payment(payment.id).status == "succeeded"


class TestSettleInvoice:
    """Tests for deriving invoice status from payments."""

    def test_partial_then_full(self, billing_service, payment_service, invoice):
        payment_service.create_payment(invoice.id, 10000, "usd", status="succeeded")
        assert billing_service.settle_invoice(invoice.id).status == "partially_paid"

        payment_service.create_payment(invoice.id, 20000, "usd", status="succeeded")
        settled = billing_service.settle_invoice(invoice.id)
        assert settled.status == "paid"
        assert settled.paid_at is not None

    def test_failed_payments_ignored(self, billing_service, payment_service, invoice):
        payment_service.create_payment(invoice.id, 30000, "usd", status="failed")
        assert billing_service.settle_invoice(invoice.id).status == "sent"

    def test_billing_summary(self, billing_service, payment_service, client_user, invoice):
        payment_service.create_payment(invoice.id, 10000, "usd", status="succeeded")
        billing_service.settle_invoice(invoice.id)

        summary = billing_service.billing_summary(client_user.id)

        assert summary.paid == 10000
        assert summary.outstanding == 20000
        assert summary.open_invoices == 1
        assert summary.overdue_invoices == 0


class TestRepeatedCallbacks:
    """Processors retry callbacks; repeating a status has no second effect."""

    def test_payment_succeeded_twice(self, payment_service, invoice, fresh_sinks):
        notifications, activity = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd")

        first = payment_service.update_payment_status(payment.id, "succeeded")
        second = payment_service.update_payment_status(payment.id, "succeeded")

        assert [n["type"] for n in notifications.calls] == ["payment_received"]
        assert len(activity.calls) == 1
        assert second.paid_at == first.paid_at

    def test_payment_failed_twice(self, payment_service, invoice, fresh_sinks):
        notifications, _ = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd")

        payment_service.update_payment_status(payment.id, "failed")
        payment_service.update_payment_status(payment.id, "failed")

        assert [n["type"] for n in notifications.calls] == ["payment_failed"]

    def test_created_succeeded_then_callback(self, payment_service, invoice, fresh_sinks):
        """A callback confirming a payment already recorded as succeeded is quiet."""
        notifications, _ = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd", status="succeeded")

        payment_service.update_payment_status(payment.id, "succeeded", processor_charge_id="ch_9")

        assert len(notifications.calls) == 1
        assert payment_service.get_payment(payment.id).processor_charge_id == "ch_9"

    def test_refund_succeeded_twice(self, payment_service, invoice, fresh_sinks):
        notifications, activity = fresh_sinks
        payment = payment_service.create_payment(invoice.id, 30000, "usd", status="succeeded")
        notifications.calls.clear()
        activity.calls.clear()
        refund = payment_service.create_refund(payment.id, invoice.id, 5000)

        payment_service.update_refund_status(refund.id, "succeeded")
        payment_service.update_refund_status(refund.id, "succeeded")

        assert [n["type"] for n in notifications.calls] == ["refund_processed"]
        assert len(activity.calls) == 1

    def test_invoice_sent_twice(self, billing_service, client_user, notifications):
        invoice = billing_service.create_invoice(
            client_user.id, [{"description": "Build", "unit_price": 100}]
        ).invoice
        notifications.calls.clear()

        first = billing_service.update_invoice_status(invoice.id, "sent")
        second = billing_service.update_invoice_status(invoice.id, "sent")

        assert [n["type"] for n in notifications.calls] == ["invoice_sent"]
        assert second.sent_at == first.sent_at


class TestRefundLimits:
    """Tests that refunds never exceed what was received."""

    @pytest.fixture
    def payment(self, payment_service, invoice):
        return payment_service.create_payment(invoice.id, 30000, "usd", status="succeeded")

    def test_pending_refunds_reserve_amount(self, payment_service, invoice, payment):
        """A second full refund is rejected while the first is still pending."""
        payment_service.create_refund(payment.id, invoice.id, 30000)

        assert payment_service.refundable_amount(payment) == 0
        with pytest.raises(ValidationError):
            payment_service.create_refund(payment.id, invoice.id, 30000)

    def test_failed_refund_frees_amount(self, payment_service, invoice, payment):
        refund = payment_service.create_refund(payment.id, invoice.id, 30000)
        payment_service.update_refund_status(refund.id, "failed")

        assert payment_service.refundable_amount(payment) == 30000
        payment_service.create_refund(payment.id, invoice.id, 30000)

    def test_reviving_failed_refund_rechecks_limit(
        self, db, payment_service, invoice, payment
    ):
        """A failed refund cannot succeed once its amount has been refunded again."""
        first = payment_service.create_refund(payment.id, invoice.id, 30000)
        payment_service.update_refund_status(first.id, "failed")
        payment_service.create_refund(payment.id, invoice.id, 30000, status="succeeded")

        with pytest.raises(ValidationError):
            payment_service.update_refund_status(first.id, "succeeded")

        assert payment_service.get_refund(first.id).status == "failed"
        assert db.sum_refunds(payment_id=payment.id) == 30000

    @pytest.mark.parametrize("status", ["pending", "failed"])
    def test_refund_requires_succeeded_payment(
        self, billing_service, payment_service, client_user, invoice, status
    ):
        """Nothing can be refunded from a payment that never arrived."""
        payment = payment_service.create_payment(invoice.id, 30000, "usd", status=status)

        with pytest.raises(ValidationError) as exc_info:
            payment_service.create_refund(payment.id, invoice.id, 30000, status="succeeded")

        assert exc_info.value.field == "payment_id"
        assert billing_service.billing_summary(client_user.id).paid == 0


class TestRefundSettlement:
    """Tests for invoice status after refunds succeed."""

    @pytest.fixture
    def paid_invoice(self, billing_service, payment_service, invoice):
        payment = payment_service.create_payment(invoice.id, 30000, "usd", status="succeeded")
        billing_service.settle_invoice(invoice.id)
        return invoice, payment

    def test_full_refund_marks_refunded(self, billing_service, payment_service, paid_invoice):
        invoice, payment = paid_invoice
        refund = payment_service.create_refund(payment.id, invoice.id, 30000)
        assert billing_service.get_invoice(invoice.id).status == "paid"

        payment_service.update_refund_status(refund.id, "succeeded")

        assert billing_service.get_invoice(invoice.id).status == "refunded"

    def test_partial_refund_keeps_paid(self, billing_service, payment_service, paid_invoice):
        invoice, payment = paid_invoice
        payment_service.create_refund(payment.id, invoice.id, 10000, status="succeeded")

        assert billing_service.get_invoice(invoice.id).status == "paid"
        assert billing_service.billing_summary(invoice.client_id).paid == 20000

    def test_partially_paid_fully_refunded(self, billing_service, payment_service, invoice):
        payment = payment_service.create_payment(invoice.id, 10000, "usd", status="succeeded")
        billing_service.settle_invoice(invoice.id)

        payment_service.create_refund(payment.id, invoice.id, 10000, status="succeeded")

        assert billing_service.get_invoice(invoice.id).status == "refunded"
