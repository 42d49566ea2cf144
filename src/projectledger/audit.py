"""Audit logging for tracking and billing operations.

Emits structured log events that can be consumed by Splunk, Elasticsearch,
or any log aggregator that supports JSON or key=value format. These events
are operator-facing; the client-facing history lives in the activity_log
table.

Configure via config.yaml:
    logging:
      enabled: true  # set to false to disable audit logging
      format: json  # or 'splunk' for key=value format
"""

from typing import Any

import structlog

# Module state
_logger: structlog.BoundLogger | None = None
_enabled: bool = True


def configure(enabled: bool = True) -> None:
    """Configure the audit logger.

    Args:
        enabled: Whether audit logging is enabled.
    """
    global _enabled
    _enabled = enabled


def _get_logger() -> structlog.BoundLogger:
    """Get or create the audit logger."""
    global _logger
    if _logger is None:
        _logger = structlog.get_logger("audit")
    return _logger


def _emit(
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """Emit an audit log event.

    Args:
        event_type: Category of event (project, phase, tracking_code,
            invoice, payment, refund, notification)
        action: Specific action (created, completed, regenerated, etc.)
        **kwargs: Additional event-specific fields
    """
    if not _enabled:
        return

    logger = _get_logger()
    logger.info(
        f"{event_type}.{action}",
        event_type=event_type,
        action=action,
        **kwargs,
    )


# Project events
def log_project_created(project_id: int, title: str, user: str | None = None) -> None:
    """Log a project creation event."""
    _emit("project", "created", project_id=project_id, title=title, user=user or "system")


def log_phase_completed(
    project_id: int,
    phase_id: int,
    phase_name: str,
    user: str | None = None,
) -> None:
    """Log a phase completion event."""
    _emit(
        "phase",
        "completed",
        project_id=project_id,
        phase_id=phase_id,
        phase_name=phase_name,
        user=user or "system",
    )


def log_tracking_code_regenerated(
    project_id: int,
    deactivated: int,
    user: str | None = None,
) -> None:
    """Log a tracking code rotation.

    The new code itself is never written to the audit trail.
    """
    _emit(
        "tracking_code",
        "regenerated",
        project_id=project_id,
        deactivated=deactivated,
        user=user or "system",
    )


# Billing events
def log_invoice_created(
    invoice_id: int,
    invoice_number: str,
    client_id: int,
    total: int,
    currency: str,
    line_item_count: int,
) -> None:
    """Log an invoice creation event."""
    _emit(
        "invoice",
        "created",
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        client_id=client_id,
        total_cents=total,
        currency=currency,
        line_item_count=line_item_count,
    )


def log_invoice_status_changed(
    invoice_id: int,
    invoice_number: str,
    old_status: str | None,
    new_status: str,
) -> None:
    """Log an invoice status transition."""
    _emit(
        "invoice",
        "status_changed",
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        old_status=old_status or "",
        new_status=new_status,
    )


def log_payment_recorded(
    payment_id: int,
    invoice_id: int,
    amount: int,
    currency: str,
    status: str,
) -> None:
    """Log a payment record event."""
    _emit(
        "payment",
        "recorded",
        payment_id=payment_id,
        invoice_id=invoice_id,
        amount_cents=amount,
        currency=currency,
        status=status,
    )


def log_payment_status_changed(payment_id: int, invoice_id: int, status: str) -> None:
    """Log a payment status change."""
    _emit("payment", "status_changed", payment_id=payment_id, invoice_id=invoice_id, status=status)


def log_refund_recorded(
    refund_id: int,
    payment_id: int,
    invoice_id: int,
    amount: int,
    status: str,
    reason: str | None = None,
) -> None:
    """Log a refund record event."""
    _emit(
        "refund",
        "recorded",
        refund_id=refund_id,
        payment_id=payment_id,
        invoice_id=invoice_id,
        amount_cents=amount,
        status=status,
        reason=reason or "",
    )


def log_refund_status_changed(refund_id: int, invoice_id: int, status: str) -> None:
    """Log a refund status change."""
    _emit("refund", "status_changed", refund_id=refund_id, invoice_id=invoice_id, status=status)


# Notification events
def log_phase_email(
    project_id: int,
    phase_id: int,
    emails_sent: int,
    success: bool,
    error: str | None = None,
) -> None:
    """Log a phase-completion email batch."""
    kwargs: dict[str, Any] = {
        "project_id": project_id,
        "phase_id": phase_id,
        "emails_sent": emails_sent,
        "status": "sent" if success else "error",
    }
    if error:
        kwargs["error"] = error
    _emit("notification", "phase_email", **kwargs)
