"""Outbound delivery: SMTP transport and phase-completion email."""

from .phase_email import (
    EmailPhaseNotificationSender,
    PhaseNotificationResult,
    PhaseNotificationSender,
)
from .smtp import send_email

__all__ = [
    "EmailPhaseNotificationSender",
    "PhaseNotificationResult",
    "PhaseNotificationSender",
    "send_email",
]
