"""Business services on top of the Database facade."""

from .billing_service import BillingService, calculate_invoice_total
from .dispatcher import SideEffectDispatcher
from .hierarchy_service import HierarchyService
from .payment_service import PaymentService
from .project_service import ProjectService
from .tracking_service import TrackingService

__all__ = [
    "BillingService",
    "HierarchyService",
    "PaymentService",
    "ProjectService",
    "SideEffectDispatcher",
    "TrackingService",
    "calculate_invoice_total",
]
