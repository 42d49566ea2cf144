"""Database layer with SQLAlchemy Core abstraction.

Supports SQLite (default) and PostgreSQL for production.
"""

from .engine import create_db_engine, get_dialect, initialize_schema
from .repository import (
    ActivityLogEntry,
    Attachment,
    Database,
    Invoice,
    InvoiceLineItem,
    Notification,
    NotificationPreference,
    Payment,
    Phase,
    Project,
    Refund,
    Task,
    TaxRate,
    TrackingCode,
    User,
)
from .tables import SCHEMA_VERSION, metadata

__all__ = [
    "ActivityLogEntry",
    "Attachment",
    "Database",
    "Invoice",
    "InvoiceLineItem",
    "Notification",
    "NotificationPreference",
    "Payment",
    "Phase",
    "Project",
    "Refund",
    "SCHEMA_VERSION",
    "Task",
    "TaxRate",
    "TrackingCode",
    "User",
    "create_db_engine",
    "get_dialect",
    "initialize_schema",
    "metadata",
]
