"""SQLAlchemy table definitions for projectledger."""

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

# Use naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

# Schema version tracking
schema_version = Table(
    "schema_version",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("applied_at", DateTime, server_default=func.now()),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("auth_user_id", String(100), nullable=False, unique=True),  # external identity
    Column("email", String(254), nullable=False, unique=True),
    Column("name", String(200)),
    Column("role", String(20), nullable=False, server_default="client"),
    Column("created_at", DateTime, server_default=func.now()),
    CheckConstraint("role IN ('admin', 'client')", name="role_check"),
)

projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(300), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, server_default="draft"),
    Column(
        "client_id",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("notifications_enabled", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint("status IN ('draft', 'published')", name="status_check"),
)

Index("idx_projects_client", projects.c.client_id)

tracking_codes = Table(
    "tracking_codes",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("code", String(64), nullable=False, unique=True),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

Index("idx_tracking_codes_project", tracking_codes.c.project_id)
# At most one active code per project, enforced by the store
Index(
    "uq_tracking_codes_active_project",
    tracking_codes.c.project_id,
    unique=True,
    postgresql_where=(tracking_codes.c.is_active == True),  # noqa: E712
    sqlite_where=(tracking_codes.c.is_active == True),  # noqa: E712
)

project_phases = Table(
    "project_phases",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(300), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("estimated_start_date", Date),
    Column("estimated_end_date", Date),
    Column("actual_start_date", Date),
    Column("actual_end_date", Date),
    Column("notify_on_complete", Boolean, nullable=False, server_default="1"),
    Column("estimated_cost", BigInteger),  # cents
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'in_progress', 'completed')",
        name="status_check",
    ),
)

Index("idx_project_phases_project_sort", project_phases.c.project_id, project_phases.c.sort_order)

project_tasks = Table(
    "project_tasks",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "phase_id",
        Integer,
        ForeignKey("project_phases.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(300), nullable=False),
    Column("description", Text),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("completion_percentage", Integer, nullable=False, server_default="0"),
    Column("developer_notes", Text),
    Column("estimated_cost", BigInteger),  # cents
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "completion_percentage >= 0 AND completion_percentage <= 100",
        name="completion_range",
    ),
)

Index("idx_project_tasks_phase_sort", project_tasks.c.phase_id, project_tasks.c.sort_order)

project_attachments = Table(
    "project_attachments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "phase_id",
        Integer,
        ForeignKey("project_phases.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column(
        "task_id",
        Integer,
        ForeignKey("project_tasks.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column("file_url", String(1000), nullable=False),
    Column("file_type", String(20), nullable=False),
    Column("file_name", String(500), nullable=False),
    Column("created_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "file_type IN ('image', 'pdf', 'video_embed')",
        name="file_type_check",
    ),
)

Index("idx_project_attachments_project", project_attachments.c.project_id)
Index("idx_project_attachments_phase", project_attachments.c.phase_id)
Index("idx_project_attachments_task", project_attachments.c.task_id)

client_notification_preferences = Table(
    "client_notification_preferences",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "tracking_code_id",
        Integer,
        ForeignKey("tracking_codes.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("email", String(254), nullable=False),
    Column("opted_in", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    UniqueConstraint(
        "tracking_code_id",
        "email",
        name="uq_notification_preferences_code_email",
    ),
)

# Append-only client-facing history
activity_log = Table(
    "activity_log",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("event_type", String(50), nullable=False),
    Column("event_data", Text, nullable=False, server_default="{}"),  # JSON string
    Column("created_at", DateTime, server_default=func.now()),
)

Index("idx_activity_log_project", activity_log.c.project_id)
Index("idx_activity_log_created", activity_log.c.created_at)

notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("type", String(50), nullable=False),
    Column("title", String(300), nullable=False),
    Column("message", Text, nullable=False),
    Column("data", Text),  # JSON string
    Column("read", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, server_default=func.now()),
)

Index("idx_notifications_user", notifications.c.user_id)

invoices = Table(
    "invoices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column(
        "client_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("invoice_number", String(50), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="draft"),
    Column("subtotal", BigInteger, nullable=False, server_default="0"),  # cents
    Column("discount_amount", BigInteger, nullable=False, server_default="0"),
    Column("tax_amount", BigInteger, nullable=False, server_default="0"),
    Column("total", BigInteger, nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False, server_default="usd"),
    Column("due_date", Date),
    Column("sent_at", DateTime),
    Column("paid_at", DateTime),
    Column("notes", Text),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "status IN ('draft', 'sent', 'paid', 'partially_paid', 'overdue', "
        "'refunded', 'cancelled')",
        name="status_check",
    ),
)

Index("idx_invoices_client", invoices.c.client_id)
Index("idx_invoices_status", invoices.c.status)

invoice_line_items = Table(
    "invoice_line_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "invoice_id",
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("description", String(500), nullable=False),
    Column("quantity", Float, nullable=False, server_default="1"),
    Column("unit_price", BigInteger, nullable=False),  # cents
    Column("total", BigInteger, nullable=False),  # cents
    Column(
        "phase_id",
        Integer,
        ForeignKey("project_phases.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column(
        "task_id",
        Integer,
        ForeignKey("project_tasks.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("created_at", DateTime, server_default=func.now()),
)

Index("idx_invoice_line_items_invoice", invoice_line_items.c.invoice_id)

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "invoice_id",
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("amount", BigInteger, nullable=False),  # cents
    Column("currency", String(3), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("processor_payment_intent_id", String(255), unique=True),
    Column("processor_charge_id", String(255), unique=True),
    Column("paid_at", DateTime),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'succeeded', 'failed', 'refunded', 'partially_refunded')",
        name="status_check",
    ),
)

Index("idx_payments_invoice", payments.c.invoice_id)

refunds = Table(
    "refunds",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "payment_id",
        Integer,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "invoice_id",
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("amount", BigInteger, nullable=False),  # cents
    Column("reason", Text),
    Column("processor_refund_id", String(255), unique=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'succeeded', 'failed')",
        name="status_check",
    ),
)

Index("idx_refunds_invoice", refunds.c.invoice_id)
Index("idx_refunds_payment", refunds.c.payment_id)

tax_rates = Table(
    "tax_rates",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("rate", Float, nullable=False),  # percentage, e.g. 8.5
    Column("country", String(100)),
    Column("state", String(100)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
    CheckConstraint("rate >= 0 AND rate <= 100", name="rate_range"),
)

SCHEMA_VERSION = 1
