"""Data access layer using SQLAlchemy Core."""

import json
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Sequence

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from ..exceptions import ConflictError
from ..tracking.ordering import apply_order, next_sort_order, ordered
from .engine import create_db_engine, get_dialect, initialize_schema
from .tables import (
    activity_log,
    client_notification_preferences,
    invoice_line_items,
    invoices,
    notifications,
    payments,
    project_attachments,
    project_phases,
    project_tasks,
    projects,
    refunds,
    tax_rates,
    tracking_codes,
    users,
)


@dataclass
class User:
    """User record."""

    id: int
    auth_user_id: str
    email: str
    name: str | None
    role: str  # admin, client
    created_at: str | None = None


@dataclass
class Project:
    """Project record."""

    id: int
    title: str
    description: str | None
    status: str  # draft, published
    client_id: int | None
    notifications_enabled: bool
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class TrackingCode:
    """Public tracking code record."""

    id: int
    project_id: int
    code: str
    is_active: bool
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Phase:
    """Project phase record."""

    id: int
    project_id: int
    name: str
    description: str
    sort_order: int
    status: str  # pending, in_progress, completed
    estimated_start_date: date | None = None
    estimated_end_date: date | None = None
    actual_start_date: date | None = None
    actual_end_date: date | None = None
    notify_on_complete: bool = True
    estimated_cost: int | None = None  # cents
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Task:
    """Phase task record."""

    id: int
    phase_id: int
    name: str
    description: str | None
    sort_order: int
    completion_percentage: int
    developer_notes: str | None = None
    estimated_cost: int | None = None  # cents
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Attachment:
    """Project attachment record."""

    id: int
    project_id: int
    phase_id: int | None
    task_id: int | None
    file_url: str
    file_type: str  # image, pdf, video_embed
    file_name: str
    created_at: str | None = None


@dataclass
class NotificationPreference:
    """Phase-completion email opt-in for a tracking code."""

    id: int
    tracking_code_id: int
    email: str
    opted_in: bool
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class ActivityLogEntry:
    """Client-facing project history entry."""

    id: int
    project_id: int
    user_id: int | None
    event_type: str
    event_data: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class Notification:
    """In-app notification for a user."""

    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: dict | None = None
    read: bool = False
    created_at: str | None = None


@dataclass
class Invoice:
    """Invoice record. Monetary fields are integer cents."""

    id: int
    project_id: int | None
    client_id: int
    invoice_number: str
    status: str
    subtotal: int
    discount_amount: int
    tax_amount: int
    total: int
    currency: str
    due_date: date | None = None
    sent_at: str | None = None
    paid_at: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class InvoiceLineItem:
    """Invoice line item record."""

    id: int
    invoice_id: int
    description: str
    quantity: float
    unit_price: int
    total: int
    phase_id: int | None = None
    task_id: int | None = None
    created_at: str | None = None


@dataclass
class Payment:
    """Payment record."""

    id: int
    invoice_id: int
    amount: int
    currency: str
    status: str  # pending, succeeded, failed, refunded, partially_refunded
    processor_payment_intent_id: str | None = None
    processor_charge_id: str | None = None
    paid_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Refund:
    """Refund record."""

    id: int
    payment_id: int
    invoice_id: int
    amount: int
    reason: str | None
    status: str  # pending, succeeded, failed
    processor_refund_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class TaxRate:
    """Tax rate record."""

    id: int
    name: str
    rate: float  # percentage, e.g. 8.5
    country: str | None
    state: str | None
    is_active: bool
    created_at: str | None = None
    updated_at: str | None = None


_JSON_COLUMNS = {"event_data", "data"}


def _row_to_dict(row: Any) -> dict:
    """Convert SQLAlchemy row to dict."""
    return dict(row._mapping)


def _format_datetime(dt: datetime | str | None) -> str | None:
    """Format datetime to ISO string."""
    if dt is None:
        return None
    if isinstance(dt, str):
        return dt
    return dt.isoformat()


def _to_record(record_cls: type, row: Any):
    """Build a record dataclass from a row.

    Timestamps become ISO strings, calendar dates stay ``date`` objects,
    JSON text columns are decoded and boolean columns are coerced (SQLite
    hands back integers).
    """
    row_dict = _row_to_dict(row)
    known = {f.name: f for f in fields(record_cls)}
    values: dict[str, Any] = {}
    for key, value in row_dict.items():
        if key not in known:
            continue
        if isinstance(value, datetime):
            value = _format_datetime(value)
        elif key in _JSON_COLUMNS:
            value = json.loads(value) if value else ({} if key == "event_data" else None)
        elif known[key].type in (bool, "bool") and value is not None:
            value = bool(value)
        values[key] = value
    return record_cls(**values)


def _dumps(data: dict | None) -> str | None:
    if data is None:
        return None
    return json.dumps(data, default=str, sort_keys=True)


class Database:
    """Database connection and operations using SQLAlchemy Core."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or full connection string.
        """
        self._engine: Engine | None = None
        self._db_path = db_path

    @property
    def engine(self) -> Engine:
        """Get or create database engine."""
        if self._engine is None:
            self._engine = create_db_engine(self._db_path)
        return self._engine

    @property
    def dialect(self) -> str:
        """Get database dialect (sqlite, postgresql)."""
        return get_dialect(self.engine)

    def close(self) -> None:
        """Close database connection."""
        if self._engine:
            self._engine.dispose()
            self._engine = None

    def initialize(self) -> None:
        """Initialize database schema."""
        initialize_schema(self.engine)

    def _upsert(self, table, values: dict, index_elements: list[str], update_columns: list[str]):
        """Create dialect-appropriate upsert statement."""
        if self.dialect == "postgresql":
            stmt = pg_insert(table).values(**values)
        else:  # sqlite
            stmt = sqlite_insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )

    # Generic helpers

    @staticmethod
    def _insert(conn: Connection, table: Table, values: dict) -> int:
        """Insert one row and return its primary key.

        Unique constraint violations surface as ConflictError.
        """
        try:
            result = conn.execute(table.insert().values(**values))
        except IntegrityError as e:
            raise ConflictError(
                f"Conflicting {table.name} row: {e.orig}", constraint=table.name
            ) from e
        return result.inserted_primary_key[0]

    @staticmethod
    def _fetch(conn: Connection, table: Table, record_cls: type, row_id: int):
        row = conn.execute(select(table).where(table.c.id == row_id)).fetchone()
        return _to_record(record_cls, row) if row else None

    def _get(self, table: Table, record_cls: type, row_id: int):
        with self.engine.connect() as conn:
            return self._fetch(conn, table, record_cls, row_id)

    def _update(self, table: Table, record_cls: type, row_id: int, values: dict):
        """Update one row by id; returns the refreshed record or None if absent."""
        if "updated_at" in table.c:
            values = {**values, "updated_at": datetime.now()}
        with self.engine.begin() as conn:
            try:
                result = conn.execute(
                    update(table).where(table.c.id == row_id).values(**values)
                )
            except IntegrityError as e:
                raise ConflictError(
                    f"Conflicting {table.name} row: {e.orig}", constraint=table.name
                ) from e
            if result.rowcount == 0:
                return None
            return self._fetch(conn, table, record_cls, row_id)

    def _list(self, stmt, record_cls: type) -> list:
        with self.engine.connect() as conn:
            return [_to_record(record_cls, row) for row in conn.execute(stmt).fetchall()]

    # User operations

    def create_user(
        self,
        auth_user_id: str,
        email: str,
        name: str | None = None,
        role: str = "client",
    ) -> User:
        """Create a user linked to an external identity."""
        with self.engine.begin() as conn:
            user_id = self._insert(
                conn,
                users,
                {
                    "auth_user_id": auth_user_id,
                    "email": email,
                    "name": name,
                    "role": role,
                    "created_at": datetime.now(),
                },
            )
            return self._fetch(conn, users, User, user_id)

    def get_user(self, user_id: int) -> User | None:
        """Get user by ID."""
        return self._get(users, User, user_id)

    def get_user_by_auth_id(self, auth_user_id: str) -> User | None:
        """Get user by external identity."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(users).where(users.c.auth_user_id == auth_user_id)
            ).fetchone()
            return _to_record(User, row) if row else None

    # Project operations

    def create_project(self, values: dict, tracking_code: str) -> Project:
        """Insert a project and its first active tracking code in one transaction."""
        now = datetime.now()
        with self.engine.begin() as conn:
            project_id = self._insert(
                conn, projects, {**values, "created_at": now, "updated_at": now}
            )
            self._insert(
                conn,
                tracking_codes,
                {
                    "project_id": project_id,
                    "code": tracking_code,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            return self._fetch(conn, projects, Project, project_id)

    def get_project(self, project_id: int) -> Project | None:
        """Get project by ID."""
        return self._get(projects, Project, project_id)

    def list_projects(self, client_id: int | None = None) -> list[Project]:
        """List projects, newest first, optionally for one client."""
        stmt = select(projects).order_by(projects.c.created_at.desc(), projects.c.id.desc())
        if client_id is not None:
            stmt = stmt.where(projects.c.client_id == client_id)
        return self._list(stmt, Project)

    def update_project(self, project_id: int, values: dict) -> Project | None:
        """Update project fields."""
        return self._update(projects, Project, project_id, values)

    def delete_project(self, project_id: int) -> bool:
        """Delete a project and everything it owns.

        Children are removed explicitly, deepest first, so the result does
        not depend on the store honouring ON DELETE CASCADE. Invoices are
        kept and detached from the project.
        """
        with self.engine.begin() as conn:
            phase_ids = list(
                conn.execute(
                    select(project_phases.c.id).where(project_phases.c.project_id == project_id)
                ).scalars()
            )
            code_ids = list(
                conn.execute(
                    select(tracking_codes.c.id).where(tracking_codes.c.project_id == project_id)
                ).scalars()
            )
            conn.execute(
                delete(project_attachments).where(project_attachments.c.project_id == project_id)
            )
            if phase_ids:
                self._delete_phase_children(conn, phase_ids)
                conn.execute(delete(project_phases).where(project_phases.c.id.in_(phase_ids)))
            if code_ids:
                conn.execute(
                    delete(client_notification_preferences).where(
                        client_notification_preferences.c.tracking_code_id.in_(code_ids)
                    )
                )
                conn.execute(delete(tracking_codes).where(tracking_codes.c.id.in_(code_ids)))
            conn.execute(delete(activity_log).where(activity_log.c.project_id == project_id))
            conn.execute(
                update(invoices).where(invoices.c.project_id == project_id).values(project_id=None)
            )
            result = conn.execute(delete(projects).where(projects.c.id == project_id))
            return result.rowcount > 0

    # Tracking code operations

    def get_active_tracking_code(self, code: str) -> TrackingCode | None:
        """Look up a code only if it is active."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tracking_codes)
                .where(tracking_codes.c.code == code)
                .where(tracking_codes.c.is_active == True)  # noqa: E712
            ).fetchone()
            return _to_record(TrackingCode, row) if row else None

    def get_active_code_for_project(self, project_id: int) -> TrackingCode | None:
        """Get the active tracking code for a project."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tracking_codes)
                .where(tracking_codes.c.project_id == project_id)
                .where(tracking_codes.c.is_active == True)  # noqa: E712
            ).fetchone()
            return _to_record(TrackingCode, row) if row else None

    def list_tracking_codes(self, project_id: int) -> list[TrackingCode]:
        """All codes ever issued for a project, newest first."""
        return self._list(
            select(tracking_codes)
            .where(tracking_codes.c.project_id == project_id)
            .order_by(tracking_codes.c.created_at.desc(), tracking_codes.c.id.desc()),
            TrackingCode,
        )

    def tracking_code_exists(self, code: str) -> bool:
        """Check whether a code string was ever issued."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(tracking_codes.c.id).where(tracking_codes.c.code == code)
                ).first()
                is not None
            )

    def rotate_tracking_code(self, project_id: int, new_code: str) -> tuple[TrackingCode, int]:
        """Deactivate the project's active code and insert ``new_code``.

        Both statements run in one transaction; the partial unique index on
        active codes rejects a concurrent rotation instead of leaving two
        active codes behind.

        Returns:
            Tuple of (new TrackingCode, number of codes deactivated).
        """
        now = datetime.now()
        with self.engine.begin() as conn:
            deactivated = conn.execute(
                update(tracking_codes)
                .where(tracking_codes.c.project_id == project_id)
                .where(tracking_codes.c.is_active == True)  # noqa: E712
                .values(is_active=False, updated_at=now)
            ).rowcount
            code_id = self._insert(
                conn,
                tracking_codes,
                {
                    "project_id": project_id,
                    "code": new_code,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            return self._fetch(conn, tracking_codes, TrackingCode, code_id), deactivated

    # Notification preference operations

    def upsert_notification_preference(
        self,
        tracking_code_id: int,
        email: str,
        opted_in: bool,
    ) -> NotificationPreference:
        """Insert or update the preference for (tracking_code_id, email)."""
        now = datetime.now()
        with self.engine.begin() as conn:
            stmt = self._upsert(
                client_notification_preferences,
                {
                    "tracking_code_id": tracking_code_id,
                    "email": email,
                    "opted_in": opted_in,
                    "created_at": now,
                    "updated_at": now,
                },
                index_elements=["tracking_code_id", "email"],
                update_columns=["opted_in", "updated_at"],
            )
            conn.execute(stmt)
            row = conn.execute(
                select(client_notification_preferences)
                .where(client_notification_preferences.c.tracking_code_id == tracking_code_id)
                .where(client_notification_preferences.c.email == email)
            ).fetchone()
            return _to_record(NotificationPreference, row)

    def list_notification_preferences(
        self,
        tracking_code_id: int,
        opted_in_only: bool = False,
    ) -> list[NotificationPreference]:
        """List preferences for a tracking code, newest first."""
        prefs = client_notification_preferences
        stmt = (
            select(prefs)
            .where(prefs.c.tracking_code_id == tracking_code_id)
            .order_by(prefs.c.created_at.desc(), prefs.c.id.desc())
        )
        if opted_in_only:
            stmt = stmt.where(prefs.c.opted_in == True)  # noqa: E712
        return self._list(stmt, NotificationPreference)

    # Phase operations

    def create_phase(self, values: dict) -> Phase:
        """Insert a phase, appending it to the project when no sort_order is given."""
        now = datetime.now()
        with self.engine.begin() as conn:
            if values.get("sort_order") is None:
                values = {
                    **values,
                    "sort_order": next_sort_order(conn, project_phases, values["project_id"]),
                }
            phase_id = self._insert(
                conn, project_phases, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, project_phases, Phase, phase_id)

    def get_phase(self, phase_id: int) -> Phase | None:
        """Get phase by ID."""
        return self._get(project_phases, Phase, phase_id)

    def list_phases(self, project_id: int) -> list[Phase]:
        """Phases of a project in display order."""
        return self.list_phases_for_projects([project_id])

    def list_phases_for_projects(self, project_ids: Sequence[int]) -> list[Phase]:
        """Phases for several projects in display order."""
        if not project_ids:
            return []
        return self._list(
            select(project_phases)
            .where(project_phases.c.project_id.in_(list(project_ids)))
            .order_by(*ordered(project_phases)),
            Phase,
        )

    def update_phase(self, phase_id: int, values: dict) -> Phase | None:
        """Update phase fields."""
        return self._update(project_phases, Phase, phase_id, values)

    def _delete_phase_children(self, conn: Connection, phase_ids: list[int]) -> None:
        task_ids = list(
            conn.execute(
                select(project_tasks.c.id).where(project_tasks.c.phase_id.in_(phase_ids))
            ).scalars()
        )
        conn.execute(
            delete(project_attachments).where(project_attachments.c.phase_id.in_(phase_ids))
        )
        conn.execute(
            update(invoice_line_items)
            .where(invoice_line_items.c.phase_id.in_(phase_ids))
            .values(phase_id=None)
        )
        if task_ids:
            self._delete_task_children(conn, task_ids)
            conn.execute(delete(project_tasks).where(project_tasks.c.id.in_(task_ids)))

    def _delete_task_children(self, conn: Connection, task_ids: list[int]) -> None:
        conn.execute(
            delete(project_attachments).where(project_attachments.c.task_id.in_(task_ids))
        )
        conn.execute(
            update(invoice_line_items)
            .where(invoice_line_items.c.task_id.in_(task_ids))
            .values(task_id=None)
        )

    def delete_phase(self, phase_id: int) -> bool:
        """Delete a phase with its tasks and phase- or task-scoped attachments.

        Returns:
            False if the phase did not exist.
        """
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(project_phases.c.id).where(project_phases.c.id == phase_id)
            ).first()
            if exists is None:
                return False
            self._delete_phase_children(conn, [phase_id])
            conn.execute(delete(project_phases).where(project_phases.c.id == phase_id))
            return True

    def reorder_phases(self, project_id: int, ordered_ids: Sequence[int]) -> int:
        """Renumber a project's phases in one transaction."""
        with self.engine.begin() as conn:
            return apply_order(conn, project_phases, project_id, ordered_ids, "phase")

    # Task operations

    def create_task(self, values: dict) -> Task:
        """Insert a task, appending it to the phase when no sort_order is given."""
        now = datetime.now()
        with self.engine.begin() as conn:
            if values.get("sort_order") is None:
                values = {
                    **values,
                    "sort_order": next_sort_order(conn, project_tasks, values["phase_id"]),
                }
            task_id = self._insert(
                conn, project_tasks, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, project_tasks, Task, task_id)

    def get_task(self, task_id: int) -> Task | None:
        """Get task by ID."""
        return self._get(project_tasks, Task, task_id)

    def list_tasks(self, phase_id: int) -> list[Task]:
        """Tasks of a phase in display order."""
        return self.list_tasks_for_phases([phase_id])

    def list_tasks_for_phases(self, phase_ids: Sequence[int]) -> list[Task]:
        """Tasks for several phases, each phase's tasks in display order."""
        if not phase_ids:
            return []
        return self._list(
            select(project_tasks)
            .where(project_tasks.c.phase_id.in_(list(phase_ids)))
            .order_by(project_tasks.c.phase_id, *ordered(project_tasks)),
            Task,
        )

    def update_task(self, task_id: int, values: dict) -> Task | None:
        """Update task fields."""
        return self._update(project_tasks, Task, task_id, values)

    def delete_task(self, task_id: int) -> bool:
        """Delete a task and its task-scoped attachments."""
        with self.engine.begin() as conn:
            self._delete_task_children(conn, [task_id])
            result = conn.execute(delete(project_tasks).where(project_tasks.c.id == task_id))
            return result.rowcount > 0

    def reorder_tasks(self, phase_id: int, ordered_ids: Sequence[int]) -> int:
        """Renumber a phase's tasks in one transaction."""
        with self.engine.begin() as conn:
            return apply_order(conn, project_tasks, phase_id, ordered_ids, "task")

    # Attachment operations

    def create_attachment(self, values: dict) -> Attachment:
        """Insert an attachment record."""
        with self.engine.begin() as conn:
            attachment_id = self._insert(
                conn, project_attachments, {**values, "created_at": datetime.now()}
            )
            return self._fetch(conn, project_attachments, Attachment, attachment_id)

    def get_attachment(self, attachment_id: int) -> Attachment | None:
        """Get attachment by ID."""
        return self._get(project_attachments, Attachment, attachment_id)

    def list_attachments(
        self,
        project_id: int | None = None,
        phase_id: int | None = None,
        task_id: int | None = None,
    ) -> list[Attachment]:
        """List attachments by project, phase or task, newest first."""
        att = project_attachments
        stmt = select(att).order_by(att.c.created_at.desc(), att.c.id.desc())
        if project_id is not None:
            stmt = stmt.where(att.c.project_id == project_id)
        if phase_id is not None:
            stmt = stmt.where(att.c.phase_id == phase_id)
        if task_id is not None:
            stmt = stmt.where(att.c.task_id == task_id)
        return self._list(stmt, Attachment)

    def count_attachments(self, phase_id: int | None = None, task_id: int | None = None) -> int:
        """Count attachments scoped to a phase or a task."""
        att = project_attachments
        stmt = select(func.count()).select_from(att)
        if phase_id is not None:
            stmt = stmt.where(att.c.phase_id == phase_id)
        if task_id is not None:
            stmt = stmt.where(att.c.task_id == task_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def delete_attachment(self, attachment_id: int) -> bool:
        """Delete an attachment record."""
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(project_attachments).where(project_attachments.c.id == attachment_id)
            )
            return result.rowcount > 0

    # Activity log operations

    def log_activity(
        self,
        project_id: int,
        event_type: str,
        event_data: dict | None = None,
        user_id: int | None = None,
    ) -> ActivityLogEntry:
        """Append an activity log entry."""
        with self.engine.begin() as conn:
            entry_id = self._insert(
                conn,
                activity_log,
                {
                    "project_id": project_id,
                    "user_id": user_id,
                    "event_type": event_type,
                    "event_data": _dumps(event_data or {}),
                    "created_at": datetime.now(),
                },
            )
            return self._fetch(conn, activity_log, ActivityLogEntry, entry_id)

    def list_activity(
        self,
        project_ids: Iterable[int] | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[ActivityLogEntry]:
        """Activity entries, newest first."""
        stmt = (
            select(activity_log)
            .order_by(activity_log.c.created_at.desc(), activity_log.c.id.desc())
            .limit(limit)
        )
        if project_ids is not None:
            ids = list(project_ids)
            if not ids:
                return []
            stmt = stmt.where(activity_log.c.project_id.in_(ids))
        if event_type:
            stmt = stmt.where(activity_log.c.event_type == event_type)
        return self._list(stmt, ActivityLogEntry)

    # Notification operations

    def create_notification(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> Notification:
        """Insert an unread notification."""
        with self.engine.begin() as conn:
            notification_id = self._insert(
                conn,
                notifications,
                {
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "data": _dumps(data),
                    "read": False,
                    "created_at": datetime.now(),
                },
            )
            return self._fetch(conn, notifications, Notification, notification_id)

    def get_notification(self, notification_id: int) -> Notification | None:
        """Get notification by ID."""
        return self._get(notifications, Notification, notification_id)

    def list_notifications(
        self,
        user_id: int,
        limit: int = 50,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Notifications for a user, newest first."""
        stmt = (
            select(notifications)
            .where(notifications.c.user_id == user_id)
            .order_by(notifications.c.created_at.desc(), notifications.c.id.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(notifications.c.read == False)  # noqa: E712
        return self._list(stmt, Notification)

    def mark_notification_read(self, notification_id: int) -> bool:
        """Mark one notification read."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(notifications)
                .where(notifications.c.id == notification_id)
                .values(read=True)
            )
            return result.rowcount > 0

    def mark_all_notifications_read(self, user_id: int) -> int:
        """Mark every unread notification of a user read."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(notifications)
                .where(notifications.c.user_id == user_id)
                .where(notifications.c.read == False)  # noqa: E712
                .values(read=True)
            )
            return result.rowcount

    def count_unread_notifications(self, user_id: int) -> int:
        """Number of unread notifications for a user."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(notifications)
                    .where(notifications.c.user_id == user_id)
                    .where(notifications.c.read == False)  # noqa: E712
                ).scalar()
                or 0
            )

    # Invoice operations

    def insert_invoice(self, values: dict) -> Invoice:
        """Insert an invoice row (line items are written separately)."""
        now = datetime.now()
        with self.engine.begin() as conn:
            invoice_id = self._insert(
                conn, invoices, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, invoices, Invoice, invoice_id)

    def insert_line_items(self, invoice_id: int, items: list[dict]) -> list[InvoiceLineItem]:
        """Insert all line items of an invoice in one transaction."""
        now = datetime.now()
        with self.engine.begin() as conn:
            ids = [
                self._insert(
                    conn,
                    invoice_line_items,
                    {**item, "invoice_id": invoice_id, "created_at": now},
                )
                for item in items
            ]
            return [self._fetch(conn, invoice_line_items, InvoiceLineItem, i) for i in ids]

    def replace_line_items(
        self,
        invoice_id: int,
        items: list[dict],
        totals: dict,
    ) -> list[InvoiceLineItem]:
        """Swap an invoice's line items and totals in one transaction."""
        now = datetime.now()
        with self.engine.begin() as conn:
            conn.execute(
                delete(invoice_line_items).where(invoice_line_items.c.invoice_id == invoice_id)
            )
            ids = [
                self._insert(
                    conn,
                    invoice_line_items,
                    {**item, "invoice_id": invoice_id, "created_at": now},
                )
                for item in items
            ]
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(**totals, updated_at=now)
            )
            return [self._fetch(conn, invoice_line_items, InvoiceLineItem, i) for i in ids]

    def get_invoice(self, invoice_id: int) -> Invoice | None:
        """Get invoice by ID."""
        return self._get(invoices, Invoice, invoice_id)

    def get_line_items(self, invoice_id: int) -> list[InvoiceLineItem]:
        """Line items of an invoice in insertion order."""
        return self._list(
            select(invoice_line_items)
            .where(invoice_line_items.c.invoice_id == invoice_id)
            .order_by(invoice_line_items.c.id),
            InvoiceLineItem,
        )

    def invoice_number_exists(self, invoice_number: str) -> bool:
        """Check whether an invoice number is taken."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(invoices.c.id).where(invoices.c.invoice_number == invoice_number)
                ).first()
                is not None
            )

    def list_invoices(
        self,
        client_id: int | None = None,
        statuses: Sequence[str] | None = None,
        due_before: date | None = None,
    ) -> list[Invoice]:
        """List invoices, newest first."""
        stmt = select(invoices).order_by(invoices.c.created_at.desc(), invoices.c.id.desc())
        if client_id is not None:
            stmt = stmt.where(invoices.c.client_id == client_id)
        if statuses:
            stmt = stmt.where(invoices.c.status.in_(list(statuses)))
        if due_before is not None:
            stmt = stmt.where(invoices.c.due_date.is_not(None)).where(
                invoices.c.due_date < due_before
            )
        return self._list(stmt, Invoice)

    def update_invoice(self, invoice_id: int, values: dict) -> Invoice | None:
        """Update invoice fields."""
        return self._update(invoices, Invoice, invoice_id, values)

    def delete_invoice(self, invoice_id: int) -> bool:
        """Delete an invoice with its line items, payments and refunds."""
        with self.engine.begin() as conn:
            conn.execute(delete(refunds).where(refunds.c.invoice_id == invoice_id))
            conn.execute(delete(payments).where(payments.c.invoice_id == invoice_id))
            conn.execute(
                delete(invoice_line_items).where(invoice_line_items.c.invoice_id == invoice_id)
            )
            result = conn.execute(delete(invoices).where(invoices.c.id == invoice_id))
            return result.rowcount > 0

    # Payment operations

    def insert_payment(self, values: dict) -> Payment:
        """Insert a payment row."""
        now = datetime.now()
        with self.engine.begin() as conn:
            payment_id = self._insert(
                conn, payments, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, payments, Payment, payment_id)

    def get_payment(self, payment_id: int) -> Payment | None:
        """Get payment by ID."""
        return self._get(payments, Payment, payment_id)

    def list_payments(self, invoice_id: int) -> list[Payment]:
        """Payments for an invoice, newest first."""
        return self._list(
            select(payments)
            .where(payments.c.invoice_id == invoice_id)
            .order_by(payments.c.created_at.desc(), payments.c.id.desc()),
            Payment,
        )

    def update_payment(self, payment_id: int, values: dict) -> Payment | None:
        """Update payment fields."""
        return self._update(payments, Payment, payment_id, values)

    def sum_payments(self, invoice_id: int, status: str = "succeeded") -> int:
        """Total cents of an invoice's payments in ``status``."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.coalesce(func.sum(payments.c.amount), 0))
                    .where(payments.c.invoice_id == invoice_id)
                    .where(payments.c.status == status)
                ).scalar()
                or 0
            )

    # Refund operations

    def insert_refund(self, values: dict) -> Refund:
        """Insert a refund row."""
        now = datetime.now()
        with self.engine.begin() as conn:
            refund_id = self._insert(
                conn, refunds, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, refunds, Refund, refund_id)

    def get_refund(self, refund_id: int) -> Refund | None:
        """Get refund by ID."""
        return self._get(refunds, Refund, refund_id)

    def list_refunds(
        self,
        invoice_id: int | None = None,
        payment_id: int | None = None,
    ) -> list[Refund]:
        """Refunds for an invoice or a payment, newest first."""
        stmt = select(refunds).order_by(refunds.c.created_at.desc(), refunds.c.id.desc())
        if invoice_id is not None:
            stmt = stmt.where(refunds.c.invoice_id == invoice_id)
        if payment_id is not None:
            stmt = stmt.where(refunds.c.payment_id == payment_id)
        return self._list(stmt, Refund)

    def update_refund(self, refund_id: int, values: dict) -> Refund | None:
        """Update refund fields."""
        return self._update(refunds, Refund, refund_id, values)

    def sum_refunds(
        self,
        payment_id: int | None = None,
        invoice_id: int | None = None,
        statuses: Sequence[str] = ("succeeded",),
        exclude_refund_id: int | None = None,
    ) -> int:
        """Total cents refunded against a payment or an invoice."""
        stmt = select(func.coalesce(func.sum(refunds.c.amount), 0)).where(
            refunds.c.status.in_(list(statuses))
        )
        if exclude_refund_id is not None:
            stmt = stmt.where(refunds.c.id != exclude_refund_id)
        if payment_id is not None:
            stmt = stmt.where(refunds.c.payment_id == payment_id)
        if invoice_id is not None:
            stmt = stmt.where(refunds.c.invoice_id == invoice_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    # Tax rate operations

    def create_tax_rate(self, values: dict) -> TaxRate:
        """Insert a tax rate."""
        now = datetime.now()
        with self.engine.begin() as conn:
            rate_id = self._insert(
                conn, tax_rates, {**values, "created_at": now, "updated_at": now}
            )
            return self._fetch(conn, tax_rates, TaxRate, rate_id)

    def get_tax_rate(self, tax_rate_id: int) -> TaxRate | None:
        """Get tax rate by ID."""
        return self._get(tax_rates, TaxRate, tax_rate_id)

    def list_tax_rates(self, active_only: bool = False) -> list[TaxRate]:
        """List tax rates by name."""
        stmt = select(tax_rates).order_by(tax_rates.c.name, tax_rates.c.id)
        if active_only:
            stmt = stmt.where(tax_rates.c.is_active == True)  # noqa: E712
        return self._list(stmt, TaxRate)

    def update_tax_rate(self, tax_rate_id: int, values: dict) -> TaxRate | None:
        """Update tax rate fields."""
        return self._update(tax_rates, TaxRate, tax_rate_id, values)

    def delete_tax_rate(self, tax_rate_id: int) -> bool:
        """Delete a tax rate."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(tax_rates).where(tax_rates.c.id == tax_rate_id))
            return result.rowcount > 0
