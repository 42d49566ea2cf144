"""Project lifecycle and client dashboard queries."""

from datetime import date

from .. import audit
from ..db import Database
from ..db.repository import ActivityLogEntry, Project
from ..exceptions import NotFoundError, ValidationError
from ..logging import get_logger
from ..processing.progress import (
    ClientProjectMetrics,
    NextMilestone,
    client_metrics,
    next_milestone,
)
from .tracking_service import TrackingService

logger = get_logger(__name__)

PROJECT_STATUSES = ("draft", "published")


def _require_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Project title is required", field="title")
    return title


def _check_status(status: str) -> str:
    if status not in PROJECT_STATUSES:
        raise ValidationError(
            f"Invalid project status: {status} (expected one of {', '.join(PROJECT_STATUSES)})",
            field="status",
        )
    return status


class ProjectService:
    """Service for project operations."""

    def __init__(self, db: Database, tracking: TrackingService | None = None):
        self.db = db
        self.tracking = tracking or TrackingService(db)

    def _check_client(self, client_id: int | None) -> None:
        if client_id is not None and self.db.get_user(client_id) is None:
            raise NotFoundError("user", client_id)

    def create_project(
        self,
        title: str,
        description: str | None = None,
        status: str = "draft",
        client_id: int | None = None,
        notifications_enabled: bool = True,
        user: str | None = None,
    ) -> Project:
        """Create a project together with its first active tracking code."""
        values = {
            "title": _require_title(title),
            "description": description,
            "status": _check_status(status),
            "client_id": client_id,
            "notifications_enabled": notifications_enabled,
        }
        self._check_client(client_id)

        project = self.db.create_project(values, self.tracking.generate_code())
        audit.log_project_created(project.id, project.title, user=user)
        logger.info("project_created", project_id=project.id, client_id=client_id)
        return project

    def get_project(self, project_id: int) -> Project:
        """Get a project or raise NotFoundError."""
        project = self.db.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    def list_projects(self, client_id: int | None = None) -> list[Project]:
        """All projects, or one client's projects, newest first."""
        return self.db.list_projects(client_id=client_id)

    def update_project(self, project_id: int, **fields) -> Project:
        """Update title, description, status, client or notification flag."""
        allowed = {"title", "description", "status", "client_id", "notifications_enabled"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown project fields: {sorted(unknown)}")
        if "title" in fields:
            fields["title"] = _require_title(fields["title"])
        if "status" in fields:
            _check_status(fields["status"])
        if "client_id" in fields:
            self._check_client(fields["client_id"])

        if not fields:
            return self.get_project(project_id)
        project = self.db.update_project(project_id, fields)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    def set_notifications_enabled(self, project_id: int, enabled: bool) -> Project:
        """Turn phase-completion email on or off for a project."""
        return self.update_project(project_id, notifications_enabled=enabled)

    def delete_project(self, project_id: int) -> None:
        """Delete a project with its phases, tasks, attachments and codes."""
        if not self.db.delete_project(project_id):
            raise NotFoundError("project", project_id)
        logger.info("project_deleted", project_id=project_id)

    # Client dashboard

    def client_metrics(self, client_id: int) -> ClientProjectMetrics:
        """Portfolio counters for a client."""
        projects = self.db.list_projects(client_id=client_id)
        phases = self.db.list_phases_for_projects([p.id for p in projects])
        tasks = self.db.list_tasks_for_phases([p.id for p in phases])
        return client_metrics(projects, phases, tasks)

    def next_milestone(self, client_id: int, today: date | None = None) -> NextMilestone | None:
        """The client's open phase due soonest."""
        projects = self.db.list_projects(client_id=client_id)
        phases = self.db.list_phases_for_projects([p.id for p in projects])
        return next_milestone(projects, phases, today=today)

    def client_activity(self, client_id: int, limit: int = 10) -> list[ActivityLogEntry]:
        """Recent activity across a client's projects."""
        projects = self.db.list_projects(client_id=client_id)
        return self.db.list_activity([p.id for p in projects], limit=limit)

    def project_activity(self, project_id: int, limit: int = 50) -> list[ActivityLogEntry]:
        """Recent activity for one project."""
        return self.db.list_activity([project_id], limit=limit)
