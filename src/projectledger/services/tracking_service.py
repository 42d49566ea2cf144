"""Tracking code directory and phase-completion email preferences."""

import re
import secrets
from dataclasses import dataclass, field

from .. import audit
from ..config import TrackingConfig
from ..db import Database
from ..db.repository import Attachment, NotificationPreference, Project, TrackingCode
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..logging import get_logger
from ..processing.progress import PhaseProgress, ProjectProgress, build_phase_tree, project_progress

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Trim and lower-case an address, rejecting obviously invalid ones."""
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError(f"Invalid email address: {email!r}", field="email")
    return normalized


@dataclass
class ProjectTree:
    """Everything a tracking page shows for one project."""

    project: Project
    code: str
    phases: list[PhaseProgress] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def progress(self) -> ProjectProgress:
        return project_progress(
            [p.phase for p in self.phases],
            [t for p in self.phases for t in p.tasks],
        )

    @property
    def project_attachments(self) -> list[Attachment]:
        """Attachments not scoped to a phase or task."""
        return [a for a in self.attachments if a.phase_id is None and a.task_id is None]


class TrackingService:
    """Resolves public tracking codes and rotates them."""

    def __init__(self, db: Database, config: TrackingConfig | None = None):
        self.db = db
        self.config = config or TrackingConfig()

    def generate_code(self) -> str:
        """Generate an unused code such as ``TC-7KQ2MX``.

        Raises:
            ConflictError: If every attempt collided with an existing code.
        """
        for _ in range(self.config.max_generation_attempts):
            body = "".join(
                secrets.choice(self.config.alphabet) for _ in range(self.config.code_length)
            )
            code = f"{self.config.code_prefix}{body}"
            if not self.db.tracking_code_exists(code):
                return code
        raise ConflictError(
            f"Could not generate a unique tracking code after "
            f"{self.config.max_generation_attempts} attempts",
            constraint="tracking_codes.code",
        )

    def resolve(self, code: str) -> ProjectTree | None:
        """Assemble the project tree behind an active code.

        Inactive and unknown codes both return None.
        """
        tracking_code = self.db.get_active_tracking_code((code or "").strip())
        if tracking_code is None:
            return None

        project = self.db.get_project(tracking_code.project_id)
        if project is None:
            return None

        phases = self.db.list_phases(project.id)
        tasks = self.db.list_tasks_for_phases([p.id for p in phases])
        attachments = self.db.list_attachments(project_id=project.id)
        return ProjectTree(
            project=project,
            code=tracking_code.code,
            phases=build_phase_tree(phases, tasks, attachments),
            attachments=attachments,
        )

    def get_active_code(self, project_id: int) -> TrackingCode | None:
        """Active code for a project, if any."""
        return self.db.get_active_code_for_project(project_id)

    def list_codes(self, project_id: int) -> list[TrackingCode]:
        """All codes issued for a project, newest first."""
        return self.db.list_tracking_codes(project_id)

    def regenerate(self, project_id: int, user: str | None = None) -> TrackingCode:
        """Replace the project's active code with a fresh one.

        Raises:
            NotFoundError: If the project does not exist.
            ConflictError: If no unique code could be generated, or a
                concurrent rotation won the race.
        """
        if self.db.get_project(project_id) is None:
            raise NotFoundError("project", project_id)

        new_code, deactivated = self.db.rotate_tracking_code(project_id, self.generate_code())
        audit.log_tracking_code_regenerated(project_id, deactivated, user=user)
        logger.info("tracking_code_regenerated", project_id=project_id, deactivated=deactivated)
        return new_code

    # Notification preferences

    def set_preference(
        self,
        tracking_code_id: int,
        email: str,
        opted_in: bool = True,
    ) -> NotificationPreference:
        """Upsert the opt-in flag for an address on a tracking code."""
        return self.db.upsert_notification_preference(
            tracking_code_id, normalize_email(email), opted_in
        )

    def subscribe(self, code: str, email: str, opted_in: bool = True) -> NotificationPreference:
        """Public opt-in (or opt-out) by code string.

        Raises:
            NotFoundError: If the code is unknown or no longer active.
        """
        email = normalize_email(email)
        tracking_code = self.db.get_active_tracking_code((code or "").strip())
        if tracking_code is None:
            raise NotFoundError("tracking code", code)
        return self.db.upsert_notification_preference(tracking_code.id, email, opted_in)

    def list_preferences(self, tracking_code_id: int) -> list[NotificationPreference]:
        """All preferences for a code, newest first."""
        return self.db.list_notification_preferences(tracking_code_id)

    def list_opted_in(self, tracking_code_id: int) -> list[NotificationPreference]:
        """Preferences that currently want phase-completion email."""
        return self.db.list_notification_preferences(tracking_code_id, opted_in_only=True)
