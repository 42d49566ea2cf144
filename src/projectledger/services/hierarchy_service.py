"""Phases, tasks and attachments of a project."""

from dataclasses import dataclass
from datetime import date

from .. import audit
from ..db import Database
from ..db.repository import Attachment, Phase, Task
from ..delivery import PhaseNotificationResult, PhaseNotificationSender
from ..exceptions import NotFoundError, ValidationError
from ..logging import get_logger
from ..processing.progress import PhaseProgress, build_phase_tree
from ..processing.rounding import round_half_up

logger = get_logger(__name__)

PHASE_STATUSES = ("pending", "in_progress", "completed")
ATTACHMENT_TYPES = ("image", "pdf", "video_embed")

_PHASE_FIELDS = {
    "name",
    "description",
    "status",
    "estimated_start_date",
    "estimated_end_date",
    "actual_start_date",
    "actual_end_date",
    "notify_on_complete",
    "estimated_cost",
}
_TASK_FIELDS = {
    "name",
    "description",
    "completion_percentage",
    "developer_notes",
    "estimated_cost",
}


def _require_name(name: str | None, entity: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{entity.capitalize()} name is required", field="name")
    return name


def validate_percentage(value: float | int) -> int:
    """Check 0 <= value <= 100 and round half-up to an integer."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"Completion percentage must be a number, got {value!r}",
            field="completion_percentage",
        )
    if not 0 <= value <= 100:
        raise ValidationError(
            f"Completion percentage must be between 0 and 100, got {value}",
            field="completion_percentage",
        )
    return round_half_up(value)


def _check_cost(cost: int | None) -> None:
    if cost is not None and cost < 0:
        raise ValidationError("Estimated cost cannot be negative", field="estimated_cost")


def _check_phase_fields(fields: dict) -> dict:
    unknown = set(fields) - _PHASE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown phase fields: {sorted(unknown)}")
    if "name" in fields:
        fields["name"] = _require_name(fields["name"], "phase")
    if "description" in fields and fields["description"] is None:
        fields["description"] = ""
    if "status" in fields and fields["status"] not in PHASE_STATUSES:
        raise ValidationError(f"Invalid phase status: {fields['status']}", field="status")
    _check_cost(fields.get("estimated_cost"))
    start, end = fields.get("estimated_start_date"), fields.get("estimated_end_date")
    if start and end and end < start:
        raise ValidationError(
            "Estimated end date cannot be before start date", field="estimated_end_date"
        )
    return fields


def _check_task_fields(fields: dict) -> dict:
    unknown = set(fields) - _TASK_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task fields: {sorted(unknown)}")
    if "name" in fields:
        fields["name"] = _require_name(fields["name"], "task")
    if "completion_percentage" in fields:
        fields["completion_percentage"] = validate_percentage(fields["completion_percentage"])
    _check_cost(fields.get("estimated_cost"))
    return fields


@dataclass
class PhaseCompletion:
    """A completed phase and the outcome of its email notice.

    ``notification`` is None when no email was due (phase or project has
    notifications off, no active code, or no sender configured).
    """

    phase: Phase
    notification: PhaseNotificationResult | None = None


class HierarchyService:
    """Service for the phase/task tree of a project."""

    def __init__(self, db: Database, phase_notifier: PhaseNotificationSender | None = None):
        self.db = db
        self.phase_notifier = phase_notifier

    def _require_project(self, project_id: int):
        project = self.db.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    # Phases

    def create_phase(
        self,
        project_id: int,
        name: str,
        description: str | None = "",
        sort_order: int | None = None,
        status: str = "pending",
        estimated_start_date: date | None = None,
        estimated_end_date: date | None = None,
        notify_on_complete: bool = True,
        estimated_cost: int | None = None,
    ) -> Phase:
        """Create a phase, appended after its siblings unless sort_order is given."""
        values = _check_phase_fields(
            {
                "name": name,
                "description": description,
                "status": status,
                "estimated_start_date": estimated_start_date,
                "estimated_end_date": estimated_end_date,
                "notify_on_complete": notify_on_complete,
                "estimated_cost": estimated_cost,
            }
        )
        self._require_project(project_id)
        return self.db.create_phase({**values, "project_id": project_id, "sort_order": sort_order})

    def get_phase(self, phase_id: int) -> Phase:
        """Get a phase or raise NotFoundError."""
        phase = self.db.get_phase(phase_id)
        if phase is None:
            raise NotFoundError("phase", phase_id)
        return phase

    def list_phases(self, project_id: int) -> list[Phase]:
        """Phases of a project ordered by sort_order."""
        return self.db.list_phases(project_id)

    def update_phase(self, phase_id: int, **fields) -> Phase:
        """Update phase fields; sort_order changes go through reorder_phases."""
        fields = _check_phase_fields(fields)
        if not fields:
            return self.get_phase(phase_id)
        if "estimated_start_date" in fields or "estimated_end_date" in fields:
            current = self.get_phase(phase_id)
            _check_phase_fields(
                {
                    "estimated_start_date": fields.get(
                        "estimated_start_date", current.estimated_start_date
                    ),
                    "estimated_end_date": fields.get(
                        "estimated_end_date", current.estimated_end_date
                    ),
                }
            )
        phase = self.db.update_phase(phase_id, fields)
        if phase is None:
            raise NotFoundError("phase", phase_id)
        return phase

    def delete_phase(self, phase_id: int) -> None:
        """Delete a phase, its tasks and every attachment scoped to either."""
        if not self.db.delete_phase(phase_id):
            raise NotFoundError("phase", phase_id)
        logger.info("phase_deleted", phase_id=phase_id)

    def reorder_phases(self, project_id: int, ordered_ids: list[int]) -> int:
        """Set phase order to ``ordered_ids``; an empty list is a no-op."""
        if not ordered_ids:
            return 0
        self._require_project(project_id)
        return self.db.reorder_phases(project_id, ordered_ids)

    def start_phase(self, phase_id: int, today: date | None = None) -> Phase:
        """Mark a phase in progress and stamp its actual start date."""
        phase = self.get_phase(phase_id)
        return self.update_phase(
            phase.id,
            status="in_progress",
            actual_start_date=phase.actual_start_date or today or date.today(),
        )

    def complete_phase(
        self,
        phase_id: int,
        user_id: int | None = None,
        user: str | None = None,
        today: date | None = None,
    ) -> PhaseCompletion:
        """Mark a phase completed and notify followers when due.

        The phase update stands even if the activity entry or the email
        notice fails.
        """
        phase = self.update_phase(
            phase_id, status="completed", actual_end_date=today or date.today()
        )
        audit.log_phase_completed(phase.project_id, phase.id, phase.name, user=user)

        try:
            self.db.log_activity(
                phase.project_id,
                "phase_completed",
                {"phase_id": phase.id, "phase_name": phase.name},
                user_id=user_id,
            )
        except Exception as e:
            logger.warning("side_effect_failed", effect="phase_completed.activity",
                           phase_id=phase.id, error=str(e))

        return PhaseCompletion(phase=phase, notification=self._notify_phase_complete(phase))

    def _notify_phase_complete(self, phase: Phase) -> PhaseNotificationResult | None:
        if self.phase_notifier is None or not phase.notify_on_complete:
            return None
        project = self.db.get_project(phase.project_id)
        if project is None or not project.notifications_enabled:
            return None
        code = self.db.get_active_code_for_project(project.id)
        if code is None:
            logger.warning("phase_email_skipped", project_id=project.id, phase_id=phase.id,
                           reason="no active tracking code")
            return PhaseNotificationResult(
                success=False, error=f"No active tracking code for project {project.id}"
            )
        return self.phase_notifier.send_phase_completion(
            project.id, phase.id, phase.name, code.code
        )

    # Tasks

    def create_task(
        self,
        phase_id: int,
        name: str,
        description: str | None = None,
        completion_percentage: float | int = 0,
        sort_order: int | None = None,
        developer_notes: str | None = None,
        estimated_cost: int | None = None,
    ) -> Task:
        """Create a task, appended after its siblings unless sort_order is given."""
        values = _check_task_fields(
            {
                "name": name,
                "description": description,
                "completion_percentage": completion_percentage,
                "developer_notes": developer_notes,
                "estimated_cost": estimated_cost,
            }
        )
        self.get_phase(phase_id)
        return self.db.create_task({**values, "phase_id": phase_id, "sort_order": sort_order})

    def get_task(self, task_id: int) -> Task:
        """Get a task or raise NotFoundError."""
        task = self.db.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def list_tasks(self, phase_id: int) -> list[Task]:
        """Tasks of a phase ordered by sort_order."""
        return self.db.list_tasks(phase_id)

    def list_tasks_for_phases(self, phase_ids: list[int]) -> list[Task]:
        """Tasks of several phases, grouped by phase and ordered within each."""
        return self.db.list_tasks_for_phases(phase_ids)

    def update_task(self, task_id: int, **fields) -> Task:
        """Update task fields; an out-of-range percentage is rejected."""
        fields = _check_task_fields(fields)
        if not fields:
            return self.get_task(task_id)
        task = self.db.update_task(task_id, fields)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def update_task_completion(self, task_id: int, percentage: float | int) -> Task:
        """Set completion, rounding fractional input half-up (75.7 -> 76)."""
        return self.update_task(task_id, completion_percentage=percentage)

    def complete_task(self, task_id: int) -> Task:
        """Set a task to 100%."""
        return self.update_task(task_id, completion_percentage=100)

    def delete_task(self, task_id: int) -> None:
        """Delete a task and its task-scoped attachments."""
        if not self.db.delete_task(task_id):
            raise NotFoundError("task", task_id)

    def reorder_tasks(self, phase_id: int, ordered_ids: list[int]) -> int:
        """Set task order within a phase; an empty list is a no-op."""
        if not ordered_ids:
            return 0
        self.get_phase(phase_id)
        return self.db.reorder_tasks(phase_id, ordered_ids)

    def project_tree(self, project_id: int) -> list[PhaseProgress]:
        """Admin view: every phase with its tasks and attachments."""
        self._require_project(project_id)
        phases = self.db.list_phases(project_id)
        tasks = self.db.list_tasks_for_phases([p.id for p in phases])
        attachments = self.db.list_attachments(project_id=project_id)
        return build_phase_tree(phases, tasks, attachments)

    # Attachments

    def add_attachment(
        self,
        project_id: int,
        file_url: str,
        file_type: str,
        file_name: str,
        phase_id: int | None = None,
        task_id: int | None = None,
    ) -> Attachment:
        """Record an uploaded file against a project, phase or task."""
        file_url = (file_url or "").strip()
        file_name = (file_name or "").strip()
        if not file_url:
            raise ValidationError("File URL is required", field="file_url")
        if not file_name:
            raise ValidationError("File name is required", field="file_name")
        if file_type not in ATTACHMENT_TYPES:
            raise ValidationError(f"Invalid file type: {file_type}", field="file_type")

        self._require_project(project_id)
        if phase_id is not None and self.get_phase(phase_id).project_id != project_id:
            raise ValidationError(
                f"Phase {phase_id} does not belong to project {project_id}", field="phase_id"
            )
        if task_id is not None:
            task_phase = self.get_phase(self.get_task(task_id).phase_id)
            if task_phase.project_id != project_id:
                raise ValidationError(
                    f"Task {task_id} does not belong to project {project_id}", field="task_id"
                )

        return self.db.create_attachment(
            {
                "project_id": project_id,
                "phase_id": phase_id,
                "task_id": task_id,
                "file_url": file_url,
                "file_type": file_type,
                "file_name": file_name,
            }
        )

    def get_attachment(self, attachment_id: int) -> Attachment:
        """Get an attachment or raise NotFoundError."""
        attachment = self.db.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("attachment", attachment_id)
        return attachment

    def list_attachments(
        self,
        project_id: int | None = None,
        phase_id: int | None = None,
        task_id: int | None = None,
    ) -> list[Attachment]:
        """Attachments filtered by project, phase or task, newest first."""
        return self.db.list_attachments(project_id=project_id, phase_id=phase_id, task_id=task_id)

    def count_attachments(self, phase_id: int | None = None, task_id: int | None = None) -> int:
        """Number of attachments on a phase or task."""
        return self.db.count_attachments(phase_id=phase_id, task_id=task_id)

    def delete_attachment(self, attachment_id: int) -> None:
        """Remove an attachment record."""
        if not self.db.delete_attachment(attachment_id):
            raise NotFoundError("attachment", attachment_id)
