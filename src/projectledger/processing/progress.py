"""Progress roll-up for phases, projects and a client's portfolio."""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from ..db.repository import Attachment, Phase, Project, Task
from .rounding import round_half_up

OPEN_PHASE_STATUSES = ("pending", "in_progress")


def phase_completion(tasks: list[Task]) -> int:
    """Mean task completion, rounded half-up; 0 for a phase without tasks."""
    if not tasks:
        return 0
    return round_half_up(sum(t.completion_percentage for t in tasks) / len(tasks))


def is_phase_complete(phase: Phase, tasks: list[Task]) -> bool:
    """A phase is complete when all of its tasks are at 100%.

    A phase without tasks is complete only if it was marked completed.
    """
    if tasks:
        return all(t.completion_percentage >= 100 for t in tasks)
    return phase.status == "completed"


def group_tasks(tasks: Iterable[Task]) -> dict[int, list[Task]]:
    """Group tasks by phase id, preserving input order."""
    grouped: dict[int, list[Task]] = defaultdict(list)
    for task in tasks:
        grouped[task.phase_id].append(task)
    return grouped


@dataclass
class PhaseProgress:
    """A phase with its tasks and attachments, as shown on tracking pages."""

    phase: Phase
    tasks: list[Task] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def completion_percentage(self) -> int:
        return phase_completion(self.tasks)

    @property
    def is_complete(self) -> bool:
        return is_phase_complete(self.phase, self.tasks)

    @property
    def is_in_progress(self) -> bool:
        """Started but not complete."""
        if self.is_complete:
            return False
        return self.phase.status == "in_progress" or self.completion_percentage > 0


@dataclass
class ProjectProgress:
    """Phase counts and overall completion for one project."""

    total_phases: int = 0
    completed_phases: int = 0
    in_progress_phases: int = 0

    @property
    def completion_percentage(self) -> int:
        if self.total_phases == 0:
            return 0
        return round_half_up(100 * self.completed_phases / self.total_phases)

    @property
    def is_complete(self) -> bool:
        return self.total_phases > 0 and self.completed_phases == self.total_phases


def project_progress(phases: list[Phase], tasks: Iterable[Task]) -> ProjectProgress:
    """Roll phase completion up to the project.

    Args:
        phases: Phases of a single project.
        tasks: Tasks of those phases (extra tasks are ignored).

    Returns:
        ProjectProgress with counts; a project without phases reports zeros.
    """
    by_phase = group_tasks(tasks)
    progress = ProjectProgress(total_phases=len(phases))
    for phase in phases:
        item = PhaseProgress(phase=phase, tasks=by_phase.get(phase.id, []))
        if item.is_complete:
            progress.completed_phases += 1
        elif item.is_in_progress:
            progress.in_progress_phases += 1
    return progress


def build_phase_tree(
    phases: list[Phase],
    tasks: Iterable[Task],
    attachments: Iterable[Attachment] = (),
) -> list[PhaseProgress]:
    """Nest tasks and phase-scoped attachments under their phases.

    Phases keep the order they were given in (callers pass them in
    display order). Attachments scoped to a task are placed with the
    task's phase.
    """
    by_phase = group_tasks(tasks)
    task_phase = {t.id: t.phase_id for ts in by_phase.values() for t in ts}
    attachments_by_phase: dict[int, list[Attachment]] = defaultdict(list)
    for attachment in attachments:
        phase_id = attachment.phase_id
        if phase_id is None and attachment.task_id is not None:
            phase_id = task_phase.get(attachment.task_id)
        if phase_id is not None:
            attachments_by_phase[phase_id].append(attachment)

    return [
        PhaseProgress(
            phase=phase,
            tasks=by_phase.get(phase.id, []),
            attachments=attachments_by_phase.get(phase.id, []),
        )
        for phase in phases
    ]


@dataclass
class ClientProjectMetrics:
    """Dashboard counters across all of a client's projects."""

    total_projects: int = 0
    in_progress_count: int = 0
    completed_count: int = 0
    overall_completion_percentage: int = 0


def client_metrics(
    projects: list[Project],
    phases: list[Phase],
    tasks: Iterable[Task],
) -> ClientProjectMetrics:
    """Compute portfolio metrics for one client.

    Overall completion is completed phases over all phases, across every
    project. A project with no phases counts as in progress.
    """
    metrics = ClientProjectMetrics(total_projects=len(projects))
    if not projects:
        return metrics

    by_project: dict[int, list[Phase]] = defaultdict(list)
    for phase in phases:
        by_project[phase.project_id].append(phase)
    task_list = list(tasks)

    total_phases = 0
    completed_phases = 0
    for project in projects:
        progress = project_progress(by_project.get(project.id, []), task_list)
        total_phases += progress.total_phases
        completed_phases += progress.completed_phases
        if progress.is_complete:
            metrics.completed_count += 1
        else:
            metrics.in_progress_count += 1

    if total_phases:
        metrics.overall_completion_percentage = round_half_up(
            100 * completed_phases / total_phases
        )
    return metrics


@dataclass
class NextMilestone:
    """The open phase due soonest across a client's projects."""

    project_id: int
    project_title: str
    phase_id: int
    phase_name: str
    estimated_end_date: date
    days_remaining: int  # negative when overdue


def next_milestone(
    projects: list[Project],
    phases: list[Phase],
    today: date | None = None,
) -> NextMilestone | None:
    """Pick the pending or in-progress phase with the earliest estimated end.

    Ties on the end date go to the lower phase id.
    """
    titles = {p.id: p.title for p in projects}
    candidates = [
        p
        for p in phases
        if p.project_id in titles
        and p.status in OPEN_PHASE_STATUSES
        and p.estimated_end_date is not None
    ]
    if not candidates:
        return None

    phase = min(candidates, key=lambda p: (p.estimated_end_date, p.id))
    today = today or date.today()
    return NextMilestone(
        project_id=phase.project_id,
        project_title=titles[phase.project_id],
        phase_id=phase.id,
        phase_name=phase.name,
        estimated_end_date=phase.estimated_end_date,
        days_remaining=(phase.estimated_end_date - today).days,
    )
