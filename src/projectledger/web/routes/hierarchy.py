"""Admin routes for phases, tasks and attachments."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Response, status

from projectledger.db.repository import User
from projectledger.services import HierarchyService
from projectledger.web.deps import get_hierarchy_service, require_admin
from projectledger.web.schemas import (
    CompletionUpdate,
    PhaseUpdate,
    ReorderRequest,
    TaskCreate,
    TaskUpdate,
)

router = APIRouter(tags=["hierarchy"])


@router.get("/phases/{phase_id}")
async def get_phase(
    phase_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Phase with its tasks."""
    phase = hierarchy.get_phase(phase_id)
    return {
        **asdict(phase),
        "tasks": [asdict(t) for t in hierarchy.list_tasks(phase_id)],
        "attachment_count": hierarchy.count_attachments(phase_id=phase_id),
    }


@router.patch("/phases/{phase_id}")
async def update_phase(
    phase_id: int,
    body: PhaseUpdate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Update phase fields."""
    return asdict(hierarchy.update_phase(phase_id, **body.model_dump(exclude_unset=True)))


@router.delete("/phases/{phase_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_phase(
    phase_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Delete a phase with its tasks and attachments."""
    hierarchy.delete_phase(phase_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/phases/{phase_id}/start")
async def start_phase(
    phase_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Mark a phase in progress."""
    return asdict(hierarchy.start_phase(phase_id))


@router.post("/phases/{phase_id}/complete")
async def complete_phase(
    phase_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Complete a phase and report how many followers were emailed."""
    result = hierarchy.complete_phase(phase_id, user_id=user.id, user=user.email)
    notification = result.notification
    return {
        "phase": asdict(result.phase),
        "notification": asdict(notification) if notification else None,
    }


@router.post("/phases/{phase_id}/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    phase_id: int,
    body: TaskCreate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Add a task to a phase."""
    return asdict(hierarchy.create_task(phase_id, **body.model_dump()))


@router.put("/phases/{phase_id}/tasks/order")
async def reorder_tasks(
    phase_id: int,
    body: ReorderRequest,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Apply a full task ordering within a phase."""
    return {"reordered": hierarchy.reorder_tasks(phase_id, body.ordered_ids)}


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: int,
    body: TaskUpdate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Update task fields."""
    return asdict(hierarchy.update_task(task_id, **body.model_dump(exclude_unset=True)))


@router.put("/tasks/{task_id}/completion")
async def update_task_completion(
    task_id: int,
    body: CompletionUpdate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Set task completion (fractional values are rounded)."""
    return asdict(hierarchy.update_task_completion(task_id, body.completion_percentage))


@router.post("/tasks/{task_id}/complete")
async def complete_task(
    task_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Set a task to 100%."""
    return asdict(hierarchy.complete_task(task_id))


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Delete a task."""
    hierarchy.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(
    attachment_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Delete an attachment record."""
    hierarchy.delete_attachment(attachment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
