"""Admin routes for projects and their tracking codes."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Response, status

from projectledger.db.repository import User
from projectledger.processing.progress import project_progress
from projectledger.services import HierarchyService, ProjectService, TrackingService
from projectledger.web.deps import (
    get_hierarchy_service,
    get_project_service,
    get_tracking_service,
    require_admin,
)
from projectledger.web.schemas import (
    AttachmentCreate,
    PhaseCreate,
    ProjectCreate,
    ProjectUpdate,
    ReorderRequest,
    phase_dict,
    progress_dict,
)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
async def list_projects(
    client_id: int | None = Query(None),
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
):
    """List projects, optionally for one client."""
    return [asdict(p) for p in projects.list_projects(client_id=client_id)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Create a project; its first tracking code is issued with it."""
    project = projects.create_project(**body.model_dump(), user=user.email)
    code = tracking.get_active_code(project.id)
    return {**asdict(project), "tracking_code": code.code if code else None}


@router.get("/{project_id}")
async def get_project(
    project_id: int,
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Project with its full phase/task tree and progress."""
    project = projects.get_project(project_id)
    tree = hierarchy.project_tree(project_id)
    code = tracking.get_active_code(project_id)
    progress = project_progress([p.phase for p in tree], [t for p in tree for t in p.tasks])
    return {
        **asdict(project),
        "tracking_code": code.code if code else None,
        "progress": progress_dict(progress),
        "phases": [phase_dict(p) for p in tree],
    }


@router.patch("/{project_id}")
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
):
    """Update project fields."""
    return asdict(projects.update_project(project_id, **body.model_dump(exclude_unset=True)))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
):
    """Delete a project and everything under it."""
    projects.delete_project(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/activity")
async def project_activity(
    project_id: int,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(require_admin),
    projects: ProjectService = Depends(get_project_service),
):
    """Recent activity entries for a project."""
    projects.get_project(project_id)
    return [asdict(e) for e in projects.project_activity(project_id, limit=limit)]


@router.get("/{project_id}/tracking-codes")
async def list_tracking_codes(
    project_id: int,
    user: User = Depends(require_admin),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Every code issued for the project, newest first."""
    return [asdict(c) for c in tracking.list_codes(project_id)]


@router.post("/{project_id}/tracking-code/regenerate")
async def regenerate_tracking_code(
    project_id: int,
    user: User = Depends(require_admin),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Revoke the active code and issue a new one."""
    return asdict(tracking.regenerate(project_id, user=user.email))


@router.get("/{project_id}/phases")
async def list_phases(
    project_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Phases with tasks, in display order."""
    return [phase_dict(p) for p in hierarchy.project_tree(project_id)]


@router.post("/{project_id}/phases", status_code=status.HTTP_201_CREATED)
async def create_phase(
    project_id: int,
    body: PhaseCreate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Add a phase to the project."""
    return asdict(hierarchy.create_phase(project_id, **body.model_dump()))


@router.put("/{project_id}/phases/order")
async def reorder_phases(
    project_id: int,
    body: ReorderRequest,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Apply a full phase ordering."""
    return {"reordered": hierarchy.reorder_phases(project_id, body.ordered_ids)}


@router.get("/{project_id}/attachments")
async def list_attachments(
    project_id: int,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Attachments of the project, newest first."""
    return [asdict(a) for a in hierarchy.list_attachments(project_id=project_id)]


@router.post("/{project_id}/attachments", status_code=status.HTTP_201_CREATED)
async def add_attachment(
    project_id: int,
    body: AttachmentCreate,
    user: User = Depends(require_admin),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
):
    """Record an uploaded file."""
    return asdict(hierarchy.add_attachment(project_id, **body.model_dump()))
