"""Public tracking routes: read a project by code, opt in to phase emails."""

from fastapi import APIRouter, Depends, HTTPException, status

from projectledger.exceptions import NotFoundError
from projectledger.services import TrackingService
from projectledger.web.deps import get_tracking_service
from projectledger.web.schemas import PreferenceRequest, project_tree_dict

router = APIRouter(prefix="/track", tags=["tracking"])

NOT_FOUND_DETAIL = "Tracking code not found"


@router.get("/{code}")
async def resolve_tracking_code(
    code: str,
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Project tree behind an active tracking code.

    Revoked and unknown codes get the same 404.
    """
    tree = tracking.resolve(code)
    if tree is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return project_tree_dict(tree)


@router.post("/{code}/notifications")
async def set_notification_preference(
    code: str,
    body: PreferenceRequest,
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Opt an email address in or out of phase-completion email."""
    try:
        preference = tracking.subscribe(code, body.email, body.opted_in)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL
        ) from None
    return {"email": preference.email, "opted_in": preference.opted_in}
