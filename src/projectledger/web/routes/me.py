"""Routes for the signed-in client: dashboard metrics, notifications, invoices."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from projectledger.db import Database
from projectledger.db.repository import User
from projectledger.services import BillingService, ProjectService
from projectledger.web.deps import get_billing_service, get_db, get_project_service, require_user

router = APIRouter(prefix="/me", tags=["me"])


@router.get("")
async def whoami(user: User = Depends(require_user)):
    """The resolved user."""
    return asdict(user)


@router.get("/metrics")
async def my_metrics(
    user: User = Depends(require_user),
    projects: ProjectService = Depends(get_project_service),
):
    """Portfolio counters and the next milestone."""
    milestone = projects.next_milestone(user.id)
    return {
        "metrics": asdict(projects.client_metrics(user.id)),
        "next_milestone": asdict(milestone) if milestone else None,
    }


@router.get("/projects")
async def my_projects(
    user: User = Depends(require_user),
    projects: ProjectService = Depends(get_project_service),
):
    """Projects assigned to the user."""
    return [asdict(p) for p in projects.list_projects(client_id=user.id)]


@router.get("/activity")
async def my_activity(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_user),
    projects: ProjectService = Depends(get_project_service),
):
    """Recent activity across the user's projects."""
    return [asdict(e) for e in projects.client_activity(user.id, limit=limit)]


@router.get("/notifications")
async def my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_user),
    db: Database = Depends(get_db),
):
    """Notifications, newest first, with the unread count."""
    items = db.list_notifications(user.id, limit=limit, unread_only=unread_only)
    return {
        "unread_count": db.count_unread_notifications(user.id),
        "notifications": [asdict(n) for n in items],
    }


@router.post("/notifications/read-all")
async def mark_all_read(
    user: User = Depends(require_user),
    db: Database = Depends(get_db),
):
    """Mark every notification read."""
    return {"updated": db.mark_all_notifications_read(user.id)}


@router.post("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user: User = Depends(require_user),
    db: Database = Depends(get_db),
):
    """Mark one of the user's notifications read."""
    notification = db.get_notification(notification_id)
    if notification is None or notification.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    db.mark_notification_read(notification_id)
    return {"updated": 1}


@router.get("/invoices")
async def my_invoices(
    user: User = Depends(require_user),
    billing: BillingService = Depends(get_billing_service),
):
    """The user's invoices with a billing summary."""
    return {
        "summary": asdict(billing.billing_summary(user.id)),
        "invoices": [asdict(i) for i in billing.list_invoices(client_id=user.id)],
    }
