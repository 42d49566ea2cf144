"""FastAPI dependency injection for the HTTP API."""

from typing import Generator

from fastapi import Depends, HTTPException, Request, status

from projectledger.config import Config
from projectledger.db import Database
from projectledger.db.repository import User
from projectledger.delivery import EmailPhaseNotificationSender
from projectledger.identity import lookup_user_by_auth_id
from projectledger.services import (
    BillingService,
    HierarchyService,
    PaymentService,
    ProjectService,
    SideEffectDispatcher,
    TrackingService,
)


def get_config(request: Request) -> Config:
    """Get the application configuration from app state."""
    return request.app.state.config


def get_db(config: Config = Depends(get_config)) -> Generator[Database, None, None]:
    """Get a database connection.

    Yields a Database instance that is automatically closed after the request.
    """
    db = Database(config.database.path)
    db.initialize()
    try:
        yield db
    finally:
        db.close()


def get_current_user_optional(
    request: Request,
    config: Config = Depends(get_config),
    db: Database = Depends(get_db),
) -> User | None:
    """Resolve the identity header to a user, or None.

    A lookup that times out is treated like an unknown identity.
    """
    auth_user_id = request.headers.get(config.web.identity_header)
    if not auth_user_id:
        return None
    return lookup_user_by_auth_id(db, auth_user_id, timeout=config.identity.lookup_timeout_seconds)


def get_current_user(user: User | None = Depends(get_current_user_optional)) -> User:
    """Get the current authenticated user.

    Raises HTTPException 401 if not authenticated.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


require_user = get_current_user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the current user to be an admin.

    Raises HTTPException 403 if user is not an admin.
    """
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def get_dispatcher(db: Database = Depends(get_db)) -> SideEffectDispatcher:
    return SideEffectDispatcher(db)


def get_tracking_service(
    db: Database = Depends(get_db),
    config: Config = Depends(get_config),
) -> TrackingService:
    return TrackingService(db, config.tracking)


def get_project_service(
    db: Database = Depends(get_db),
    tracking: TrackingService = Depends(get_tracking_service),
) -> ProjectService:
    return ProjectService(db, tracking)


def get_hierarchy_service(
    db: Database = Depends(get_db),
    config: Config = Depends(get_config),
) -> HierarchyService:
    return HierarchyService(db, EmailPhaseNotificationSender(db, config))


def get_billing_service(
    db: Database = Depends(get_db),
    config: Config = Depends(get_config),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BillingService:
    return BillingService(db, dispatcher, config.billing)


def get_payment_service(
    db: Database = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> PaymentService:
    return PaymentService(db, dispatcher)
