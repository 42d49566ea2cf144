"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from projectledger.config import Config, DatabaseConfig, EmailConfig, LoggingConfig, OutputConfig
from projectledger.db import Database
from projectledger.services import (
    BillingService,
    HierarchyService,
    PaymentService,
    ProjectService,
    SideEffectDispatcher,
    TrackingService,
)


class RecordingNotificationSink:
    """Collects notifications instead of storing them."""

    def __init__(self):
        self.calls = []

    def notify(self, user_id, type, title, message, data):
        self.calls.append(
            {"user_id": user_id, "type": type, "title": title, "message": message, "data": data}
        )


class RecordingActivitySink:
    """Collects activity entries instead of storing them."""

    def __init__(self):
        self.calls = []

    def append(self, project_id, event_type, event_data, user_id=None):
        self.calls.append(
            {
                "project_id": project_id,
                "event_type": event_type,
                "event_data": event_data,
                "user_id": user_id,
            }
        )


class FailingSink:
    """Sink whose every call raises."""

    def notify(self, *args, **kwargs):
        raise RuntimeError("notification store unavailable")

    def append(self, *args, **kwargs):
        raise RuntimeError("activity store unavailable")


@pytest.fixture
def temp_db(tmp_path: Path) -> str:
    """Create a temporary database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db(temp_db):
    """Create initialized database."""
    database = Database(temp_db)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def admin(db):
    """An admin user."""
    return db.create_user("auth|admin", "admin@example.com", name="Admin", role="admin")


@pytest.fixture
def client_user(db):
    """A client user."""
    return db.create_user("auth|client", "client@example.com", name="Client", role="client")


@pytest.fixture
def tracking_service(db):
    return TrackingService(db)


@pytest.fixture
def project_service(db, tracking_service):
    return ProjectService(db, tracking_service)


@pytest.fixture
def hierarchy_service(db):
    return HierarchyService(db)


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def activity():
    return RecordingActivitySink()


@pytest.fixture
def dispatcher(db, notifications, activity):
    """Dispatcher wired to recording sinks."""
    return SideEffectDispatcher(db, notifications=notifications, activity=activity)


@pytest.fixture
def billing_service(db, dispatcher):
    return BillingService(db, dispatcher)


@pytest.fixture
def payment_service(db, dispatcher):
    return PaymentService(db, dispatcher)


@pytest.fixture
def project(project_service, client_user):
    """A published project owned by the client."""
    return project_service.create_project(
        "Kitchen remodel", description="Full remodel", status="published",
        client_id=client_user.id,
    )


@pytest.fixture
def app_config(tmp_path: Path, temp_db) -> Config:
    """Dev-mode config writing emails under tmp_path."""
    return Config(
        dev_mode=True,
        database=DatabaseConfig(path=temp_db),
        email=EmailConfig(from_address="updates@example.com"),
        output=OutputConfig(email_dir=tmp_path / "emails"),
        logging=LoggingConfig(enabled=True, level="WARNING"),
    )


@pytest.fixture
def failing_sink():
    return FailingSink()
