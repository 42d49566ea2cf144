"""Tests for phase-completion email."""

from datetime import date

import pytest
from sqlalchemy import update

from projectledger.db.tables import tracking_codes
from projectledger.delivery import EmailPhaseNotificationSender, send_email
from projectledger.delivery.phase_email import generate_phase_email_html
from projectledger.services import HierarchyService


@pytest.fixture
def followers(db, tracking_service, project):
    """Two opted-in addresses and one that opted out."""
    code = db.get_active_code_for_project(project.id)
    tracking_service.subscribe(code.code, "ann@example.com")
    tracking_service.subscribe(code.code, "bob@example.com")
    tracking_service.subscribe(code.code, "cy@example.com", opted_in=False)
    return code


@pytest.fixture
def sent():
    """Transport that records messages."""
    return []


@pytest.fixture
def sender(db, app_config, sent):
    def transport(to_email, subject, html_body, config):
        sent.append((to_email, subject))

    return EmailPhaseNotificationSender(db, app_config, transport=transport)


class TestCompletePhaseNotification:
    """Tests for email sent when a phase completes."""

    def test_emails_opted_in_followers(self, db, project, followers, sender, sent):
        service = HierarchyService(db, sender)
        phase = service.create_phase(project.id, "Framing")

        result = service.complete_phase(phase.id, today=date(2025, 5, 1))

        assert result.notification.success is True
        assert result.notification.emails_sent == 2
        assert sorted(to for to, _ in sent) == ["ann@example.com", "bob@example.com"]
        assert sent[0][1] == "Kitchen remodel: Framing is complete"

    def test_phase_opt_out(self, db, project, followers, sender, sent):
        service = HierarchyService(db, sender)
        phase = service.create_phase(project.id, "Framing", notify_on_complete=False)

        result = service.complete_phase(phase.id)

        assert result.notification is None
        assert sent == []

    def test_project_notifications_disabled(
        self, db, project_service, project, followers, sender, sent
    ):
        project_service.set_notifications_enabled(project.id, False)
        service = HierarchyService(db, sender)
        phase = service.create_phase(project.id, "Framing")

        result = service.complete_phase(phase.id)

        assert result.notification is None
        assert sent == []
        assert db.get_phase(phase.id).status == "completed"

    def test_no_active_code(self, db, project, followers, sender, sent):
        """Completion still succeeds; the email batch reports the missing code."""
        with db.engine.begin() as conn:
            conn.execute(
                update(tracking_codes)
                .where(tracking_codes.c.project_id == project.id)
                .values(is_active=False)
            )
        service = HierarchyService(db, sender)
        phase = service.create_phase(project.id, "Framing")

        result = service.complete_phase(phase.id)

        assert db.get_phase(phase.id).status == "completed"
        assert result.notification.success is False
        assert result.notification.emails_sent == 0
        assert "tracking code" in result.notification.error
        assert sent == []

    def test_one_recipient_fails(self, db, app_config, project, followers):
        """Other recipients still get mail; the failure is reported."""
        delivered = []

        def flaky(to_email, subject, html_body, config):
            if to_email.startswith("ann"):
                raise ConnectionError("mailbox unavailable")
            delivered.append(to_email)

        sender = EmailPhaseNotificationSender(db, app_config, transport=flaky)
        phase = HierarchyService(db).create_phase(project.id, "Framing")

        result = sender.send_phase_completion(project.id, phase.id, phase.name, followers.code)

        assert result.success is False
        assert result.emails_sent == 1
        assert "mailbox unavailable" in result.error
        assert delivered == ["bob@example.com"]

    def test_revoked_code(self, db, tracking_service, project, followers, sender):
        tracking_service.regenerate(project.id)
        result = sender.send_phase_completion(project.id, 1, "Framing", followers.code)
        assert result.success is False

    def test_no_followers(self, db, project, sender, sent):
        code = db.get_active_code_for_project(project.id)
        result = sender.send_phase_completion(project.id, 1, "Framing", code.code)
        assert result.success is True
        assert result.emails_sent == 0


class TestRendering:
    """Tests for the email body."""

    def test_lists_phases_and_link(self, db, app_config, hierarchy_service, project):
        done = hierarchy_service.create_phase(project.id, "Design")
        hierarchy_service.create_phase(
            project.id, "Build", estimated_end_date=date(2025, 7, 4)
        )

        html = generate_phase_email_html(
            project, done.id, done.name, db.list_phases(project.id), "TC-ABC234", app_config
        )

        assert "Kitchen remodel" in html
        assert "http://localhost:8000/track/TC-ABC234" in html
        assert "Jul 04, 2025" in html

    def test_dev_mode_writes_file(self, app_config):
        path = send_email("ann@example.com", "Hello", "<p>Hi</p>", app_config)
        content = path.read_text()
        assert "<!-- TO: ann@example.com -->" in content
        assert "<p>Hi</p>" in content
