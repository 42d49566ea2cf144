"""Phase-completion email to a project's opted-in followers."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from jinja2 import DictLoader, Environment, FileSystemLoader, select_autoescape

from .. import audit
from ..config import Config
from ..db import Database
from ..db.repository import Phase, Project
from ..logging import get_logger
from .smtp import send_email

logger = get_logger(__name__)

PHASE_EMAIL_TEMPLATE_NAME = "phase_completed.html"

DEFAULT_PHASE_EMAIL_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {
            font-family: 'Helvetica Neue', Arial, sans-serif;
            font-size: 14px;
            line-height: 1.6;
            color: #333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }
        h1 {
            color: #2c3e50;
            font-size: 22px;
        }
        .highlight {
            background: #f8f9fa;
            border-left: 4px solid #27ae60;
            padding: 15px;
            margin: 20px 0;
        }
        .completed { color: #27ae60; }
        .remaining { color: #7f8c8d; }
        .button {
            display: inline-block;
            background: #3498db;
            color: #ffffff;
            text-decoration: none;
            padding: 12px 24px;
            border-radius: 6px;
        }
        .footer {
            margin-top: 30px;
            font-size: 12px;
            color: #7f8c8d;
        }
    </style>
</head>
<body>
    <h1>Phase completed</h1>

    <div class="highlight">
        <strong>{{ phase_name }}</strong> is complete on <strong>{{ project_title }}</strong>.
    </div>

    {% if completed_phases %}
    <p>Completed so far:</p>
    <ul>
        {% for phase in completed_phases %}
        <li class="completed">{{ phase.name }}</li>
        {% endfor %}
    </ul>
    {% endif %}

    {% if remaining_phases %}
    <p>Still to come:</p>
    <ul>
        {% for phase in remaining_phases %}
        <li class="remaining">{{ phase.name }}{% if phase.estimated_end_date %} (est. {{ phase.estimated_end_date.strftime('%b %d, %Y') }}){% endif %}</li>
        {% endfor %}
    </ul>
    {% endif %}

    <p><a class="button" href="{{ tracking_url }}">View project progress</a></p>

    <div class="footer">
        <p>Tracking code: <code>{{ tracking_code }}</code></p>
        <p>You are receiving this because you asked to be notified about this project.</p>
    </div>
</body>
</html>
"""


@dataclass
class PhaseNotificationResult:
    """Outcome of a phase-completion email batch."""

    success: bool
    emails_sent: int = 0
    error: str | None = None


class PhaseNotificationSender(Protocol):
    """Sends phase-completion notices to a project's followers."""

    def send_phase_completion(
        self,
        project_id: int,
        phase_id: int,
        phase_name: str,
        tracking_code: str,
    ) -> PhaseNotificationResult: ...


def get_template_env() -> Environment:
    """Get Jinja2 template environment, preferring a local ``templates`` dir."""
    templates_dir = Path("templates")
    if (templates_dir / PHASE_EMAIL_TEMPLATE_NAME).exists():
        return Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )
    return Environment(
        loader=DictLoader({PHASE_EMAIL_TEMPLATE_NAME: DEFAULT_PHASE_EMAIL_TEMPLATE}),
        autoescape=select_autoescape(["html", "xml"]),
    )


def generate_phase_email_html(
    project: Project,
    phase_id: int,
    phase_name: str,
    phases: list[Phase],
    tracking_code: str,
    config: Config,
) -> str:
    """Render the phase-completion email body.

    Args:
        project: Project the phase belongs to.
        phase_id: Completed phase.
        phase_name: Name shown in the headline.
        phases: All phases of the project in display order.
        tracking_code: Active public code, used for the tracking link.
        config: Application configuration.

    Returns:
        HTML string for email body.
    """
    template = get_template_env().get_template(PHASE_EMAIL_TEMPLATE_NAME)
    base_url = config.tracking.public_base_url.rstrip("/")
    return template.render(
        project_title=project.title,
        phase_name=phase_name,
        completed_phases=[p for p in phases if p.status == "completed" or p.id == phase_id],
        remaining_phases=[p for p in phases if p.status != "completed" and p.id != phase_id],
        tracking_code=tracking_code,
        tracking_url=f"{base_url}/track/{tracking_code}",
    )


class EmailPhaseNotificationSender:
    """Emails every opted-in address on the project's active tracking code."""

    def __init__(
        self,
        db: Database,
        config: Config,
        transport: Callable[[str, str, str, Config], object] = send_email,
    ):
        self.db = db
        self.config = config
        self.transport = transport

    def send_phase_completion(
        self,
        project_id: int,
        phase_id: int,
        phase_name: str,
        tracking_code: str,
    ) -> PhaseNotificationResult:
        """Send the batch; never raises."""
        try:
            result = self._send(project_id, phase_id, phase_name, tracking_code)
        except Exception as e:
            logger.error("phase_email_failed", project_id=project_id, phase_id=phase_id,
                         error=str(e))
            result = PhaseNotificationResult(success=False, error=str(e))

        audit.log_phase_email(project_id, phase_id, result.emails_sent, result.success,
                              result.error)
        return result

    def _send(
        self,
        project_id: int,
        phase_id: int,
        phase_name: str,
        tracking_code: str,
    ) -> PhaseNotificationResult:
        project = self.db.get_project(project_id)
        if project is None:
            return PhaseNotificationResult(success=False, error=f"Project not found: {project_id}")
        if not project.notifications_enabled:
            return PhaseNotificationResult(success=True)

        code = self.db.get_active_tracking_code(tracking_code)
        if code is None or code.project_id != project_id:
            return PhaseNotificationResult(
                success=False, error=f"Tracking code not found: {tracking_code}"
            )

        recipients = self.db.list_notification_preferences(code.id, opted_in_only=True)
        if not recipients:
            return PhaseNotificationResult(success=True)

        html_body = generate_phase_email_html(
            project, phase_id, phase_name, self.db.list_phases(project_id), code.code, self.config
        )
        subject = self.config.email.phase_subject_template if self.config.email else None
        subject = (subject or "{project_title}: {phase_name} is complete").format(
            project_title=project.title, phase_name=phase_name
        )

        sent = 0
        failures: list[str] = []
        for pref in recipients:
            try:
                self.transport(pref.email, subject, html_body, self.config)
                sent += 1
            except Exception as e:
                logger.warning("phase_email_recipient_failed", project_id=project_id,
                               phase_id=phase_id, recipient=pref.email, error=str(e))
                failures.append(str(e))

        if failures:
            return PhaseNotificationResult(
                success=False,
                emails_sent=sent,
                error=f"{len(failures)} of {len(recipients)} emails failed: {failures[0]}",
            )
        logger.info("phase_email_sent", project_id=project_id, phase_id=phase_id, emails_sent=sent)
        return PhaseNotificationResult(success=True, emails_sent=sent)
