"""SMTP email delivery with dev mode support."""

import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from ..config import Config


def send_email(to_email: str, subject: str, html_body: str, config: Config) -> Path | None:
    """Send an HTML email.

    In dev_mode, writes the email to ``output.email_dir`` instead of
    sending via SMTP.

    Returns:
        Path of the written file in dev mode, otherwise None.

    Raises:
        ValueError: If SMTP is needed but not configured.
        smtplib.SMTPException: If the server rejects the message.
    """
    if config.dev_mode:
        return _write_email_to_file(to_email, subject, html_body, config)
    _send_email_smtp(to_email, subject, html_body, config)
    return None


def _write_email_to_file(to_email: str, subject: str, html_body: str, config: Config) -> Path:
    """Write email to file for dev mode testing."""
    config.output.email_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    safe_email = to_email.replace("@", "_at_").replace(".", "_")
    email_file = config.output.email_dir / f"{timestamp}_{safe_email}.html"

    with open(email_file, "w") as f:
        f.write(f"<!-- TO: {to_email} -->\n")
        f.write(f"<!-- SUBJECT: {subject} -->\n")
        f.write(f"<!-- DATE: {datetime.now().isoformat()} -->\n")
        f.write("\n")
        f.write(html_body)
    return email_file


def _send_email_smtp(to_email: str, subject: str, html_body: str, config: Config) -> None:
    """Send email via SMTP."""
    if not config.smtp or not config.email:
        raise ValueError("SMTP configuration is required to send emails")

    msg = MIMEMultipart()
    msg["From"] = f"{config.email.from_name} <{config.email.from_address}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(html_body, "html"))

    smtp_class = smtplib.SMTP_SSL if config.smtp.port == 465 else smtplib.SMTP

    with smtp_class(config.smtp.host, config.smtp.port) as server:
        if config.smtp.use_tls and config.smtp.port != 465:
            server.starttls()

        if config.smtp.username and config.smtp.password:
            server.login(config.smtp.username, config.smtp.password)

        server.sendmail(config.email.from_address, [to_email], msg.as_string())
