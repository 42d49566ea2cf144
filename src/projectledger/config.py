"""Configuration loading and validation using Pydantic."""

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator


def expand_env_vars(value: str) -> str:
    """Expand ${VAR} style environment variables in a string."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return pattern.sub(replacer, value)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: Path | str = Field(default=Path("./instance/projectledger.db"))


class SmtpConfig(BaseModel):
    """SMTP server configuration."""

    host: str
    port: int = 587
    use_tls: bool = True
    username: str = ""
    password: str = ""

    @field_validator("username", "password", mode="before")
    @classmethod
    def expand_env(cls, v: str) -> str:
        """Expand environment variables in credentials."""
        if isinstance(v, str):
            return expand_env_vars(v)
        return v


class EmailConfig(BaseModel):
    """Email sending configuration."""

    from_address: str
    from_name: str = "Project Updates"
    phase_subject_template: str = "{project_title}: {phase_name} is complete"


class OutputConfig(BaseModel):
    """Output directory configuration."""

    email_dir: Path = Field(default=Path("./instance/output/emails"))  # For dev mode


class LoggingConfig(BaseModel):
    """Logging configuration."""

    enabled: bool = True
    level: Literal["DEBUG", "INFO", "WARN", "WARNING", "ERROR"] = "INFO"
    format: Literal["splunk", "json"] = "splunk"
    file: Path | None = None
    # Audit events go here instead of the main log when set
    audit_file: Path | None = None


class TrackingConfig(BaseModel):
    """Public tracking code settings."""

    code_prefix: str = "TC-"
    code_length: int = Field(default=6, ge=4, le=32)
    # No 0/O or 1/I/L so codes survive being read aloud
    alphabet: str = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    max_generation_attempts: int = Field(default=10, ge=1)
    public_base_url: str = "http://localhost:8000"


class BillingConfig(BaseModel):
    """Invoice and payment settings."""

    default_currency: str = "usd"
    invoice_number_max_attempts: int = Field(default=10, ge=1)


class IdentityConfig(BaseModel):
    """External identity lookup settings."""

    lookup_timeout_seconds: float = Field(default=5.0, gt=0)


class WebConfig(BaseModel):
    """Web server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    identity_header: str = "X-Auth-User"


class Config(BaseModel):
    """Root configuration model."""

    dev_mode: bool = False  # When true, emails go to files instead of SMTP
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    smtp: SmtpConfig | None = None
    email: EmailConfig | None = None
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    web: WebConfig = Field(default_factory=WebConfig)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, looks for
                    instance/config.yaml in the current directory.

    Returns:
        Validated Config object.

    Raises:
        ValidationError: If config is invalid.
    """
    if config_path is None:
        config_path = Path("instance/config.yaml")

    if not config_path.exists():
        # Return default config if no file exists
        return Config()

    with open(config_path) as f:
        raw_config = yaml.safe_load(f) or {}

    return Config(**raw_config)


def ensure_directories(config: Config) -> None:
    """Create output directories if they don't exist."""
    if config.dev_mode:
        config.output.email_dir.mkdir(parents=True, exist_ok=True)

    if config.logging.file:
        config.logging.file.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(config.database.path, Path):
        config.database.path.parent.mkdir(parents=True, exist_ok=True)
