"""Environment variable loading and validation."""

import os
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOG_FORMATS = ["json", "key-value"]
DEFAULT_DATABASE_URL = "sqlite:///./data/cipipeline.db"


class EnvironmentConfig:
    """Runtime settings read from the process environment."""

    def __init__(
        self,
        workspace: Optional[Path] = None,
        credentials_file: Optional[Path] = None,
        log_level: Optional[str] = None,
        log_format: Optional[str] = None,
        database_url: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        smtp_use_tls: bool = True,
    ):
        self.workspace = Path(workspace) if workspace else Path.cwd()
        self.credentials_file = Path(credentials_file) if credentials_file else None
        self.log_level = log_level
        self.log_format = log_format or "key-value"
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "CI Pipeline"
        self.smtp_use_tls = smtp_use_tls

    @property
    def notifications_enabled(self) -> bool:
        """Post-build e-mail is only sent when an SMTP host is configured."""
        return bool(self.smtp_host)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional:
    - WORKSPACE: Directory the shell steps run in (default: current directory)
    - CREDENTIALS_FILE: YAML file with ``credentials: {id: secret}``
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
    - LOG_FORMAT: json or key-value
    - DATABASE_URL: Build history database (default: sqlite:///./data/cipipeline.db)
    - SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS / SMTP_SENDER_NAME /
      SMTP_USE_TLS: post-build notification delivery

    Returns:
        EnvironmentConfig with validated values

    Raises:
        ConfigurationError: If any variable is set to an invalid value
    """
    errors = []

    workspace = os.getenv("WORKSPACE")
    credentials_file = os.getenv("CREDENTIALS_FILE")
    log_level = os.getenv("LOG_LEVEL")
    log_format = os.getenv("LOG_FORMAT")
    database_url = os.getenv("DATABASE_URL")
    smtp_host = os.getenv("SMTP_HOST")
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    smtp_sender_name = os.getenv("SMTP_SENDER_NAME")
    smtp_use_tls_str = os.getenv("SMTP_USE_TLS")

    if workspace and not Path(workspace).is_dir():
        errors.append(f"WORKSPACE does not exist or is not a directory: {workspace}")

    if credentials_file and not Path(credentials_file).is_file():
        errors.append(f"CREDENTIALS_FILE not found: {credentials_file}")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if log_format and log_format not in VALID_LOG_FORMATS:
        errors.append(
            f"Invalid LOG_FORMAT: '{log_format}'. Must be one of: {', '.join(VALID_LOG_FORMATS)}"
        )

    smtp_port = 587
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    smtp_use_tls = True
    if smtp_use_tls_str:
        if smtp_use_tls_str.lower() in ("1", "true", "yes", "on"):
            smtp_use_tls = True
        elif smtp_use_tls_str.lower() in ("0", "false", "no", "off"):
            smtp_use_tls = False
        else:
            errors.append(f"Invalid SMTP_USE_TLS: '{smtp_use_tls_str}'. Use true or false.")

    # Authentication needs both halves
    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Unset variables you do not need; every variable is optional",
            ],
        )

    return EnvironmentConfig(
        workspace=Path(workspace) if workspace else None,
        credentials_file=Path(credentials_file) if credentials_file else None,
        log_level=log_level.upper() if log_level else None,
        log_format=log_format,
        database_url=database_url,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=smtp_sender_name,
        smtp_use_tls=smtp_use_tls,
    )
