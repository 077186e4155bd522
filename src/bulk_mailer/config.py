# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Settings loader for the bulk mailer.

Values come from an INI file (default ``config.ini``) with environment
variables as fallbacks. A ``.env`` file in the working directory is loaded
first, without overriding variables already set in the process.

Environment variables:
  BULK_MAILER_CONFIG - Path to the INI file (default: config.ini)
  SENDER_EMAIL - Sender address, also used as SMTP login
  SENDER_PASS - Sender credential (an app password for Gmail)
  BULK_MAILER_SMTP_HOST - Relay host (default: smtp.gmail.com)
  BULK_MAILER_SMTP_PORT - Relay port (default: 465)
  BULK_MAILER_SMTP_TLS - Encrypt the relay connection (default: true)
  BULK_MAILER_SMTP_TIMEOUT - Seconds allowed for one send (default: 30)
  BULK_MAILER_HOST - Bind address (default: 0.0.0.0)
  PORT - Bind port (default: 3000)
  BULK_MAILER_PUBLIC_DIR - Static asset directory (default: public)
  BULK_MAILER_CORS_ORIGINS - Comma-separated allowed origins (default: *)
  BULK_MAILER_UPLOAD_DIR - Upload directory (default: uploads)
  BULK_MAILER_MAX_UPLOAD_BYTES - Attachment ceiling (default: 26214400)
  BULK_MAILER_PACING_INTERVAL - Seconds between sends (default: 1.0)
  BULK_MAILER_LOG_LEVEL - Logging level (default: INFO)

Config file sections/keys:
  [sender] address, password
  [smtp] host, port, use_tls, timeout
  [server] host, port, public_dir, cors_origins
  [uploads] directory, max_bytes
  [delivery] pacing_interval_seconds
  [logging] level

Example::

    [sender]
    address = newsletter@example.com
    password = app-password

    [delivery]
    pacing_interval_seconds = 2
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .core import DEFAULT_PACING_INTERVAL, DispatchConfig
from .transport import DEFAULT_SMTP_HOST, DEFAULT_SMTP_PORT
from .uploads import DEFAULT_MAX_BYTES


@dataclass
class MailerSettings:
    """Process-wide configuration, resolved once at startup."""

    sender_address: str | None = None
    sender_password: str | None = None

    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_use_tls: bool = True
    smtp_timeout: float = 30.0

    http_host: str = "0.0.0.0"
    http_port: int = 3000
    public_dir: str = "public"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    upload_dir: str = "uploads"
    max_upload_bytes: int = DEFAULT_MAX_BYTES

    pacing_interval: float = DEFAULT_PACING_INTERVAL

    log_level: str = "INFO"

    def missing_credentials(self) -> list[str]:
        """Names of the sender settings that are not configured."""
        missing = []
        if not self.sender_address:
            missing.append("SENDER_EMAIL")
        if not self.sender_password:
            missing.append("SENDER_PASS")
        return missing

    def dispatch_config(self) -> DispatchConfig:
        return DispatchConfig(sender=self.sender_address, pacing_interval=self.pacing_interval)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def load_settings(config_path: str | Path | None = None, *, env_file: str | Path | None = ".env") -> MailerSettings:
    """Build :class:`MailerSettings` from the INI file and the environment.

    Args:
        config_path: INI file to read. Defaults to ``$BULK_MAILER_CONFIG``
            or ``config.ini``. A missing file is not an error.
        env_file: ``.env`` file loaded before reading the environment, or
            None to skip it.

    Raises:
        ValueError: If a numeric setting cannot be parsed.
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)

    path = Path(config_path or os.getenv("BULK_MAILER_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    def get_str(section: str, option: str, env: str, default: str | None = None) -> str | None:
        value = get(section, option, os.getenv(env))
        if value is None:
            return default
        return value.strip() or default

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, os.getenv(env))
        if value is None or not value.strip():
            return default
        return int(value)

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get(section, option, os.getenv(env))
        if value is None or not value.strip():
            return default
        return float(value)

    origins = get_str("server", "cors_origins", "BULK_MAILER_CORS_ORIGINS", "*")

    return MailerSettings(
        sender_address=get_str("sender", "address", "SENDER_EMAIL"),
        sender_password=get_str("sender", "password", "SENDER_PASS"),
        smtp_host=get_str("smtp", "host", "BULK_MAILER_SMTP_HOST", DEFAULT_SMTP_HOST),
        smtp_port=get_int("smtp", "port", "BULK_MAILER_SMTP_PORT", DEFAULT_SMTP_PORT),
        smtp_use_tls=_parse_bool(get("smtp", "use_tls", os.getenv("BULK_MAILER_SMTP_TLS")), True),
        smtp_timeout=get_float("smtp", "timeout", "BULK_MAILER_SMTP_TIMEOUT", 30.0),
        http_host=get_str("server", "host", "BULK_MAILER_HOST", "0.0.0.0"),
        http_port=get_int("server", "port", "PORT", 3000),
        public_dir=get_str("server", "public_dir", "BULK_MAILER_PUBLIC_DIR", "public"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        upload_dir=get_str("uploads", "directory", "BULK_MAILER_UPLOAD_DIR", "uploads"),
        max_upload_bytes=get_int("uploads", "max_bytes", "BULK_MAILER_MAX_UPLOAD_BYTES", DEFAULT_MAX_BYTES),
        pacing_interval=get_float("delivery", "pacing_interval_seconds", "BULK_MAILER_PACING_INTERVAL", DEFAULT_PACING_INTERVAL),
        log_level=(get_str("logging", "level", "BULK_MAILER_LOG_LEVEL", "INFO") or "INFO").upper(),
    )
