"""Dashboard settings, read from the environment with CLI overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ValidationError
from .validation import validate_port, validate_positive_number

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
SNAPSHOT_FILENAME = "sessions.json"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class DashboardSettings:
    host: str = "127.0.0.1"
    port: int = 3456
    data_file: Path = field(default_factory=lambda: DEFAULT_DATA_DIR / SNAPSHOT_FILENAME)
    save_debounce_seconds: float = 1.0
    sweep_interval_seconds: float = 60.0
    task_ttl_seconds: float = 5 * 60
    session_archive_ttl_seconds: float = 24 * 60 * 60
    auto_create_on_update: bool = False


def load_settings(environ: Mapping[str, str] | None = None) -> DashboardSettings:
    """Build settings from environment variables.

    Recognised: ``PORT``, ``HOST``, ``CLAUDE_SECOND_SCREEN_DATA_DIR`` and
    ``SECOND_SCREEN_AUTO_CREATE``.
    """
    env = os.environ if environ is None else environ
    settings = DashboardSettings()

    if env.get("HOST"):
        settings.host = env["HOST"]
    if env.get("PORT"):
        try:
            port = int(env["PORT"])
        except ValueError as e:
            raise ValidationError(f"PORT must be an integer (got '{env['PORT']}')") from e
        settings.port = validate_port(port)
    if env.get("CLAUDE_SECOND_SCREEN_DATA_DIR"):
        settings.data_file = Path(env["CLAUDE_SECOND_SCREEN_DATA_DIR"]) / SNAPSHOT_FILENAME
    if env.get("SECOND_SCREEN_AUTO_CREATE"):
        settings.auto_create_on_update = env["SECOND_SCREEN_AUTO_CREATE"].lower() in _TRUTHY

    return settings


def validate_settings(settings: DashboardSettings) -> DashboardSettings:
    validate_port(settings.port)
    validate_positive_number(settings.save_debounce_seconds, "save_debounce_seconds")
    validate_positive_number(settings.sweep_interval_seconds, "sweep_interval_seconds")
    validate_positive_number(settings.task_ttl_seconds, "task_ttl_seconds")
    validate_positive_number(settings.session_archive_ttl_seconds, "session_archive_ttl_seconds")
    return settings
