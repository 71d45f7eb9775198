"""Environment and process settings.

Everything here is read ONCE at startup. The schedule is fixed for the
life of the process; to change it, restart.

An optional env file (TICKWORK_ENV_FILE) of KEY=value lines is loaded into
os.environ first, so systemd units can point at one file for secrets
like REDIS_URL.

Note: This module uses standard logging, not otel.get_logger(), because
it runs BEFORE OpenTelemetry is initialized.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


def inject_env(path: Path | str | None) -> int:
    """Load KEY=value lines from `path` into os.environ.

    Existing variables are overwritten. Returns the number of variables set
    (0 if the file is missing or unset).
    """
    if not path:
        return 0

    path = Path(path)
    if not path.exists():
        log.warning(f"{path} not found")
        return 0

    count = 0
    for line in path.read_text().splitlines():
        line = line.strip()
        if "=" in line and not line.startswith("#"):
            key, value = line.split("=", 1)
            # Strip quotes if present
            value = value.strip().strip('"').strip("'")
            os.environ[key.strip()] = value
            count += 1

    log.info(f"Injected {count} environment variables from {path}")
    return count


@dataclass(frozen=True)
class Settings:
    environment: str = ""
    schedule_path: Path = Path("schedule.toml")
    timezone: str = "UTC"
    max_workers: int = 4
    shutdown_timeout: float = 30.0
    redis_url: str | None = None


def load_settings() -> Settings:
    """Read process settings from the environment."""
    return Settings(
        environment=os.getenv("TICKWORK_ENV", ""),
        schedule_path=Path(os.getenv("TICKWORK_SCHEDULE", "schedule.toml")),
        timezone=os.getenv("TICKWORK_TIMEZONE", "UTC"),
        max_workers=int(os.getenv("TICKWORK_MAX_WORKERS", "4")),
        shutdown_timeout=float(os.getenv("TICKWORK_SHUTDOWN_TIMEOUT", "30")),
        redis_url=os.getenv("REDIS_URL") or None,
    )


def init_env() -> Settings:
    """Load the optional env file, then read settings."""
    inject_env(os.getenv("TICKWORK_ENV_FILE"))
    return load_settings()
