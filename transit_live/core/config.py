from dataclasses import dataclass, field
from pathlib import Path
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_FEED_URL = "https://realtime.hsl.fi/realtime/vehicle-positions/v2/hsl"


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class ApplicationConfig:
    """Centralized configuration"""

    # Realtime feed
    realtime_feed_url: str = field(default_factory=lambda: os.getenv("REALTIME_FEED_URL", DEFAULT_FEED_URL))
    request_timeout_seconds: float = field(default_factory=lambda: env_float("REQUEST_TIMEOUT_SECONDS", 10.0))

    # Hub timers
    poll_interval_seconds: float = field(default_factory=lambda: env_float("POLL_INTERVAL_SECONDS", 10.0))
    heartbeat_interval_seconds: float = field(default_factory=lambda: env_float("HEARTBEAT_INTERVAL_SECONDS", 30.0))
    send_timeout_seconds: float = field(default_factory=lambda: env_float("SEND_TIMEOUT_SECONDS", 5.0))

    # Static reference data
    gtfs_dir: Path = field(default_factory=lambda: Path(os.getenv("GTFS_STATIC_DIR", "./gtfs-static")))
    db_path: Path = field(default_factory=lambda: Path(os.getenv("GTFS_DB_PATH", "./gtfs.db")))
    timezone: str = field(default_factory=lambda: os.getenv("AGENCY_TIMEZONE", "Europe/Helsinki"))

    # Web server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: env_int("PORT", 3000))
    cors_origin: str = field(default_factory=lambda: os.getenv("CORS_ORIGIN", "http://localhost:5173"))

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
