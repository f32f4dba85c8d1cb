import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BASE_DELAY_MS: int = 50

    # Auth (sessions are issued elsewhere; we only verify)
    AUTH_JWT_SECRET: Optional[str] = None

    # Notifications
    NOTIFICATIONS_MODE: str = "log"  # log | queue
    NOTIFICATIONS_QUEUE: str = "notifications"
    PUSH_GATEWAY_URL: Optional[str] = None
    PUSH_GATEWAY_TIMEOUT_SECONDS: float = 5.0

    # Activity feed freshness windows
    FEED_PASS_WINDOW_HOURS: int = 2
    FEED_DECLINED_WINDOW_HOURS: int = 24

    # App URLs
    BASE_URL: str = "http://localhost:3000"

    # Observability / Tracing
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"  # console | memory

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("buddyup")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
    ]
    if getattr(cfg, "NOTIFICATIONS_MODE", "log") == "queue":
        required_keys.append("PUSH_GATEWAY_URL")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    mode = getattr(cfg, "NOTIFICATIONS_MODE", "log")
    if mode not in ("log", "queue"):
        message = f"Unknown NOTIFICATIONS_MODE: {mode}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
