import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite:///./orderflow.db"

    # Auth (identity provider issues HS256 tokens with `sub` + optional `admin` claim)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_HEADER_FALLBACK: bool = True  # X-User-Id / X-User-Role outside production

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Orders
    TAX_RATE: float = 0.08

    # Analytics / schedules
    REPORT_TIMEZONE: str = "America/New_York"
    DAILY_REPORT_CRON: str = "0 1 * * *"
    DAILY_BACKUP_CRON: str = "0 2 * * *"
    WEEKLY_CLEANUP_CRON: str = "0 3 * * 0"

    # Notifications (unset URL = channel skipped)
    PUSH_GATEWAY_URL: Optional[str] = None
    PUSH_GATEWAY_TOKEN: Optional[str] = None
    EMAIL_API_URL: Optional[str] = None
    EMAIL_API_TOKEN: Optional[str] = None
    EMAIL_FROM: str = "orders@example.com"
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0
    NOTIFICATION_MAX_WORKERS: int = 4
    ADMIN_ORDER_TOPIC: str = "admin-new-orders"

    # Backups / retention
    BACKUP_ROOT: str = "./backups"
    BACKUP_COLLECTIONS: List[str] = ["users", "orders", "analytics_events", "subscriptions"]
    RETENTION_ANALYTICS_DAYS: int = 90
    RETENTION_PAGE_VIEWS_DAYS: int = 365
    RETENTION_BACKUP_LOGS_DAYS: int = 30
    RETENTION_NOTIFICATION_LOGS_DAYS: int = 60
    RETENTION_TEMP_FILES_DAYS: int = 30
    RETENTION_BATCH_SIZE: int = 500

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
    log = logger or logging.getLogger("orderflow")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "AUTH_JWT_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.ENV.lower() == "production" and cfg.AUTH_HEADER_FALLBACK:
        message = "AUTH_HEADER_FALLBACK must be disabled in production"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
