import logging
import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./shortlinks.db")
    legacy_redis_url: str = os.getenv("LEGACY_REDIS_URL", "redis://localhost:6379/0")
    base_url: str = os.getenv("BASE_URL", "http://localhost:8000")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "")
    code_length: int = int(os.getenv("CODE_LENGTH", "6"))
    cleanup_batch_size: int = int(os.getenv("CLEANUP_BATCH_SIZE", "100"))
    cleanup_interval_seconds: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "86400"))
    expiring_window_days: int = int(os.getenv("EXPIRING_WINDOW_DAYS", "3"))
    legacy_scan_count: int = int(os.getenv("LEGACY_SCAN_COUNT", "1000"))
    tg_bot_token: str = os.getenv("TG_BOT_TOKEN", "")
    tg_admin_id: str = os.getenv("TG_ADMIN_ID", "")
    bot_path_attempts: int = int(os.getenv("BOT_PATH_ATTEMPTS", "5"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()


def setup_logging(level: str | int = settings.log_level) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
