import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Telegram
    BOT_TOKEN: Optional[str] = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    NOTIFY_TIMEOUT_SECONDS: float = 10.0

    # Advisory LLM
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    ADVISOR_TIMEOUT_SECONDS: float = 30.0

    # Storage
    PHOTOS_DIRECTORY: str = "./data/photos"

    # Admin reset
    ADMIN_USER_ID: Optional[int] = None

    # Challenge defaults
    CHALLENGE_DURATION_UNIT: str = "months"  # months | days | minutes
    DEFAULT_DISCIPLINE_THRESHOLD: float = 0.8
    DEFAULT_MAX_SKIPS: int = 2

    # Check-in windows
    CHECKIN_PERIOD_DAYS: int = 14
    CHECKIN_PERIOD_MINUTES: Optional[int] = None  # overrides CHECKIN_PERIOD_DAYS when set (testing)
    CHECKIN_WINDOW_HOURS: int = 48
    REMINDER_HOURS_BEFORE_CLOSE: int = 12

    # Timeouts
    ONBOARDING_TIMEOUT_HOURS: int = 48
    ELECTION_TIMEOUT_HOURS: int = 24

    # Tick worker
    TICK_INTERVAL_SECONDS: int = 3600

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
    log = logger or logging.getLogger("fitbet")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "BOT_TOKEN",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not cfg.GROQ_API_KEY:
        log.info("GROQ_API_KEY not set; advisory checks will use fallback verdicts")

    return True
