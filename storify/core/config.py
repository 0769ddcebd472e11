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

    # App URLs (used for gateway redirect targets)
    APP_URL: str = "http://localhost:5000"

    # Sessions
    SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60
    SESSION_SWEEP_INTERVAL_SECONDS: int = 24 * 60 * 60
    SESSION_COOKIE_NAME: str = "storify_session"

    # Listening limits
    GUEST_LISTEN_LIMIT: int = 1
    FREE_USER_LISTEN_LIMIT: int = 3

    # Payments
    PAYMENT_GATEWAY: str = "doku"  # doku | xendit | qris
    PAYMENT_DUE_MINUTES: int = 60
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_VERIFICATION_POLICY: str = "strict"  # strict | warn

    # DOKU Checkout
    DOKU_CLIENT_ID: Optional[str] = None
    DOKU_SECRET_KEY: Optional[str] = None
    DOKU_BASE_URL: str = "https://api-sandbox.doku.com"

    # Xendit invoices
    XENDIT_SECRET_KEY: Optional[str] = None
    XENDIT_WEBHOOK_TOKEN: Optional[str] = None
    XENDIT_BASE_URL: str = "https://api.xendit.co"

    # Partner-hosted QRIS API
    PEWACA_BASE_URL: str = "https://admin-v2.pewaca.id"
    PEWACA_EMAIL: Optional[str] = None
    PEWACA_PASSWORD: Optional[str] = None

    # Operator access (manual payment updates, catalog writes)
    ADMIN_KEY: Optional[str] = None

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
    log = logger or logging.getLogger("storify")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL"]
    gateway_keys = {
        "doku": ["DOKU_CLIENT_ID", "DOKU_SECRET_KEY"],
        "xendit": ["XENDIT_SECRET_KEY", "XENDIT_WEBHOOK_TOKEN"],
        "qris": ["PEWACA_EMAIL", "PEWACA_PASSWORD"],
    }
    required_keys.extend(gateway_keys.get(cfg.PAYMENT_GATEWAY, []))

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if cfg.WEBHOOK_VERIFICATION_POLICY not in ("strict", "warn"):
        missing.append("WEBHOOK_VERIFICATION_POLICY (strict|warn)")
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
