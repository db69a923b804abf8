"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Market Settlement API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'settlement.db'}"

    # --- Payment Gateway (Paystack) ---
    PAYSTACK_SECRET_KEY: str = ""          # Webhook HMAC secret + API bearer key
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_PAYMENT_METHOD: str = "paystack"

    # --- Settlement ---
    SETTLEMENT_CURRENCY: str = "NGN"
    AMOUNT_TOLERANCE_MINOR_UNITS: int = 1
    REFERRAL_FIRST_PURCHASE_BONUS: float = 500.0

    # --- Notifications ---
    ADMIN_EMAIL: str = ""

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]
    VERIFY_RATE_LIMIT_REQUESTS: int = 20
    VERIFY_RATE_LIMIT_WINDOW: int = 60

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
