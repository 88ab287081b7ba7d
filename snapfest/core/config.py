"""
Application configuration and settings management
"""
import os
from typing import Optional
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "SnapFest Checkout"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Checkout journal database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./snapfest_checkout.db"
    ).replace("postgres://", "postgresql://", 1)

    # Marketplace backend (bookings, payments, cart)
    BACKEND_API_URL: str = os.getenv("BACKEND_API_URL", "http://localhost:5001/api")
    BACKEND_TIMEOUT: float = 10.0

    # Razorpay checkout widget
    RAZORPAY_KEY_ID: Optional[str] = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_CHECKOUT_JS_URL: str = "https://checkout.razorpay.com/v1/checkout.js"
    MERCHANT_NAME: str = "SnapFest"
    THEME_COLOR: str = "#e91e63"
    CURRENCY: str = "INR"

    # Gateway SDK readiness probe (bounded exponential backoff)
    GATEWAY_SDK_MAX_ATTEMPTS: int = 4
    GATEWAY_SDK_BACKOFF_BASE: float = 0.5
    GATEWAY_SDK_BACKOFF_MAX: float = 4.0
    # Seconds a single modal session may stay open; 0 disables the timeout
    GATEWAY_SESSION_TIMEOUT: float = 900.0

    # Pricing
    TAX_RATE: float = 0.18  # 18% GST
    MIN_PAYMENT_PERCENTAGE: int = 20
    MAX_PAYMENT_PERCENTAGE: int = 100
    DEFAULT_PAYMENT_PERCENTAGE: int = 20

    # In-memory state; finished run history lives in the journal
    CHECKOUT_RUN_HISTORY: int = 100
    SESSION_IDLE_TIMEOUT: float = 1800.0

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with placeholder filtering"""
    s = Settings()
    # Filter out common placeholders from environment
    placeholders = ["XXXX", "your-", "replace-"]

    def is_placeholder(val: Optional[str]) -> bool:
        if not val: return True
        return any(p in val for p in placeholders) or any(p in val.lower() for p in placeholders)

    if is_placeholder(s.RAZORPAY_KEY_ID):
        s.RAZORPAY_KEY_ID = None

    return s


# Global settings instance
settings = get_settings()
