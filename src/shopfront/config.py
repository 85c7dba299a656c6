"""Runtime configuration for shopfront."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Can be overridden via SHOPFRONT_DATABASE_URL
_default_data_dir = Path.cwd() / "data"


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHOPFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = f"sqlite+aiosqlite:///{_default_data_dir / 'shopfront.db'}"
    uploads_dir: Path = Path("uploads")
    max_image_bytes: int = 5 * 1024 * 1024
    max_images: int = 5

    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:4000"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    currency: str = "usd"

    # Card processor (hosted checkout)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Wallet processor
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_mode: str = "sandbox"
    paypal_brand_name: str = "Shopfront"

    # Transactional email
    mailjet_api_key: str = ""
    mailjet_secret_key: str = ""
    mailjet_from_email: str = ""
    mailjet_from_name: str = "Shopfront"
    admin_email: str = ""

    cart_lock_max_wait: float = 5.0
    cart_lock_poll_interval: float = 0.01

    guest_cookie_name: str = "guestSessionId"
    guest_cookie_max_age: int = 30 * 24 * 60 * 60
    cookie_secure: bool = False

    admin_seed_email: str = ""
    admin_seed_password: str = ""

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def product_uploads_dir(self) -> Path:
        return self.uploads_dir / "products"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, with explicit overrides taking priority."""
    return Settings(**overrides)
