from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field("sqlite:///foodshare.db")
    api_title: str = Field("FoodShare API")
    access_token_expire_minutes: int = Field(60 * 24 * 30)
    jwt_secret: str = Field("secret")
    jwt_algorithm: str = Field("HS256")

    uploads_dir: str = Field("uploads")
    public_base_url: str = Field("http://localhost:8000")
    placeholder_image_url: str = Field(
        "https://placehold.co/600x400/a7a7a7/FFF?text=No+Image"
    )
    max_image_bytes: int = Field(5 * 1024 * 1024)

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:5174"]
    )
    auth_rate_limit: str = Field("5/minute")
    rate_limit_enabled: bool = Field(True)

    admin_email: str = Field("admin@foodshare.org")
    admin_password: str | None = Field(None)
    admin_name: str = Field("Administrator")


settings = Settings()
