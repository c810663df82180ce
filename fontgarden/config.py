"""Service configuration from environment variables."""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables."""
    supabase_url: str = ""
    supabase_key: str = ""
    # Account the service acts as; mutations need a signed-in session
    supabase_email: Optional[str] = None
    supabase_password: Optional[str] = None

    # Storage buckets
    font_bucket: str = "fonts"
    image_bucket: str = "project-images"

    # Font pairing suggestions
    openrouter_api_key: Optional[str] = None
    openrouter_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_model: str = "google/gemini-2.5-pro-exp-03-25:free"
    pairing_timeout: float = 15.0

    # Open Graph preview images
    og_proxy_urls: list[str] = []  # e.g. ["https://corsproxy.io/?"]; empty fetches directly
    og_fetch_timeout: float = 10.0
    og_requests_per_minute: int = 30
    og_max_concurrent: int = 5

    cors_allowed_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


def get_settings() -> Settings:
    return Settings()
