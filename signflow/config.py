"""Application configuration from environment."""
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

# Load .env from project root (parent of signflow/) so env vars are available everywhere
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)


class Settings(BaseSettings):
    app_name: str = "SignFlow"
    app_env: str = "development"
    debug: bool = True

    database_url: str = "sqlite:///./signflow.db"

    jwt_secret_key: str = "jwt-secret-change-me"
    jwt_algorithm: str = "HS256"

    @field_validator("jwt_secret_key")
    @classmethod
    def strip_jwt_secret(cls, v: str) -> str:
        return (v or "").strip()

    jwt_access_token_expire_minutes: int = 60

    # Public signing links (unauthenticated signers)
    public_link_expire_minutes: int = 60 * 24 * 7
    public_base_url: str = "http://localhost:3000"

    @field_validator("public_base_url", mode="before")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return (v or "").strip().rstrip("/")

    # Signing policy
    enforce_signing_order: bool = False
    allow_unsign_after_completion: bool = False

    # Signature capture
    max_upload_bytes: int = 2 * 1024 * 1024
    max_drawn_bytes: int = 2 * 1024 * 1024
    max_image_pixels: int = 4096 * 4096

    # Persistence retries (in-memory state wins; saves are retried in the background)
    persistence_retry_enabled: bool = True
    persistence_retry_seconds: int = 30
    persistence_timeout_seconds: float = 10.0

    class Config:
        env_file = str(_env_path)
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
