"""RPFAAS Review — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ReviewSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── PostgreSQL (record store) ──────────────────────────────
    postgres_user: str = "rpfaas"
    postgres_password: str = "change-me-in-production"
    postgres_db: str = "rpfaas"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url: str = ""

    @property
    def database_url_sync(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ── Supabase Auth (identity provider) ──────────────────────
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    identity_timeout_seconds: float = 10.0

    # ── Caching ────────────────────────────────────────────────
    permission_cache_ttl_seconds: int = 30
    list_cache_ttl_seconds: int = 30

    # ── API ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = ReviewSettings()
