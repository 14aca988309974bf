"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "VOX"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database (Supabase Postgres)
    # If database_url_override is set (e.g., the Supabase pooler URL), it takes precedence
    database_url_override: str | None = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "postgres"

    @computed_field
    @property
    def database_url(self) -> str:
        """Get async database URL. Uses override if provided, otherwise constructs from parts."""
        if self.database_url_override:
            url = self.database_url_override
            # Replace scheme for async driver
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            # Strip query params - asyncpg doesn't accept them via URL
            # SSL is handled via connect_args in session.py
            if url.startswith("postgresql+asyncpg://") and "?" in url:
                url = url.split("?")[0]
            return url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def database_requires_ssl(self) -> bool:
        """Check if the database connection requires SSL (Supabase pooler, etc.)."""
        if self.database_url_override:
            return "sslmode=require" in self.database_url_override or "ssl=require" in self.database_url_override
        return False

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Get sync database URL (for Alembic). Uses override if provided, otherwise constructs from parts."""
        if self.database_url_override:
            url = self.database_url_override
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            elif url.startswith("postgresql+asyncpg://"):
                url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
            elif url.startswith("sqlite+aiosqlite://"):
                url = url.replace("sqlite+aiosqlite://", "sqlite://", 1)
            return url
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Auth / Supabase session JWT
    supabase_jwt_secret: str  # Required - Supabase project JWT secret
    supabase_jwt_audience: str = "authenticated"
    jwt_algorithm: str = "HS256"

    # LeadConnector (GoHighLevel) OAuth
    ghl_client_id: str = Field(
        default="", validation_alias=AliasChoices("GHL_CLIENT_ID", "NEXT_PUBLIC_GHL_CLIENT_ID")
    )
    ghl_client_secret: str = ""
    ghl_redirect_uri: str | None = None
    ghl_scopes: str = "conversations.readonly conversations.write conversations/message.readonly conversations/message.write contacts.readonly locations.readonly users.readonly"
    ghl_oauth_state: str = "vox_ghl_oauth"
    ghl_api_base: str = "https://services.leadconnectorhq.com"
    ghl_api_version: str = "2021-04-15"
    ghl_authorize_url: str = "https://marketplace.gohighlevel.com/oauth/chooselocation"

    # External FastAPI inference backend
    fastapi_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("FASTAPI_URL", "NEXT_PUBLIC_FASTAPI_URL"),
    )
    fastapi_api_key: str | None = None

    # Public URL of this app (OAuth redirects)
    app_url: str | None = Field(default=None, validation_alias=AliasChoices("NEXTAUTH_URL", "VERCEL_URL"))
    port: int = 3000

    @computed_field
    @property
    def public_base_url(self) -> str:
        """Base URL used to build redirects back into the dashboard."""
        if self.app_url:
            url = self.app_url.rstrip("/")
            if not url.startswith("http"):
                # VERCEL_URL comes without a scheme
                url = f"https://{url}"
            return url
        return f"http://localhost:{self.port}"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Dashboard redirect targets
    dashboard_path: str = "/dashboard"
    error_path: str = "/error"

    # AI defaults (used when no active agent carries its own configuration)
    default_ai_model: str = "gpt-4o-mini"
    default_ai_temperature: float = 0.7

    # Agent fallback: "first_active" picks the oldest active agent when no
    # override or default applies; "require_default" refuses to guess.
    agent_fallback_policy: Literal["first_active", "require_default"] = "first_active"

    # Autopilot tracking sync
    tracking_sync_attempts: int = 3
    tracking_sync_backoff_seconds: float = 1.0

    # Conversation search cache (per process)
    conversation_search_cache_seconds: int = 30


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def sanitize_error(error: Exception, *, generic_message: str = "An internal error occurred.") -> str:
    """
    Return a user-safe error message.

    In development, returns the full exception string for debugging.
    In staging/production, returns a generic message to avoid leaking internals.
    """
    settings = get_settings()
    if settings.environment == "development":
        return str(error)
    return generic_message
