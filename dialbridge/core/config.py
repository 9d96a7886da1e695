"""Application configuration."""
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./dialbridge.db"

    # Meeting provider: "chime" or "in_memory"
    meeting_provider: str = "chime"
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Provider call policy
    provider_timeout_seconds: float = 10.0
    provider_max_attempts: int = Field(default=3, ge=1)
    provider_initial_backoff_ms: int = 100
    provider_max_backoff_ms: int = 2000
    provider_backoff_base: int = 2

    # Identity (bearer JWT)
    auth_jwt_secret: str = "change-me"
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: Optional[str] = None

    # Provider webhook shared secret; webhooks are rejected while unset
    webhook_secret: Optional[str] = None

    # Ended call ids remembered so a late open cannot reuse them
    ended_call_ids_max: int = Field(default=10000, ge=1)

    # History
    history_default_limit: int = 50

    # Client
    api_base_url: str = "http://localhost:8000"
    client_timeout_seconds: float = 10.0
    reachability_timeout_seconds: float = 3.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def provider_budget_seconds(self) -> float:
        """Worst-case time open_session can spend waiting on the provider."""
        backoff_ms = sum(
            min(
                self.provider_initial_backoff_ms * (self.provider_backoff_base ** attempt),
                self.provider_max_backoff_ms,
            )
            for attempt in range(self.provider_max_attempts - 1)
        )
        per_operation = self.provider_max_attempts * self.provider_timeout_seconds + backoff_ms / 1000
        # create_meeting, create_attendee, and the meeting release after a failed attendee
        return 3 * per_operation

    def open_session_timeout_seconds(self) -> float:
        """Client timeout for opening a session; outlasts the server-side provider budget."""
        return self.provider_budget_seconds() + self.client_timeout_seconds


settings = Settings()
