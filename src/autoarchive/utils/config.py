"""Configuration management using Pydantic settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Exchange Online session
    exchange_disconnect_when_done: bool = Field(
        default=False, description="Run Disconnect-ExchangeOnline at the end of the run"
    )
    powershell_executable: str = Field(default="pwsh", description="PowerShell 7+ executable")

    # Archive enablement
    archive_retention_policy: str = Field(
        default="", description="Retention policy applied after enabling an archive"
    )
    archive_results_log: Path | None = Field(
        default=None, description="JSON Lines file receiving one record per mailbox"
    )

    @property
    def has_retention_policy(self) -> bool:
        """Check if a retention policy is configured."""
        return bool(self.archive_retention_policy)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
