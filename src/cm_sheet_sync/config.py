"""Configuration management for the Campaign Manager sheet sync."""

from pathlib import Path
from typing import Literal

import yaml  # type: ignore[import-untyped]
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CM_API_ROOT = "https://dfareporting.googleapis.com/dfareporting"


class CampaignManagerConfig(BaseSettings):
    """Campaign Manager 360 API configuration."""

    model_config = SettingsConfigDict(env_prefix="CM_")

    profile_id: str = Field(default="", description="Campaign Manager user profile ID")
    access_token: str = Field(default="", description="OAuth2 bearer token for the API")
    api_version: str = Field(default="v4", description="Campaign Manager API version")
    timeout: float = Field(default=60.0, description="Request timeout in seconds")

    @property
    def base_url(self) -> str:
        """Get the full API base URL for the configured profile."""
        return f"{CM_API_ROOT}/{self.api_version}/userprofiles/{self.profile_id}"


class SmartsheetConfig(BaseSettings):
    """Smartsheet API configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTSHEET_")

    access_token: str = Field(default="", description="Smartsheet API access token")
    workspace_id: int | None = Field(default=None, description="Optional workspace ID")
    workspace_name: str = Field(
        default="Campaign Manager",
        description="Workspace holding the entity sheets",
    )


class SyncConfig(BaseSettings):
    """Sync behavior configuration."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    cache_mode: Literal["memory", "shared"] = Field(
        default="shared",
        description="Cache used while pushing: 'shared' persists across rows on disk",
    )
    cache_dir: str | None = Field(
        default=None,
        description="Directory for the SQLite cache database (default: ~/.cm-sheet-sync/)",
    )
    cache_ttl: str = Field(default="6h", description="TTL of shared cache entries")
    state_file: Path = Field(
        default=Path(".cm-sheet-sync-state.json"),
        description="Path to the session state file",
    )
    retry_base_delay: float = Field(
        default=8.0, description="First backoff delay in seconds, doubled on each retry"
    )
    max_retries: int = Field(default=4, description="Retries for transient API errors")
    active_only: bool = Field(default=False, description="Only load active ads")
    qa_table: str = Field(default="QA", description="Fallback table used by every loader")
    continue_on_error: bool = Field(
        default=True, description="Keep pushing the remaining rows after a row fails"
    )


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    campaign_manager: CampaignManagerConfig = Field(default_factory=CampaignManagerConfig)
    smartsheet: SmartsheetConfig = Field(default_factory=SmartsheetConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration from environment and optional YAML file."""
    if config_path:
        return AppConfig.from_yaml(config_path)
    return AppConfig()
