"""
BuildLens Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for BuildLens logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/buildlens if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/buildlens if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "buildlens" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "buildlens" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    postgres_db: str = "buildlens"
    postgres_user: str = "buildlens"
    postgres_password: str = "buildlens_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: Optional[str] = Field(
        default=None, validation_alias="DATABASE_URL"
    )

    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct database URL from components unless DATABASE_URL is set."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Jenkins
    jenkins_url: str = "http://localhost:8080"
    jenkins_user: str = ""
    jenkins_api_token: str = ""
    jenkins_folder: str = ""  # Empty = root folder
    jenkins_timeout_seconds: float = 10.0

    # Snapshot cache
    snapshot_cache_ttl_seconds: float = 15.0

    # Sync orchestrator
    sync_interval_seconds: float = 900.0  # 15 minutes
    sync_initial_delay_seconds: float = 900.0
    sync_max_delete_ratio: int = 100  # Percent of local jobs one tick may purge

    # Retention
    retention_max_messages_per_conversation: int = 100
    retention_interval_seconds: float = 3600.0

    # Precomputed views
    views_refresh_interval_seconds: float = 60.0
    views_recent_builds_per_job: int = 10

    # Dashboard defaults
    trend_default_build_count: int = 5
    trend_max_build_count: int = 15
    anomalies_default_page_size: int = 3
    logs_expected_chunks: int = 14

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    background_tasks_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to XDG state dir if empty
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
