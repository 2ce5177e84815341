"""Configuration management for gasdesk."""

import logging
import os
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Duplicate detection
    duplicate_window_ms: int = 60_000
    presubmit_lookback_ms: int = 120_000
    grouping_strategy: Literal["anchored", "transitive"] = "anchored"

    # Transaction defaults
    page_size: int = 20
    default_currency: str = "USD"
    default_payment_method: str = "Cash"

    # Development mode
    dev_mode: bool = True

    # Logging
    log_level: str = "INFO"

    # Data directory
    data_dir: Path = Path.home() / ".gasdesk"

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # DATA_DIR and data_dir both work
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        """Get the SQLite database path."""
        suffix = "dev" if self.dev_mode else "prod"
        return self.data_dir / f"gasdesk_{suffix}.db"

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def log_config(self) -> None:
        """Log current configuration."""
        env_file_path = os.path.join(os.getcwd(), ".env")

        logger.info("Configuration loaded")
        logger.info(f"  Working directory:   {os.getcwd()}")
        logger.info(f"  .env file exists:    {os.path.exists(env_file_path)}")
        logger.info(f"  Dev mode:            {self.dev_mode}")
        logger.info(f"  Data directory:      {self.data_dir}")
        logger.info(f"  Database:            {self.db_path}")
        logger.info(f"  Duplicate window:    {self.duplicate_window_ms} ms")
        logger.info(f"  Pre-submit lookback: {self.presubmit_lookback_ms} ms")
        logger.info(f"  Grouping strategy:   {self.grouping_strategy}")
        logger.info(f"  Page size:           {self.page_size}")
        logger.info(f"  API host:            {self.api_host}:{self.api_port}")


# Global settings instance
settings = Settings()
