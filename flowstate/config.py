"""
Configuration settings for the FlowState engine.
"""

import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLOWSTATE_",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "FlowState"
    APP_VERSION: str = "1.0.0"

    # Workflow Engine
    MAX_EXECUTION_STEPS: int = 1000  # Node invocations per start/resume call
    DEFAULT_MERGE_STRATEGY: str = "resume_wins"

    # Routing
    CONFIDENCE_THRESHOLD: float = 0.5

    # Fan-out
    FANOUT_WORKERS: int = 4

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for applications embedding the engine."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        format=settings.LOG_FORMAT,
    )
