"""
Base configuration for the flow analysis entry points.

Uses Pydantic Settings for environment-based configuration.
Each component extends BaseAgentSettings with its own env prefix.
"""

from pydantic_settings import BaseSettings


class BaseAgentSettings(BaseSettings):
    """Settings every entry point shares."""

    agent_name: str = "base"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
