"""
Application settings management.

Settings are loaded from environment variables with .env file support.
All configuration is validated using Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: avatar_engine/core/config.py -> repository root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================

    config_dir: Path = Field(
        default=PROJECT_ROOT / "config",
        description="Directory containing avatar, flow and prompt YAML documents",
    )
    database_path: Path = Field(
        default=Path("data/avatar_engine.db"),
        description="Path to SQLite database file",
    )

    # ==========================================================================
    # LLM Configuration
    # ==========================================================================
    #
    # Two-client architecture:
    # - classification: short, low-temperature intent naming
    # - generation: final avatar reply
    #
    # Defaults are defined in avatar_engine/llm/client.py. Set environment
    # variables below only to override them (e.g. LLM_CLASSIFICATION_PROVIDER=deepseek)

    llm_classification_provider: Optional[str] = Field(
        default=None,
        description="Override classification LLM provider (default: anthropic)",
    )
    llm_generation_provider: Optional[str] = Field(
        default=None,
        description="Override generation LLM provider (default: anthropic)",
    )

    anthropic_api_key: Optional[str] = Field(
        default=None, description="Anthropic API key"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    deepseek_api_key: Optional[str] = Field(
        default=None, description="DeepSeek API key"
    )

    # ==========================================================================
    # Conversation Defaults
    # ==========================================================================

    default_avatar_type: str = Field(
        default="networker", description="Avatar type used when none is requested"
    )
    general_intent: str = Field(
        default="general_questions",
        description="Fallback intent when nothing matches or an intent is gated",
    )
    comment_intent: str = Field(
        default="user_comments",
        description="Substitute for intent names the classifier invents",
    )
    email_provided_intent: str = Field(default="email_provided")
    email_promise_intent: str = Field(default="email_promise")

    # ==========================================================================
    # Timing (seconds)
    # ==========================================================================

    continuation_window_seconds: float = Field(
        default=30.0, gt=0, description="Same intent within this window continues"
    )
    stack_retention_seconds: float = Field(
        default=3600.0, gt=0, description="Stack items older than this are dropped"
    )
    flow_idle_timeout_seconds: float = Field(
        default=1800.0, gt=0, description="Active flows idle this long are timed out"
    )
    sweep_interval_seconds: float = Field(
        default=300.0, gt=0, description="Period of the maintenance sweep"
    )

    # ==========================================================================
    # Server Configuration
    # ==========================================================================

    host: str = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=8000, ge=1, le=65535, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ==========================================================================
    # Logging
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Root log level name")
    logs_dir: Path = Field(default=Path("logs"), description="Per-run log files")
    log_runs_to_keep: int = Field(default=5, ge=1, description="Run logs retained")


# Global settings instance
settings = Settings()
