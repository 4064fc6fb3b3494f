"""Configuration management using pydantic-settings."""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Journey Mapping Agent"
    DEBUG: bool = False
    PROJECT_ID: str = "default"  # Business key of the ProjectState row

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./journey_mapper.db"

    # LLM Provider Selection
    LLM_PROVIDER: str = "claude"  # 'ollama', 'claude', or empty for auto-select

    # Ollama (local LLM)
    OLLAMA_BASE_URL: str = "http://ollama:11434"
    OLLAMA_LLM_MODEL: str = "llama3.1:8b"

    # Anthropic (Claude)
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"

    # LLM call budgets
    LLM_TIMEOUT: float = 60.0  # Request timeout in seconds
    LLM_MAX_TOKENS: int = 4096  # Conversational turns
    LLM_SUMMARY_MAX_TOKENS: int = 8192  # Opening messages, summaries, reports
    INVALID_RESPONSE_SAMPLE_CHARS: int = 200  # Raw text kept on parse failure

    # Interview pipeline
    MAX_HISTORY_MESSAGES: int = 20  # Transcript tail sent to the LLM
    MAX_MESSAGE_CHARS: int = 5000  # Upper bound for a single user message
    SNAPSHOT_MAX_RECORDS: int = 50  # Per-category cap for the knowledge snapshot

    # Identifier allocation (optimistic counter increment)
    ID_ALLOCATION_MAX_RETRIES: int = 5
    ID_ALLOCATION_BACKOFF_SECONDS: float = 0.02  # Multiplied by attempt number

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.DATABASE_URL.startswith("sqlite")

    @model_validator(mode="after")
    def check_llm_settings(self) -> "Settings":
        """Validate LLM provider settings."""
        if self.LLM_PROVIDER.lower() == "claude" and not self.ANTHROPIC_API_KEY:
            logging.warning(
                "LLM_PROVIDER is 'claude' but ANTHROPIC_API_KEY is not set; "
                "provider auto-selection will fall back to Ollama"
            )
        return self


settings = Settings()
