"""Generation loop settings."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WORKFLOW_NAME = "Generated Workflow"


class BuilderSettings(BaseSettings):
    """Limits for one build, read from the environment (or .env).

    Environment variables:
      MAX_VALIDATION_RETRIES — corrective retries after a failed validation, 0–10 (default: 3)
      MAX_TURNS              — oracle turns per build (default: 20)
      N8N_AGENT_LOG_LEVEL    — root log level used by the CLI (default: WARNING)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    max_validation_retries: int = Field(default=3, ge=0, le=10, validation_alias="MAX_VALIDATION_RETRIES")
    max_turns: int = Field(default=20, ge=1, validation_alias="MAX_TURNS")
    log_level: str = Field(default="WARNING", validation_alias="N8N_AGENT_LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v).upper() if v else "WARNING"
