"""Core configuration for the workflow engine."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_dsl.logging import LogFormat, configure_logging


class LLMConfig(BaseSettings):
    """Configuration for the LLM providers backing workflow agents."""

    provider: Literal["openai", "llama"] = Field(
        default="openai",
        description="LLM provider to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints",
    )

    # LLaMA settings
    llama_model_path: Path | None = Field(
        default=None,
        description="Path to LLaMA model file",
    )
    llama_n_ctx: int = Field(
        default=4096,
        gt=0,
        description="Context window size for LLaMA",
    )
    llama_n_threads: int | None = Field(
        default=None,
        description="Number of threads for LLaMA (None = auto)",
    )

    max_tool_rounds: int = Field(
        default=8,
        gt=0,
        description="Maximum tool-calling rounds per agent run",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_LLM_",
        env_file=".env",
        extra="ignore",
    )


class StoreConfig(BaseSettings):
    """Configuration for definition storage."""

    storage_path: Path = Field(
        default=Path(".workflow_state"),
        description="Directory holding the workflow definition store",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_STORE_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def store_file(self) -> Path:
        """Path of the JSON document holding all persisted records."""

        return self.storage_path / "store.json"


class EngineConfig(BaseSettings):
    """Configuration for workflow execution."""

    max_transitions: int = Field(
        default=100,
        gt=0,
        description="Maximum number of step invocations per run",
    )
    keep_failed_context: bool = Field(
        default=False,
        description="Attach the execution context of a failed run to the raised error",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_ENGINE_",
        env_file=".env",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Main configuration for the workflow engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: LogFormat = Field(
        default="json",
        description="Log rendering: one JSON object per line, or key=value text",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )
    store: StoreConfig = Field(
        default_factory=StoreConfig,
        description="Store configuration",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, self.log_format)

        if self.debug:
            logging.getLogger("workflow_dsl").setLevel(logging.DEBUG)
