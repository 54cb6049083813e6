"""Configuration management using Pydantic and environment variables."""

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Configuration (OpenAI-compatible API)
    llm_api_key: str = Field(..., description="API key for LLM provider")
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for OpenAI-compatible API",
    )
    llm_model: str = Field(default="gpt-4o", description="Model name")
    llm_temperature: float = Field(
        default=0.0, ge=0.0, le=2.0, description="Temperature"
    )

    # Agent step loop
    agent_max_steps: int = Field(default=100, ge=1, description="Step budget per run")
    agent_max_failures: int = Field(
        default=3, ge=1, description="Consecutive failed steps before giving up"
    )
    agent_retry_delay: float = Field(
        default=10.0, ge=0.0, description="Seconds to wait after a failed step"
    )
    agent_max_input_tokens: int = Field(
        default=128000, ge=1, description="Prompt token budget"
    )
    agent_max_actions_per_step: int = Field(
        default=10, ge=1, description="Upper bound of actions per model output"
    )
    agent_use_vision: bool = Field(default=True, description="Attach screenshots")
    agent_tool_calling_method: Literal[
        "auto", "function_calling", "json_mode", "raw"
    ] = Field(default="auto", description="How structured output is requested")
    agent_save_history_path: Optional[Path] = Field(
        default=None, description="Where the run history JSON is written"
    )
    agent_save_conversation_path: Optional[Path] = Field(
        default=None, description="Directory for per-step prompt dumps"
    )

    # Browser
    browser_cdp_endpoint: str = Field(
        default="http://127.0.0.1:9222", description="Chrome DevTools endpoint"
    )
    browser_allowed_domains: Optional[list[str]] = Field(
        default=None, description="Navigation allow-list (None = any domain)"
    )
    browser_minimum_wait_page_load_time: float = Field(default=0.5, ge=0.0)
    browser_wait_for_network_idle_page_load_time: float = Field(default=1.0, ge=0.0)
    browser_maximum_wait_page_load_time: float = Field(default=5.0, ge=0.0)
    browser_wait_between_actions: float = Field(default=0.5, ge=0.0)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")


def load_config(env_file: Optional[Path] = None) -> Config:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        Config instance with loaded settings.
    """
    if env_file:
        os.environ["ENV_FILE"] = str(env_file)
        return Config(_env_file=env_file)

    return Config()
