"""Configuration management for the review insight service."""

import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field


class ModelConfig(BaseModel):
    """Configuration for the hosted model."""
    provider: str = "google"
    model: str = "gemini-2.5-pro"
    temperature: float = 0.4
    max_tokens: int = 8192
    request_timeout: float = 120.0


class AnalysisConfig(BaseModel):
    """Structured analysis settings."""
    timeout_seconds: float = Field(default=180.0, gt=0)


class ChatConfig(BaseModel):
    """Chat assistant settings."""
    # A new analysis clears the chat and re-grounds the next turn
    refresh_context_on_reanalysis: bool = True
    error_message: str = "Sorry, I encountered an error processing your request."


class ApiConfig(BaseModel):
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingConfig(BaseModel):
    """Logging settings."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Config(BaseModel):
    """Main configuration model."""
    model: ModelConfig = Field(default_factory=ModelConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from YAML file."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r") as f:
        config_data = yaml.safe_load(f) or {}

    return Config(**config_data)


def load_config_or_default(config_path: Optional[str] = "config.yaml") -> Config:
    """Load configuration if the file exists, otherwise use defaults."""
    if config_path and Path(config_path).exists():
        return load_config(config_path)
    return Config()


def save_config(config: Config, config_path: str = "config.yaml") -> None:
    """Save configuration to YAML file."""
    config_file = Path(config_path)

    with open(config_file, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
