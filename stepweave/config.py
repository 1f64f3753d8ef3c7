from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel


class ValidationConfig(BaseModel):
    """Graph validation settings."""

    cycles_are_errors: bool = False


class AIConfig(BaseModel):
    """Settings for the AI processor capability."""

    # None selects mock mode automatically when ``api_key_env`` is unset
    mock_mode: Optional[bool] = None
    api_key_env: str = "GROQ_API_KEY"
    default_temperature: float = 0.7
    default_max_tokens: int = 1000


class DataSourceConfig(BaseModel):
    """Settings for the data source capability."""

    mock_mode: bool = False
    query_timeout_seconds: float = 30.0
    pool_max_size: int = 10


class TransformConfig(BaseModel):
    """Settings for the scripted transform capability."""

    timeout_seconds: float = 30.0
    max_script_length: int = 10_000


class DeliveryConfig(BaseModel):
    """Settings for the delivery capability."""

    timeout_seconds: float = 30.0
    user_agent: str = "stepweave-workflow/1.0"


class StepweaveConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    validation: ValidationConfig = ValidationConfig()
    ai: AIConfig = AIConfig()
    datasource: DataSourceConfig = DataSourceConfig()
    transform: TransformConfig = TransformConfig()
    delivery: DeliveryConfig = DeliveryConfig()


def load_config(path: Optional[str] = None) -> StepweaveConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWEAVE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWEAVE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepweaveConfig(**data)
    else:
        config = StepweaveConfig()

    env_db_url = os.getenv("STEPWEAVE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("STEPWEAVE_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
