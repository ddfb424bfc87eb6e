"""Settings loading from YAML with environment overrides"""
import os
import logging
from typing import List, Optional
from urllib.parse import quote_plus

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


class LLMSettings(BaseModel):
    model: str = "deepseek-chat"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    classifier_temperature: float = 0.0
    classifier_max_tokens: int = 200
    sql_temperature: float = 0.0
    sql_max_tokens: int = 300
    answer_temperature: float = 0.3
    answer_max_tokens: int = 600
    context_window: int = 64000


class DatabaseSettings(BaseModel):
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    name: str = "talent"
    user: str = "readonly"
    password: str = ""
    min_pool_size: int = 1
    max_pool_size: int = 20
    pool_timeout: float = 2.0

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class ChartSettings(BaseModel):
    width: int = 800
    height: int = 600
    dpi: int = 100
    theme: str = "light"
    colors: List[str] = Field(default_factory=lambda: [
        "#4F46E5", "#06B6D4", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#6B7280"
    ])


class TracingSettings(BaseModel):
    enabled: bool = False


class Settings(BaseModel):
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chart: ChartSettings = Field(default_factory=ChartSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)


# env var -> (section, key)
ENV_OVERRIDES = {
    "OPENAI_API_KEY": ("llm", "api_key"),
    "OPENAI_API_BASE": ("llm", "api_base"),
    "LLM_MODEL": ("llm", "model"),
    "DATABASE_URL": ("database", "url"),
    "POSTGRES_HOST": ("database", "host"),
    "POSTGRES_PORT": ("database", "port"),
    "POSTGRES_DATABASE": ("database", "name"),
    "POSTGRES_USER": ("database", "user"),
    "POSTGRES_PASSWORD": ("database", "password"),
    "LANGFUSE_ENABLED": ("tracing", "enabled"),
}


def load_settings(config_path: str = DEFAULT_SETTINGS_PATH) -> Settings:
    """Load settings from a YAML file, then apply environment overrides

    Args:
        config_path: Path to the YAML settings file. A missing file falls
            back to built-in defaults.

    Returns:
        Validated Settings
    """
    raw = {}
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.warning(f"Settings file {config_path} not found, using defaults")

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            raw.setdefault(section, {})[key] = value

    return Settings.model_validate(raw)
