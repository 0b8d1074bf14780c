import yaml
import re
from pydantic_settings import BaseSettings
from functools import lru_cache
from pathlib import Path
from dotenv import load_dotenv
import os

# Load .env from project root
project_root = Path(__file__).parent.parent.parent
env_path = project_root / ".env"
load_dotenv(env_path)


def substitute_env_vars(value):
    """
    Recursively substitute ${VAR_NAME} or ${VAR_NAME:-default} patterns
    with environment variable values.
    """
    if isinstance(value, str):
        # Pattern matches ${VAR_NAME} or ${VAR_NAME:-default_value}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace_match(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        return re.sub(pattern, replace_match, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    return value


def load_yaml_with_env(yaml_path: Path) -> dict:
    """Load YAML file with environment variable substitution."""
    if not yaml_path.exists():
        return {}

    with open(yaml_path) as f:
        raw_config = yaml.safe_load(f) or {}

    return substitute_env_vars(raw_config)


class ProcessingSettings(BaseSettings):
    max_retries: int = 3
    timeout: float = 600.0  # per model call, seconds
    backoff_seconds: float = 2.0
    page_concurrency: int = 3
    chunk_min_pages: int = 2
    job_timeout: int = 1800  # RQ job timeout, seconds
    merge_policy: str = "highest_confidence"  # or "latest_page"


class StorageSettings(BaseSettings):
    type: str = "local"
    bucket: str = "lab-pdfs"
    base_path: str = "storage"


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///./lab_uploads.db"


class GeminiSettings(BaseSettings):
    model: str = "gemini-3-pro-preview"
    temperature: float = 0.1
    max_output_tokens: int = 64000
    api_key: str | None = None


class OpenAISettings(BaseSettings):
    model: str = "gpt-5.1"
    reasoning_effort: str = "medium"
    max_output_tokens: int = 32000
    api_key: str | None = None


class RedisSettings(BaseSettings):
    url: str = "redis://localhost:6379/0"


class CatalogSettings(BaseSettings):
    """Location of the biomarker standards seed file."""
    path: str = str(project_root / "config" / "biomarker_standards.yaml")

    def resolved_path(self) -> Path:
        """Relative paths are taken from the project root."""
        path = Path(self.path)
        return path if path.is_absolute() else project_root / path


class Settings(BaseSettings):
    processing: ProcessingSettings = ProcessingSettings()
    storage: StorageSettings = StorageSettings()
    database: DatabaseSettings = DatabaseSettings()
    gemini: GeminiSettings = GeminiSettings()
    openai: OpenAISettings = OpenAISettings()
    redis: RedisSettings = RedisSettings()
    catalog: CatalogSettings = CatalogSettings()

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        extra = "ignore"  # Ignore extra fields not in the model


@lru_cache()
def get_settings() -> Settings:
    """Load settings from YAML config file with environment variable substitution."""
    config_path = project_root / "config" / "settings.yaml"

    # Load YAML with ${VAR_NAME} substitution from .env
    yaml_config = load_yaml_with_env(config_path)

    # Environment variables take precedence via pydantic-settings
    return Settings(**yaml_config)
