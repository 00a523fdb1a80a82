"""Configuration management using pydantic-settings."""

from pathlib import Path
from typing import Any, Literal, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_PATH = Path.home() / ".promstash" / "config.yaml"

# YAML section -> {yaml key: settings field}
_YAML_LAYOUT: dict[str, dict[str, str]] = {
    "scrape": {
        "target": "target",
        "interval_seconds": "scrape_interval_seconds",
        "timeout_seconds": "scrape_timeout_seconds",
        "job": "job",
        "instance": "instance",
        "buffer_capacity": "buffer_capacity",
    },
    "storage": {
        "output": "output",
    },
    "status": {
        "enabled": "status_enabled",
        "host": "status_host",
        "port": "status_port",
    },
    "logging": {
        "level": "log_level",
        "format": "log_format",
    },
}


def load_yaml_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Priority:
    1. Explicitly provided config_path
    2. ~/.promstash/config.yaml (default location)
    3. Empty dict if no file exists

    Args:
        config_path: Optional path to config file

    Returns:
        Dictionary of configuration values (flattened from nested YAML)
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return {}

    try:
        with open(config_path) as f:
            yaml_data = yaml.safe_load(f) or {}

        flattened = {}

        for section, keys in _YAML_LAYOUT.items():
            values = yaml_data.get(section)
            if not isinstance(values, dict):
                continue
            for yaml_key, field_name in keys.items():
                if yaml_key in values:
                    flattened[field_name] = values[yaml_key]

        return flattened

    except (OSError, yaml.YAMLError) as e:
        import warnings

        warnings.warn(f"Failed to load config from {config_path}: {e}")
        return {}


_config_path: Path | None = None


class YamlSettingsSource(PydanticBaseSettingsSource):
    """
    Custom settings source that loads configuration from YAML file.

    This allows YAML config to be loaded with proper priority in the settings chain.
    """

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        """Not used since we override __call__."""
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        return load_yaml_config(_config_path)


class Settings(BaseSettings):
    """
    promstash configuration settings.

    Configuration priority (highest to lowest):
    1. Explicit keyword arguments
    2. Environment variables (e.g., PROMSTASH_BUFFER_CAPACITY=10)
    3. YAML configuration file (~/.promstash/config.yaml)
    4. .env file
    5. Default values defined in this class
    """

    model_config = SettingsConfigDict(
        env_prefix="PROMSTASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    target: str | None = Field(
        default=None,
        description="URL to scrape, a file path, or '-' for stdin",
    )
    output: Path = Field(
        default=Path("metrics.db"),
        description="SQLite database file receiving the scraped samples",
    )

    scrape_interval_seconds: float = Field(
        default=5.0, gt=0, description="How often the target is scraped"
    )
    scrape_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Per-fetch timeout (defaults to the scrape interval)",
    )
    buffer_capacity: int = Field(
        default=5,
        ge=1,
        description="How many scrapes to hold in memory before dropping the oldest",
    )
    job: str | None = Field(default=None, description="job label added to every sample")
    instance: str | None = Field(
        default=None,
        description="instance label added to every sample (defaults to the target host:port)",
    )

    status_enabled: bool = Field(
        default=False, description="Serve the status endpoint while scraping"
    )
    status_host: str = Field(default="127.0.0.1", description="Status endpoint bind address")
    status_port: int = Field(
        default=8080, ge=1, le=65535, description="Status endpoint port"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text", description="Log format"
    )

    @field_validator("output")
    @classmethod
    def validate_output(cls, v: Path) -> Path:
        """Expand ~ in the database path."""
        return v.expanduser()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize settings sources priority.

        Priority order (highest to lowest):
        1. Explicit kwargs (init_settings) - for testing and programmatic config
        2. Environment variables
        3. YAML configuration file
        4. .env file
        5. Field defaults
        """
        return (
            init_settings,
            env_settings,
            YamlSettingsSource(settings_cls),
            dotenv_settings,
        )


_settings: Settings | None = None


def get_settings(config_path: Path | None = None, reload: bool = False) -> Settings:
    """
    Get global settings instance.

    Args:
        config_path: Optional path to YAML config file (defaults to ~/.promstash/config.yaml)
        reload: If True, force reload settings (useful for testing)

    Returns:
        Settings instance with merged configuration
    """
    global _settings, _config_path
    if _settings is None or reload:
        _config_path = config_path

        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings, _config_path
    _settings = None
    _config_path = None
