"""
Centralized configuration loader.

Sources, highest priority first:
1. Explicit keyword arguments
2. Environment variables (and `.env`)
3. YAML files in `config/` (`<file>.<ENVIRONMENT>.yaml` wins over `<file>.yaml`)

Example:
    from workrelay.config.services import QueueSettings

    queue_settings = QueueSettings.get_instance()
    print(queue_settings.amqp_url)
"""

import os
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, TypeVar

import yaml
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from workrelay.shared.exceptions import ConfigurationError

T = TypeVar("T", bound=BaseSettings)


class ConfigLoader:
    """YAML loader with a process-wide cache shared by all settings groups."""

    _cache: Dict[str, Any] = {}

    YAML_CONFIG_DIR = Path(os.getenv("WORKRELAY_CONFIG_DIR", "config"))

    # dev, staging, prod
    ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

    @classmethod
    def load_from_yaml(cls, filename: str, group: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Load a configuration group from a YAML file.

        Args:
            filename: YAML file name (e.g. "workrelay.yaml")
            group: Top-level key inside the file (optional)

        Returns:
            Dict with the group's values, or None if the file/group is absent

        Raises:
            ConfigurationError: if the file exists but cannot be parsed
        """
        cache_key = f"yaml:{filename}:{group}"
        if cache_key in cls._cache:
            return cls._cache[cache_key]

        env_filename = filename.replace(".yaml", f".{cls.ENVIRONMENT}.yaml")
        yaml_path = cls.YAML_CONFIG_DIR / env_filename
        if not yaml_path.exists():
            yaml_path = cls.YAML_CONFIG_DIR / filename
        if not yaml_path.exists():
            return None

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {yaml_path}",
                details={"path": str(yaml_path)},
                original_error=e,
            ) from e

        result = data.get(group) if group else data
        cls._cache[cache_key] = result
        return result

    @classmethod
    def clear_cache(cls):
        """Drop cached YAML groups and settings singletons."""
        cls._cache.clear()


class YamlGroupSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads the class's `yaml_group` from its YAML file."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        # Values are returned in bulk from __call__
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        settings_cls = self.settings_cls
        yaml_group = getattr(settings_cls, "yaml_group", None)
        yaml_file = getattr(settings_cls, "yaml_file", None)
        if not (yaml_group or yaml_file):
            return {}
        filename = yaml_file or "workrelay.yaml"
        data = ConfigLoader.load_from_yaml(filename, yaml_group)
        if not data:
            return {}
        return {k: v for k, v in data.items() if k in settings_cls.model_fields}


class BaseSettingsWithLoader(BaseSettings):
    """
    Base class for settings groups with cascading loading.

    Example:
        class QueueSettings(BaseSettingsWithLoader):
            yaml_group: ClassVar[Optional[str]] = "queue"

            host: str = "localhost"
            port: int = 5672
    """

    # Group inside the YAML file (overridden by subclasses)
    yaml_group: ClassVar[Optional[str]] = None

    # YAML file name (default: workrelay.yaml)
    yaml_file: ClassVar[Optional[str]] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlGroupSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def get_instance(cls: Type[T]) -> T:
        """Return the process-wide instance of this settings group."""
        cache_key = f"settings:{cls.__name__}"
        if cache_key not in ConfigLoader._cache:
            ConfigLoader._cache[cache_key] = cls()
        return ConfigLoader._cache[cache_key]
