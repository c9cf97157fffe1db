"""
Base application settings.

General settings not tied to a specific service.
"""

from typing import ClassVar, Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from workrelay.config.config_loader import BaseSettingsWithLoader


class AppBaseSettings(BaseSettingsWithLoader):
    """Main application settings."""

    yaml_group: ClassVar[Optional[str]] = "app"

    app_name: str = Field(default="workrelay", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="dev", description="Environment (dev/staging/prod)")

    host: str = Field(default="0.0.0.0", description="Status API bind host")
    port: int = Field(default=8000, description="Status API port")

    debug: bool = Field(default=False, description="Debug mode")

    model_config = SettingsConfigDict(env_prefix="APP_")


__all__ = ["AppBaseSettings"]
