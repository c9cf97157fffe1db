"""
Application configuration.

Example:
    from workrelay.config import settings

    print(settings.queue.amqp_url)
    print(settings.queue.prefetch_count)
"""

from workrelay.config.config_loader import BaseSettingsWithLoader, ConfigLoader
from workrelay.config.settings import Settings, settings

__all__ = [
    "BaseSettingsWithLoader",
    "ConfigLoader",
    "Settings",
    "settings",
]
