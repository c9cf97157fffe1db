"""
Root application configuration.

`Settings` is a thin facade with @property accessors that always return the
singleton instance of each group, so a `ConfigLoader.clear_cache()` (tests,
reload) is picked up by every consumer without re-importing.
"""

from workrelay.config.base import AppBaseSettings
from workrelay.config.services import (
    LogStorageSettings,
    MailSettings,
    QueueSettings,
    WorkerSettings,
)


class Settings:
    """Facade around singleton settings groups."""

    @property
    def app(self) -> AppBaseSettings:
        return AppBaseSettings.get_instance()

    @property
    def queue(self) -> QueueSettings:
        return QueueSettings.get_instance()

    @property
    def mail(self) -> MailSettings:
        return MailSettings.get_instance()

    @property
    def workers(self) -> WorkerSettings:
        return WorkerSettings.get_instance()

    @property
    def logging(self) -> LogStorageSettings:
        return LogStorageSettings.get_instance()


settings = Settings()


__all__ = ["Settings", "settings"]
