"""
Settings for internal services.

Groups:
- RabbitMQ (connection, consumer limits, dead-lettering, queue names)
- SMTP (email delivery)
- Workers (simulated delivery delays, log buffer)
- Logging
"""

from typing import ClassVar, List, Optional
from urllib.parse import quote

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from workrelay.config.config_loader import BaseSettingsWithLoader


class QueueSettings(BaseSettingsWithLoader):
    """RabbitMQ settings."""

    yaml_group: ClassVar[Optional[str]] = "queue"

    # Connection
    url: Optional[str] = Field(default=None, description="Full AMQP URI (overrides host/port/credentials)")
    host: str = Field(default="localhost", description="RabbitMQ host")
    port: int = Field(default=5672, description="AMQP port")
    username: str = Field(default="guest", description="User")
    password: str = Field(default="guest", description="Password")
    vhost: str = Field(default="/", description="Virtual host")
    heartbeat: Optional[int] = Field(default=None, description="Heartbeat interval (s)")

    # Reconnect
    reconnect_delay: float = Field(default=5.0, ge=0, description="Fixed delay between reconnect attempts (s)")

    # Consumers
    prefetch_count: int = Field(default=1, ge=1, description="Unacked messages per consumer")
    handler_timeout: Optional[float] = Field(
        default=None, gt=0, description="Per-message handler timeout (s), unset = no timeout"
    )
    max_redeliveries: Optional[int] = Field(
        default=None, ge=0, description="Redeliveries before dead-lettering, unset = unbounded"
    )

    # Dead Letter Queue
    dead_letter_enabled: bool = Field(default=True, description="Copy dropped messages to a DLQ")
    dead_letter_prefix: str = Field(default="dlq.", description="DLQ name prefix")

    # Queues
    email_queue: str = Field(default="email-queue", description="Email notifications")
    sms_queue: str = Field(default="sms-queue", description="SMS notifications")
    analytics_queue: str = Field(default="analytics-queue", description="Analytics events")
    image_queue: str = Field(default="image-processing-queue", description="Image processing")

    # Health thresholds for the status view
    backlog_alert_threshold: int = Field(default=100, description="Alert when a queue holds more messages")
    dlq_alert_threshold: int = Field(default=10, description="Alert when a DLQ holds more messages")

    # Execution mode
    run_workers_in_process: bool = Field(
        default=False,
        description="Start consumers inside the HTTP process (otherwise run the worker process)",
    )

    @property
    def amqp_url(self) -> str:
        """AMQP URL for the connection."""
        if self.url:
            return self.url
        vhost = "" if self.vhost == "/" else quote(self.vhost.lstrip("/"), safe="")
        return (
            f"amqp://{quote(self.username, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{vhost}"
        )

    @property
    def queue_names(self) -> List[str]:
        return [self.email_queue, self.sms_queue, self.analytics_queue, self.image_queue]

    def dead_letter_queue(self, queue_name: str) -> str:
        return f"{self.dead_letter_prefix}{queue_name}"

    model_config = SettingsConfigDict(env_prefix="RABBITMQ_")


class MailSettings(BaseSettingsWithLoader):
    """SMTP settings for email delivery."""

    yaml_group: ClassVar[Optional[str]] = "mail"

    smtp_host: str = Field(default="", description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_user: str = Field(default="", description="SMTP user")
    smtp_password: str = Field(default="", description="SMTP password")
    smtp_from: str = Field(default="", description="Sender address")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    smtp_timeout: int = Field(default=30, description="SMTP timeout (s)")

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    model_config = SettingsConfigDict(env_prefix="SMTP_")


class WorkerSettings(BaseSettingsWithLoader):
    """Background worker settings."""

    yaml_group: ClassVar[Optional[str]] = "workers"

    # Simulated delivery when no real transport is configured
    email_simulate_delay: float = Field(default=0.5, ge=0, description="Simulated email send (s)")
    sms_simulate_delay: float = Field(default=0.8, ge=0, description="Simulated SMS send (s)")
    analytics_delay: float = Field(default=0.5, ge=0, description="Analytics processing (s)")
    image_operation_delay: float = Field(default=0.7, ge=0, description="Per image operation (s)")

    # Action log
    log_buffer_size: int = Field(default=1000, ge=1, description="In-memory action log size")

    model_config = SettingsConfigDict(env_prefix="WORKER_")


class LogStorageSettings(BaseSettingsWithLoader):
    """Logging settings."""

    yaml_group: ClassVar[Optional[str]] = "logging"

    level: str = Field(default="INFO", description="Log level")
    file_enabled: bool = Field(default=True, description="Write logs to daily files")
    file_path: str = Field(default="./logs", description="Log directory")

    model_config = SettingsConfigDict(env_prefix="LOG_")


__all__ = [
    "QueueSettings",
    "MailSettings",
    "WorkerSettings",
    "LogStorageSettings",
]
