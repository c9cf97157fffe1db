import contextvars
import json
import logging
import os
import time
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from workrelay.config import settings

app_logger = logging.getLogger("workrelay")
app_logger.handlers.clear()
app_logger.propagate = False

correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> contextvars.Token:
    """Bind a correlation id to the current task; returns a token for `reset_correlation_id`."""
    return correlation_id_var.set(correlation_id or generate_correlation_id())


def reset_correlation_id(token: contextvars.Token) -> None:
    correlation_id_var.reset(token)


class AppLogger:
    _instance = None
    _console = Console(stderr=True)

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._setup_handlers()
        return cls._instance

    def _setup_handlers(self):
        app_logger.setLevel(settings.logging.level.upper())
        rich_handler = RichHandler(
            console=self._console,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        app_logger.addHandler(rich_handler)
        if settings.logging.file_enabled:
            self._add_timed_file_handler()

    @staticmethod
    def _logs_dir() -> Path:
        return Path(settings.logging.file_path)

    def _add_timed_file_handler(self):
        logs_dir = self._logs_dir()
        logs_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(logs_dir / f"{today}.log", encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s | %(name)s | %(message)s", datefmt="%H:%M:%S"
            )
        )
        app_logger.addHandler(file_handler)

    def _ensure_daily_log(self):
        if not settings.logging.file_enabled:
            return
        today = datetime.now().strftime("%Y-%m-%d")
        current_file = Path(os.path.abspath(self._logs_dir() / f"{today}.log"))
        file_handlers = [h for h in app_logger.handlers if isinstance(h, logging.FileHandler)]
        if any(Path(h.baseFilename) == current_file for h in file_handlers):
            return
        for handler in file_handlers:
            app_logger.removeHandler(handler)
            handler.close()
        self._add_timed_file_handler()

    @staticmethod
    def _format(message: str, component: str) -> str:
        cid = get_correlation_id()
        if cid:
            return f"[{component.upper()}] [{cid}] {message}"
        return f"[{component.upper()}] {message}"

    def info(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.info(self._format(message, component))

    def error(self, message: str, component: str = "app", exc_info=False):
        self._ensure_daily_log()
        app_logger.error(self._format(message, component), exc_info=exc_info)

    def debug(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.debug(self._format(message, component))

    def warning(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.warning(self._format(message, component))

    def exception(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.exception(self._format(message, component))

    def structured(self, level: str, event: str, component: str = "app", **extra: Any):
        self._ensure_daily_log()
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "event": event,
            "component": component,
            "correlation_id": get_correlation_id(),
            **extra,
        }
        json_str = json.dumps(log_entry, ensure_ascii=False, default=str)
        log_func = getattr(app_logger, level.lower(), app_logger.info)
        log_func(f"[STRUCTURED] {json_str}")

    def log_exception(
        self,
        exc: BaseException,
        component: str = "app",
        context: Optional[Dict[str, Any]] = None,
    ):
        exc_info = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
        if context:
            exc_info["context"] = context
        self.structured("error", "exception", component=component, **exc_info)

    def timed(self, operation: str, component: str = "app"):
        return TimedOperation(operation, component, self)


class TimedOperation:
    def __init__(self, operation: str, component: str, logger_instance: "AppLogger"):
        self.operation = operation
        self.component = component
        self.logger = logger_instance
        self.start_time: float = 0
        self.extra: Dict[str, Any] = {}

    def add_context(self, **kwargs: Any):
        self.extra.update(kwargs)
        return self

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type is not None:
            self.logger.structured(
                "error",
                f"{self.operation}_failed",
                component=self.component,
                duration_ms=round(duration_ms, 2),
                error=str(exc_val),
                **self.extra,
            )
        else:
            self.logger.structured(
                "debug",
                f"{self.operation}_completed",
                component=self.component,
                duration_ms=round(duration_ms, 2),
                **self.extra,
            )
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)


logger = AppLogger()
