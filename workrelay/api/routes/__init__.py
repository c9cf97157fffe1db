from workrelay.api.routes.logs import logs_router
from workrelay.api.routes.queues import queue_router

__all__ = ["logs_router", "queue_router"]
