"""
HTTP status app.

Run:
    uvicorn workrelay.main:app

The lifespan connects the shared QueueService on startup and closes it on
shutdown. With RABBITMQ_RUN_WORKERS_IN_PROCESS=true the workers consume in
this process too; otherwise they run in `python -m workrelay.messaging.worker`.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from workrelay.api.error_handlers import install_error_handlers
from workrelay.api.routes.logs import logs_router
from workrelay.api.routes.queues import queue_router, queue_service_dependency
from workrelay.config import settings
from workrelay.messaging.service import QueueService, get_queue_service
from workrelay.utility.logging_client import logger, reset_correlation_id, set_correlation_id
from workrelay.workers import WorkerContext, start_workers


def create_app(service: Optional[QueueService] = None) -> FastAPI:
    queue_service = service or get_queue_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting status API", component="lifespan")
        try:
            await queue_service.connect()
        except Exception as e:
            logger.error(f"RabbitMQ connection failed on startup: {e}", component="lifespan")
            raise

        if settings.queue.run_workers_in_process:
            app.state.worker_context = WorkerContext.from_settings()
            await start_workers(queue_service, app.state.worker_context)

        yield

        logger.info("Shutting down status API", component="lifespan")
        await queue_service.close()

    app = FastAPI(
        title=settings.app.app_name,
        version=settings.app.app_version,
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.state.queue_service = queue_service
    app.dependency_overrides[queue_service_dependency] = lambda: queue_service

    app.add_middleware(RequestIdMiddleware)
    install_error_handlers(app)
    app.include_router(queue_router)
    app.include_router(logs_router)

    @app.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy" if queue_service.connected else "degraded",
            "rabbitmq_connected": queue_service.connected,
            "version": settings.app.app_version,
        }

    return app


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id per request and logs slow requests."""

    async def dispatch(self, request: Request, call_next):
        token = set_correlation_id(request.headers.get("X-Request-ID"))
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Process-Time-ms"] = str(round(duration_ms, 2))
            if duration_ms > 1000:
                logger.structured(
                    "warning",
                    "slow_request",
                    component="http",
                    method=request.method,
                    path=str(request.url.path),
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )
            return response
        finally:
            reset_correlation_id(token)


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=settings.app.host, port=settings.app.port)
