"""
Centralized API error handling.

Goals:
- consistent error response shape
- include the correlation id
- avoid leaking internal exception details on 500
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from workrelay.shared.exceptions import (
    BrokerConnectionError,
    PublishError,
    QueueNotFoundError,
    WorkRelayError,
)
from workrelay.utility.logging_client import generate_correlation_id, get_correlation_id, logger


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID") or get_correlation_id() or generate_correlation_id()


def _error_payload(
    *,
    code: str,
    message: str,
    request_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "error",
        "error": {
            "code": code,
            "message": message,
            "request_id": request_id,
        },
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


def _error_response(request: Request, status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    rid = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(code=code, message=message, request_id=rid, details=details),
        headers={"X-Request-ID": rid},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Attach consistent error handlers to a FastAPI app."""

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        details = None if isinstance(exc.detail, str) else {"detail": exc.detail}
        return _error_response(request, exc.status_code, "http_error", message, details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(request, 422, "validation_error", "Validation error", exc.errors())

    @app.exception_handler(QueueNotFoundError)
    async def queue_not_found_handler(request: Request, exc: QueueNotFoundError) -> JSONResponse:
        return _error_response(request, 404, "queue_not_found", exc.message, {"queue": exc.queue})

    @app.exception_handler(BrokerConnectionError)
    async def broker_unavailable_handler(request: Request, exc: BrokerConnectionError) -> JSONResponse:
        logger.warning(f"Broker unavailable on {request.url.path}: {exc}", component="http")
        return _error_response(request, 503, "broker_unavailable", "Message broker is unavailable")

    @app.exception_handler(PublishError)
    async def publish_error_handler(request: Request, exc: PublishError) -> JSONResponse:
        logger.warning(f"Publish failed on {request.url.path}: {exc}", component="http")
        return _error_response(request, 502, "publish_failed", exc.message, {"queue": exc.queue})

    @app.exception_handler(WorkRelayError)
    async def app_error_handler(request: Request, exc: WorkRelayError) -> JSONResponse:
        logger.log_exception(exc, component="http", context={"path": str(request.url.path)})
        return _error_response(request, 500, "internal_error", "Internal server error")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.log_exception(
            exc,
            component="http",
            context={
                "path": str(request.url.path),
                "method": request.method,
            },
        )
        return _error_response(request, 500, "internal_error", "Internal server error")
