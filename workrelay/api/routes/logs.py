"""Action log view for workers running inside the HTTP process."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from workrelay.services.log_sink import InMemoryLogSink

logs_router = APIRouter(prefix="/logs", tags=["Logs"])


@logs_router.get("")
async def get_logs(
    request: Request,
    action: Optional[str] = Query(default=None, description="Case-insensitive action filter"),
    limit: int = Query(default=20, ge=1, le=1000),
) -> Dict[str, Any]:
    ctx = getattr(request.app.state, "worker_context", None)
    sink = getattr(ctx, "log_sink", None)
    if not isinstance(sink, InMemoryLogSink):
        raise HTTPException(status_code=404, detail="Action log is only kept when workers run in this process")

    entries = sink.entries(action=action, limit=limit)
    return {
        "success": True,
        "count": len(entries),
        "data": [e.model_dump(mode="json", by_alias=True) for e in entries],
    }


__all__ = ["logs_router"]
