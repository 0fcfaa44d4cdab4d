from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.config import settings
from src.database import ping_mongo_detailed
from src.services.orchestrator import SessionOrchestrator, get_orchestrator

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    mongo: str
    environment: str
    sessions: int = 0
    active_sessions: int = 0
    memory: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: str | None = None


@router.get("/health", response_model=HealthResponse)
async def get_health(
    request: Request,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    if settings.persist_results:
        mongo_ok, mongo_detail = await ping_mongo_detailed()
        mongo_state = "up" if mongo_ok else "down"
    else:
        mongo_ok, mongo_detail, mongo_state = True, None, "disabled"

    monitor = getattr(request.app.state, "memory_monitor", None)
    memory = monitor.stats() if monitor is not None else None
    memory_ok = memory is None or memory["level"] != "critical"

    healthy = mongo_ok and memory_ok
    http_status = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    payload = HealthResponse(
        status="ok" if healthy else "degraded",
        mongo=mongo_state,
        environment=settings.app_env,
        sessions=len(orchestrator.sessions),
        active_sessions=orchestrator.active_session_count(),
        memory=memory,
        detail=mongo_detail if not mongo_ok else None,
    )
    return JSONResponse(status_code=http_status, content=payload.model_dump(mode="json", exclude_none=True))
