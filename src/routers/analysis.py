import asyncio
import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict

from src.services.orchestrator import TERMINAL_STATUSES, SessionOrchestrator, get_orchestrator

router = APIRouter(prefix="/analysis")


class StartAnalysisRequest(BaseModel):
    url: str

    model_config = ConfigDict(extra="forbid")


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _sse_event(event_name: str, payload: dict[str, Any]) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, ensure_ascii=False, default=_json_default)}\n\n"


@router.post("", status_code=status.HTTP_202_ACCEPTED, tags=["Analysis"])
async def start_analysis(
    payload: StartAnalysisRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    session_id = await orchestrator.start_analysis(payload.url)
    session_status = orchestrator.get_status(session_id)
    return {"session_id": session_id, "status": session_status["status"]}


@router.get("/{session_id}", tags=["Analysis"])
async def get_analysis_status(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        return orchestrator.get_status(session_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/{session_id}/retry", status_code=status.HTTP_202_ACCEPTED, tags=["Analysis"])
async def retry_analysis(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        return await orchestrator.retry(session_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.get("/{session_id}/events", tags=["Analysis"])
async def stream_analysis_events(
    session_id: str,
    heartbeat_seconds: float = Query(default=15.0, ge=1.0, le=60.0),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    try:
        queue = orchestrator.subscribe(session_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    async def event_generator():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield _sse_event("heartbeat", {"session_id": session_id})
                    continue

                status_value = str(event.get("status", ""))
                if status_value in TERMINAL_STATUSES:
                    yield _sse_event("done" if status_value == "complete" else "error", event)
                    return
                yield _sse_event("progress", event)
        finally:
            orchestrator.unsubscribe(session_id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
