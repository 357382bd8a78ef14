import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from error_reports.core.config import Settings, get_settings
from error_reports.core.error_emitter import PERMISSION_ERROR, get_error_emitter
from error_reports.core.errors import ReportPermissionError
from error_reports.core.security import Principal, get_current_principal

router = APIRouter(tags=["Diagnostico"])


def _sse(event: ReportPermissionError) -> str:
    return f"event: {PERMISSION_ERROR}\ndata: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


@router.get("/diagnostics/permission-errors")
def recent_permission_errors(principal: Principal = Depends(get_current_principal)):
    return {"items": [event.to_dict() for event in get_error_emitter().recent()]}


@router.get("/diagnostics/permission-errors/stream")
async def stream_permission_errors(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
):
    loop = asyncio.get_running_loop()
    events: "asyncio.Queue[ReportPermissionError]" = asyncio.Queue()

    # Emitted from worker threads; handed over to the loop that serves this stream.
    def _forward(event: ReportPermissionError) -> None:
        loop.call_soon_threadsafe(events.put_nowait, event)

    unsubscribe = get_error_emitter().on(PERMISSION_ERROR, _forward)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(events.get(), settings.LIVE_QUERY_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(event)
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
