# skillforge/endpoints/events.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from skillforge.utils.config import settings
from skillforge.utils.deps import Services, get_services
from skillforge.utils.errors import NotFoundError, USER_NOT_FOUND
from skillforge.utils.responses import ok

router = APIRouter(
    tags=["Events"]
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

@router.get("/stats")
async def connection_stats(services: Services = Depends(get_services)):
    return ok(services.hub.stats())

@router.get("/{user_id}")
async def stream_events(user_id: str, request: Request, services: Services = Depends(get_services)):
    """
    Server-sent event stream for one user. The connection stays registered
    with the hub until the client goes away.
    """
    if not await services.gateway.get_user(user_id):
        raise NotFoundError("User not found", USER_NOT_FOUND)

    hub = services.hub
    connection = hub.subscribe(user_id)

    async def event_stream():
        try:
            async for message in connection.events(settings.sse_heartbeat_seconds):
                if await request.is_disconnected():
                    break
                yield message
        finally:
            hub.unsubscribe(connection)

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)
