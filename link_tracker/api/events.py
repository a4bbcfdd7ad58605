"""Server-Sent Events stream of lifecycle row changes."""

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from ..core import CurrentUserDep, SessionDep
from ..services.realtime import change_hub

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/stream", summary="Subscribe to row changes")
async def stream_events(current_user: CurrentUserDep, session: SessionDep):
    """
    Stream `{table, op, id}` events for escalations, reports, RCAs and
    notifications. Clients re-fetch the affected views on each event.
    """
    # Request-scoped cleanup runs only after the stream ends; hand the
    # pooled connection back now that the profile lookup is done.
    await session.close()

    return StreamingResponse(
        change_hub.subscribe(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
