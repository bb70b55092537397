"""Server-sent events framing for a stream connection."""

import json
from typing import AsyncIterator, Callable

from loguru import logger

from conductor.transport.connection import StreamConnection
from conductor.transport.events import StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: StreamEvent) -> str:
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


async def sse_stream(
    connection: StreamConnection,
    on_disconnect: Callable[[StreamConnection], None] | None = None,
) -> AsyncIterator[str]:
    """Render the connection's events as SSE frames.

    If the client goes away before the stream finished, the connection is
    closed here and ``on_disconnect`` is told about it.
    """
    try:
        async for event in connection.events():
            yield format_sse(event)
    finally:
        if connection.close():
            logger.info(f"Client disconnected from {connection.id}")
            if on_disconnect is not None:
                on_disconnect(connection)
