"""Gateway HTTP API.

- ``POST /chat`` starts a turn and streams its events as server-sent events
- ``POST /sessions/{id}/interrupt`` stops a session's running turn
- ``GET /errors`` exposes captured ERROR logs

Everything except ``/health`` requires ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import re
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_401_UNAUTHORIZED

from conductor.agent.coordinator import TurnCoordinator
from conductor.agent.workflow import ConversationContext
from conductor.config.schema import AgentDefaults
from conductor.logging.error_store import clear_errors, get_errors
from conductor.transport.sse import SSE_HEADERS, sse_stream


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: str = Field(default="default", alias="sessionId")
    user_id: str = Field(default="anonymous", alias="userId")
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = Field(default=None, alias="topP")
    tools: list[str] | None = None


def _require_token(token: str):
    def _dep(request: Request) -> None:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        provided = auth_header[len("Bearer "):].strip()
        if not provided or provided != token:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return _dep


def _normalize_session_id(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_.:-]+", "-", (value or "").strip()).strip("-")
    return cleaned[:128] or "default"


def build_conversation(body: ChatRequest, defaults: AgentDefaults) -> ConversationContext:
    return ConversationContext(
        session_id=_normalize_session_id(body.session_id),
        user_id=body.user_id,
        user_message=body.message.strip(),
        model=body.model or defaults.model or None,
        provider=defaults.provider,
        temperature=defaults.temperature if body.temperature is None else body.temperature,
        top_p=defaults.top_p if body.top_p is None else body.top_p,
        context_size=defaults.context_size,
        max_tokens=defaults.max_tokens,
        tool_names=body.tools if body.tools is not None else defaults.enabled_tools,
    )


def create_gateway_app(
    coordinator: TurnCoordinator,
    token: str,
    defaults: AgentDefaults | None = None,
) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    require = _require_token(token)
    defaults = defaults or AgentDefaults()

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"ok": True})

    @app.post("/chat", dependencies=[Depends(require)])
    async def chat(body: ChatRequest) -> StreamingResponse:
        if not body.message.strip():
            raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail="message is required")
        conversation = build_conversation(body, defaults)
        connection = await coordinator.chat(conversation)
        return StreamingResponse(
            sse_stream(connection, on_disconnect=coordinator.abandon),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/sessions/{session_id}/interrupt", dependencies=[Depends(require)])
    async def interrupt(session_id: str) -> JSONResponse:
        stopped = coordinator.interrupt(_normalize_session_id(session_id))
        body: dict[str, Any] = {"ok": True, "interrupted": stopped}
        if not stopped:
            body["message"] = "No running turn for this session."
        return JSONResponse(body)

    @app.get("/errors", dependencies=[Depends(require)])
    async def list_errors(limit: int = 200) -> JSONResponse:
        return JSONResponse({"errors": get_errors(limit=limit)})

    @app.post("/errors/clear", dependencies=[Depends(require)])
    async def clear_error_log() -> JSONResponse:
        clear_errors()
        return JSONResponse({"ok": True})

    return app
