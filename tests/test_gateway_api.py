from __future__ import annotations

import json

from fastapi.testclient import TestClient
from loguru import logger

from conductor.agent.workflow import ConversationContext
from conductor.config.schema import AgentDefaults
from conductor.gateway.api import ChatRequest, _normalize_session_id, build_conversation, create_gateway_app
from conductor.logging.error_store import init_error_store, shutdown_error_store
from tests.helpers import ScriptedProvider, make_coordinator, verdict

TOKEN = "test-token"


def _auth(token: str = TOKEN) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _frames(body: str) -> list[dict]:
    return [
        json.loads(chunk[len("data: "):])
        for chunk in body.split("\n\n")
        if chunk.startswith("data: ")
    ]


class _RecordingCoordinator:
    def __init__(self) -> None:
        self.interrupted: list[str] = []

    def interrupt(self, session_id: str) -> bool:
        self.interrupted.append(session_id)
        return session_id == "busy"


def test_normalize_session_id() -> None:
    assert _normalize_session_id("my session") == "my-session"
    assert _normalize_session_id("a/b?c") == "a-b-c"
    assert _normalize_session_id("") == "default"


def test_build_conversation_applies_defaults_and_overrides() -> None:
    defaults = AgentDefaults(model="base-model", temperature=0.2, enabled_tools=["echo"])
    body = ChatRequest.model_validate(
        {"message": "  hi  ", "sessionId": "x y", "userId": "u9", "topP": 0.5}
    )

    ctx = build_conversation(body, defaults)

    assert isinstance(ctx, ConversationContext)
    assert ctx.session_id == "x-y"
    assert ctx.user_id == "u9"
    assert ctx.user_message == "hi"
    assert ctx.model == "base-model"
    assert ctx.temperature == 0.2
    assert ctx.top_p == 0.5
    assert ctx.tool_names == ["echo"]


def test_health_is_public() -> None:
    coordinator, _ = make_coordinator(ScriptedProvider())
    client = TestClient(create_gateway_app(coordinator, TOKEN))

    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}


def test_chat_requires_bearer_token() -> None:
    coordinator, _ = make_coordinator(ScriptedProvider())
    client = TestClient(create_gateway_app(coordinator, TOKEN))

    assert client.post("/chat", json={"message": "hi"}).status_code == 401
    assert client.post("/chat", headers=_auth("wrong"), json={"message": "hi"}).status_code == 401


def test_chat_requires_message() -> None:
    coordinator, _ = make_coordinator(ScriptedProvider())
    client = TestClient(create_gateway_app(coordinator, TOKEN))

    res = client.post("/chat", headers=_auth(), json={"message": "   "})
    assert res.status_code == 400


def test_chat_streams_question_reply_as_sse() -> None:
    provider = ScriptedProvider(responses=[verdict(True, "Hello there.")])
    coordinator, store = make_coordinator(provider)

    with TestClient(create_gateway_app(coordinator, TOKEN)) as client:
        res = client.post(
            "/chat",
            headers=_auth(),
            json={"message": "hi?", "sessionId": "my session"},
        )

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"
    frames = _frames(res.text)
    assert frames == [
        {"type": "end", "content": "Hello there.", "done": True, "metadata": {"stage": "answer"}}
    ]
    assert [m.content for m in store.get_messages("my-session")] == ["hi?", "Hello there."]


def test_chat_streams_task_turn_until_end() -> None:
    provider = ScriptedProvider(
        responses=[verdict(False)],
        streams=[["1. one\n", "2. two"], ["Finished."]],
    )
    coordinator, _ = make_coordinator(provider)

    with TestClient(create_gateway_app(coordinator, TOKEN)) as client:
        res = client.post("/chat", headers=_auth(), json={"message": "do two things"})

    frames = _frames(res.text)
    assert [f["type"] for f in frames] == ["text", "text", "text", "end"]
    assert [f["metadata"].get("stage") for f in frames] == ["decompose", "decompose", "polish", "polish"]
    assert frames[-1]["done"] is True


def test_chat_error_is_a_single_error_frame() -> None:
    provider = ScriptedProvider(responses=[verdict(False)], streams=[["no plan here"]])
    coordinator, _ = make_coordinator(provider)

    with TestClient(create_gateway_app(coordinator, TOKEN)) as client:
        res = client.post("/chat", headers=_auth(), json={"message": "do it"})

    frames = _frames(res.text)
    assert [f["type"] for f in frames] == ["text", "error"]
    assert frames[-1]["done"] is True


def test_interrupt_endpoint() -> None:
    coordinator = _RecordingCoordinator()
    client = TestClient(create_gateway_app(coordinator, TOKEN))

    busy = client.post("/sessions/busy/interrupt", headers=_auth())
    idle = client.post("/sessions/idle%20one/interrupt", headers=_auth())

    assert busy.json() == {"ok": True, "interrupted": True}
    assert idle.json()["interrupted"] is False
    assert "message" in idle.json()
    assert coordinator.interrupted == ["busy", "idle-one"]
    assert client.post("/sessions/busy/interrupt").status_code == 401


def test_errors_endpoint_lists_and_clears(tmp_path) -> None:
    init_error_store(tmp_path / "errors.jsonl")
    try:
        logger.error("gateway exploded")
        client = TestClient(create_gateway_app(_RecordingCoordinator(), TOKEN))

        res = client.get("/errors", headers=_auth())
        assert res.status_code == 200
        assert res.json()["errors"][0]["message"] == "gateway exploded"

        assert client.post("/errors/clear", headers=_auth()).json() == {"ok": True}
        assert client.get("/errors", headers=_auth()).json() == {"errors": []}
    finally:
        shutdown_error_store()
