"""
Turn coordinator: entry point for a user message.

``chat`` opens the client connection, registers the turn with the session
registry, and hands the work to a background task before returning the
connection. The background task walks the workflow through a table of
stage handlers until it reaches DONE, and its cleanup always releases the
session and closes the connection.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from conductor.agent.classifier import MessageClassifier
from conductor.agent.decomposer import TaskDecomposer
from conductor.agent.loop import DEFAULT_MAX_ITERATIONS, AgentLoopExecutor
from conductor.agent.sessions import CancellationToken, InMemorySessionRegistry, SessionRegistry
from conductor.agent.workflow import ConversationContext, WorkflowContext, WorkflowState
from conductor.errors import TurnCancelled
from conductor.persistence.base import ConversationStore, TaskStatus
from conductor.providers.base import LLMProvider
from conductor.tools.gateway import ToolGateway
from conductor.transport.base import MessageTransport, QueueTransport
from conductor.transport.connection import StreamConnection
from conductor.transport.events import EventType

StageHandler = Callable[[WorkflowContext], Awaitable[WorkflowState]]

DEFAULT_CONNECTION_TIMEOUT = 30 * 60


class TurnCoordinator:
    def __init__(
        self,
        provider: LLMProvider,
        gateway: ToolGateway,
        store: ConversationStore,
        transport: MessageTransport | None = None,
        sessions: SessionRegistry | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        connection_timeout: float | None = DEFAULT_CONNECTION_TIMEOUT,
    ):
        self.provider = provider
        self.store = store
        self.transport = transport or QueueTransport()
        self.sessions = sessions or InMemorySessionRegistry()
        self.connection_timeout = connection_timeout

        self.classifier = MessageClassifier(provider, store, self.transport)
        self.decomposer = TaskDecomposer(provider, store, self.transport)
        self.executor = AgentLoopExecutor(
            provider, gateway, store, self.transport, max_iterations=max_iterations
        )

        self._handlers: dict[WorkflowState, StageHandler] = {
            WorkflowState.CLASSIFY: self.classifier.handle,
            WorkflowState.DECOMPOSE: self.decomposer.handle,
            WorkflowState.EXECUTE: self.executor.handle_execute,
            WorkflowState.POLISH: self.executor.handle_polish,
        }
        self._active_tasks: set[asyncio.Task] = set()
        self._turn_tokens: dict[str, CancellationToken] = {}

    async def chat(self, conversation: ConversationContext) -> StreamConnection:
        """Start a turn and return its connection without waiting for any output."""
        connection = self.transport.create_connection(self.connection_timeout)
        token = self.sessions.start(conversation.session_id)
        wctx = WorkflowContext(conversation=conversation, connection=connection, cancel_token=token)
        self._turn_tokens[connection.id] = token
        connection.on_timeout(lambda: self.abandon(connection))

        task = asyncio.create_task(self._run_turn(wctx), name=f"turn:{conversation.session_id}")
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)
        return connection

    async def _run_turn(self, wctx: WorkflowContext) -> None:
        session_id = wctx.session_id
        final_status = TaskStatus.COMPLETED
        logger.info(f"Session {session_id}: turn started")
        try:
            while wctx.state is not WorkflowState.DONE and not wctx.should_break:
                wctx.cancel_token.raise_if_cancelled()
                handler = self._handlers[wctx.state]
                next_state = await handler(wctx)
                logger.debug(f"Session {session_id}: {wctx.state.value} -> {next_state.value}")
                wctx.transition_to(next_state)
        except TurnCancelled:
            final_status = TaskStatus.CANCELLED
            logger.info(f"Session {session_id}: turn cancelled during {wctx.state.value}")
        except asyncio.CancelledError:
            final_status = TaskStatus.CANCELLED
            logger.info(f"Session {session_id}: turn task cancelled during {wctx.state.value}")
            raise
        except Exception as e:
            final_status = TaskStatus.FAILED
            logger.exception(f"Session {session_id}: turn failed during {wctx.state.value}")
            self.transport.fail(wctx.connection, e)
        finally:
            self.sessions.clear(session_id, wctx.cancel_token)
            self._turn_tokens.pop(wctx.connection.id, None)
            if wctx.parent_task is not None:
                self.store.update_task_status(
                    wctx.parent_task.id,
                    final_status,
                    result=wctx.get_result("answer"),
                )
            self.transport.close(wctx.connection)
            logger.info(f"Session {session_id}: turn ended ({final_status.value})")

    async def process_direct(self, conversation: ConversationContext) -> str:
        """Run a turn to completion and return the text a user would read.

        That is the question reply or the polished answer. Errors come back
        as ``Error: ...``.
        """
        connection = await self.chat(conversation)
        answer: list[str] = []
        async for event in connection.events():
            if event.type is EventType.ERROR:
                return f"Error: {event.content}"
            if event.stage in ("answer", "polish") and event.content:
                answer.append(event.content)
        return "".join(answer)

    def interrupt(self, session_id: str) -> bool:
        return self.sessions.cancel(session_id)

    def abandon(self, connection: StreamConnection) -> None:
        """Stop the turn feeding ``connection`` (its client went away or it timed out).

        Only that turn is cancelled, even if a newer turn of the same session
        is already running.
        """
        token = self._turn_tokens.get(connection.id)
        if token is not None and not token.cancelled:
            token.cancel()
            logger.info(f"Session {token.session_id}: connection {connection.id} gone, stopping turn")

    async def shutdown(self) -> None:
        """Cancel in-flight turns and wait for their cleanup."""
        tasks = list(self._active_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
