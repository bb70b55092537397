"""Agent turn processing."""

from conductor.agent.coordinator import TurnCoordinator
from conductor.agent.sessions import CancellationToken, InMemorySessionRegistry, SessionRegistry
from conductor.agent.workflow import ConversationContext, WorkflowContext, WorkflowState

__all__ = [
    "CancellationToken",
    "ConversationContext",
    "InMemorySessionRegistry",
    "SessionRegistry",
    "TurnCoordinator",
    "WorkflowContext",
    "WorkflowState",
]
