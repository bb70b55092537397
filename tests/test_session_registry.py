"""Tests for the session registry."""

import pytest

from conductor.agent.sessions import CancellationToken, InMemorySessionRegistry
from conductor.errors import TurnCancelled


def test_unknown_session_counts_as_cancelled() -> None:
    registry = InMemorySessionRegistry()
    assert registry.is_cancelled("nobody") is True


def test_start_marks_session_active() -> None:
    registry = InMemorySessionRegistry()
    token = registry.start("s1")

    assert registry.is_cancelled("s1") is False
    assert token.cancelled is False
    assert registry.active_sessions() == ["s1"]


def test_second_start_cancels_previous_turn() -> None:
    registry = InMemorySessionRegistry()
    first = registry.start("s1")
    second = registry.start("s1")

    assert first.cancelled is True
    assert second.cancelled is False
    assert registry.is_cancelled("s1") is False


def test_sessions_are_independent() -> None:
    registry = InMemorySessionRegistry()
    a = registry.start("a")
    registry.start("b")

    assert a.cancelled is False


def test_clear_with_stale_token_keeps_newer_turn() -> None:
    registry = InMemorySessionRegistry()
    old = registry.start("s1")
    new = registry.start("s1")

    registry.clear("s1", old)
    assert registry.is_cancelled("s1") is False

    registry.clear("s1", new)
    assert registry.is_cancelled("s1") is True


def test_clear_without_token_always_removes() -> None:
    registry = InMemorySessionRegistry()
    registry.start("s1")
    registry.clear("s1")
    registry.clear("s1")
    assert registry.is_cancelled("s1") is True


def test_cancel_interrupts_running_turn_once() -> None:
    registry = InMemorySessionRegistry()
    token = registry.start("s1")

    assert registry.cancel("s1") is True
    assert token.cancelled is True
    assert registry.is_cancelled("s1") is True
    assert registry.cancel("s1") is False
    assert registry.cancel("missing") is False


def test_token_raise_if_cancelled() -> None:
    token = CancellationToken("s1")
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(TurnCancelled):
        token.raise_if_cancelled()
