"""
Pytest fixtures for threadline tests.

Everything runs in memory with a deterministic identity source:
- identity: FakeIdentity, ids "id-1", "id-2", ... and a ticking clock
- history: MessageHistory bound to that identity and a fixed thread
"""

from datetime import datetime, timezone

import pytest

from threadline.messages import MessageHistory
from threadline.messages.types import (
    CanonicalMessage,
    MessageContent,
    TextPart,
    ToolCall,
    ToolInvocationPart,
    ToolResult,
)
from threadline.testing import FakeIdentity

T0 = datetime(2025, 8, 5, 22, 58, 18, tzinfo=timezone.utc)


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def history(identity) -> MessageHistory:
    return MessageHistory(thread_id="thread-1", resource_id="user-1", identity=identity)


def canonical(message_id: str, *parts, role: str = "assistant", **content) -> CanonicalMessage:
    """Build a canonical message from parts."""
    message = CanonicalMessage(
        id=message_id,
        role=role,
        created_at=content.pop("created_at", T0),
        content=MessageContent(parts=list(parts), **content),
    )
    message.sync_tool_invocations()
    return message


def text(value: str) -> TextPart:
    return TextPart(text=value)


def call(tool_call_id: str, tool_name: str = "weather", args=None, **kwargs) -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_invocation=ToolCall(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            args=args if args is not None else {},
            **kwargs,
        )
    )


def result(
    tool_call_id: str, value="sunny", tool_name: str = "weather", args=None, **kwargs
) -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_invocation=ToolResult(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            args=args if args is not None else {},
            result=value,
            **kwargs,
        )
    )


def states(message: CanonicalMessage) -> list[tuple[str, str]]:
    """(toolCallId, state) for every tool part, in order."""
    return [
        (p.tool_invocation.tool_call_id, p.tool_invocation.state)
        for p in message.tool_invocation_parts()
    ]
