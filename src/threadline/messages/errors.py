"""Errors raised by the reconciliation engine."""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class DanglingToolResult(ReconciliationError):
    """A tool-result segment with no preceding tool-call, found while normalizing."""

    def __init__(self, tool_call_id: str, tool_name: str | None = None):
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
        super().__init__(
            f"tool-result for {tool_call_id!r} (tool={tool_name}) "
            "has no preceding tool-call"
        )


class OrphanToolResult(ReconciliationError):
    """A tool result with no call/partial-call record to resolve."""

    def __init__(self, tool_call_id: str, message_id: str | None = None):
        self.tool_call_id = tool_call_id
        self.message_id = message_id
        where = f" in message {message_id}" if message_id else ""
        super().__init__(
            f"tool-result must be preceded by a tool-call with toolCallId "
            f"{tool_call_id!r}{where}"
        )


class InvalidLifecycleTransition(ReconciliationError):
    """
    Attempted regression of a tool invocation's state.

    Never fatal: the reconciler logs it and keeps the existing state.
    """

    def __init__(self, tool_call_id: str, current: str, attempted: str):
        self.tool_call_id = tool_call_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Tool call {tool_call_id!r} cannot move from {current!r} to {attempted!r}"
        )


class MalformedStreamEvent(ReconciliationError):
    """A stream event that cannot be parsed or applied. Aborts accumulation."""


class StreamFailed(ReconciliationError):
    """The upstream stream reported an error event."""

    def __init__(self, error: object):
        self.error = error
        super().__init__(f"Stream reported an error: {error}")


class UnsupportedMessageShape(ReconciliationError, ValueError):
    """Input that matches none of the accepted message shapes."""
