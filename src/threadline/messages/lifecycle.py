"""
Tool-invocation lifecycle state machine.

Per tool call (scoped by toolCallId):

    none → partial-call → call → result

Transitions only move forward and `result` is terminal. Sync, unit-testable.
"""

from __future__ import annotations

from typing import Any

from .errors import InvalidLifecycleTransition
from .types import ToolInvocation, ToolState

STATE_ORDER: dict[ToolState, int] = {"partial-call": 0, "call": 1, "result": 2}


def is_upgrade(current: ToolState | None, attempted: ToolState) -> bool:
    """True if `attempted` is strictly later in the lifecycle than `current`."""
    if current is None:
        return True
    return STATE_ORDER[attempted] > STATE_ORDER[current]


def advance(
    current: ToolInvocation | None, incoming: ToolInvocation
) -> ToolInvocation:
    """
    Apply an incoming invocation on top of the current one.

    - No current record: the incoming invocation is taken as-is.
    - Later state: the incoming invocation wins. Args and step missing on the
      incoming side are carried over from the current record.
    - Same state: the current record is kept, except that a still-streaming
      partial call takes the newer args.

    Returns:
        The invocation to store. Never aliases `incoming` when values are
        carried over.

    Raises:
        InvalidLifecycleTransition: If `incoming` is earlier than `current`.
    """
    if current is None:
        return incoming

    if current.tool_call_id != incoming.tool_call_id:
        raise ValueError(
            f"Cannot advance {current.tool_call_id!r} with {incoming.tool_call_id!r}"
        )

    if STATE_ORDER[incoming.state] < STATE_ORDER[current.state]:
        raise InvalidLifecycleTransition(
            current.tool_call_id, current.state, incoming.state
        )

    if incoming.state == current.state:
        if incoming.state == "partial-call" and incoming.args is not None:
            return current.model_copy(update={"args": incoming.args})
        return current

    update: dict[str, Any] = {}
    if _is_empty(incoming.args) and not _is_empty(current.args):
        update["args"] = current.args
    if incoming.step is None and current.step is not None:
        update["step"] = current.step
    return incoming.model_copy(update=update) if update else incoming


def _is_empty(args: Any) -> bool:
    return args is None or args == {}
