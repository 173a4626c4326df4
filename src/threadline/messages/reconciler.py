"""
Tool-invocation reconciler - merges two versions of the same message.

Streaming re-submits the "current best" version of a message many times, and
memory replay may submit an older one. The merge must be:

- idempotent: reconcile(reconcile(old, new), new) == reconcile(old, new)
- monotonic: a tool call's state never moves backwards

Algorithm (two ordered sequences, tool parts keyed by toolCallId):

    new.parts  ──walk──►  non-tool part      → take from new
                          tool part, in old  → lifecycle.advance(old, new),
                                               slot order follows old
                          tool part, new     → take from new
    old-only tool parts   → re-inserted after their nearest preceding old
                            tool part (else at their old index, clamped)
"""

from __future__ import annotations

import logging

from .errors import InvalidLifecycleTransition
from .lifecycle import advance
from .types import (
    CanonicalMessage,
    MessageContent,
    Part,
    ToolInvocation,
    ToolInvocationPart,
)

logger = logging.getLogger(__name__)


def reconcile_message(old: CanonicalMessage, new: CanonicalMessage) -> CanonicalMessage:
    """
    Merge an incoming version of a message into the stored one.

    The incoming message is authoritative for non-tool content. Tool
    invocations are matched by toolCallId and never regress.

    Args:
        old: The stored message.
        new: The incoming message with the same id.

    Returns:
        A new merged message. Neither input is mutated.
    """
    old_tools = {
        part.tool_invocation.tool_call_id: (index, part.tool_invocation)
        for index, part in enumerate(old.content.parts)
        if isinstance(part, ToolInvocationPart)
    }
    new_tool_ids = {
        part.tool_invocation.tool_call_id for part in new.tool_invocation_parts()
    }

    # Shared tool slots are filled in the order the calls first appeared in old
    shared_order = iter(
        tool_call_id for tool_call_id in old_tools if tool_call_id in new_tool_ids
    )
    new_by_id = {
        part.tool_invocation.tool_call_id: part.tool_invocation
        for part in new.tool_invocation_parts()
    }

    merged: list[Part] = []
    for part in new.content.parts:
        if not isinstance(part, ToolInvocationPart):
            merged.append(part.model_copy(deep=True))
            continue

        tool_call_id = part.tool_invocation.tool_call_id
        if tool_call_id not in old_tools:
            merged.append(part.model_copy(deep=True))
            continue

        slot_id = next(shared_order)
        invocation = merge_invocation(old_tools[slot_id][1], new_by_id[slot_id])
        merged.append(ToolInvocationPart(tool_invocation=invocation.model_copy(deep=True)))

    for tool_call_id, (old_index, invocation) in old_tools.items():
        if tool_call_id in new_tool_ids:
            continue
        position = _reinsert_position(old, old_index, merged)
        merged.insert(
            position, ToolInvocationPart(tool_invocation=invocation.model_copy(deep=True))
        )
        logger.debug(
            f"Kept tool call {tool_call_id} missing from incoming version of {old.id}"
        )

    content = MessageContent(
        parts=merged,
        metadata=_first_set(new.content.metadata, old.content.metadata),
        experimental_attachments=_first_set(
            new.content.experimental_attachments, old.content.experimental_attachments
        ),
        content=new.content.content,
    )
    result = CanonicalMessage(
        id=old.id,
        role=old.role,
        created_at=new.created_at,
        thread_id=new.thread_id or old.thread_id,
        resource_id=new.resource_id or old.resource_id,
        content=content.model_copy(deep=True),
    )
    result.sync_tool_invocations()
    return result


def merge_invocation(current: ToolInvocation, incoming: ToolInvocation) -> ToolInvocation:
    """Advance one invocation, keeping the current state on a regression."""
    try:
        return advance(current, incoming)
    except InvalidLifecycleTransition as e:
        logger.warning(f"Ignoring tool state regression: {e}")
        return current


def apply_tool_invocation(message: CanonicalMessage, incoming: ToolInvocation) -> bool:
    """
    Merge one invocation into the matching tool part of `message`, in place.

    Used when a tool result arrives in a separate message. The stored call's
    args are kept if the result carries none.

    Returns:
        True if the stored invocation changed.

    Raises:
        KeyError: If `message` holds no invocation with that toolCallId.
    """
    part = message.find_tool_invocation(incoming.tool_call_id)
    if part is None:
        raise KeyError(incoming.tool_call_id)

    merged = merge_invocation(part.tool_invocation, incoming)
    if merged == part.tool_invocation:
        return False

    part.tool_invocation = merged.model_copy(deep=True)
    message.sync_tool_invocations()
    return True


def _reinsert_position(old: CanonicalMessage, old_index: int, merged: list[Part]) -> int:
    """Slot for an old-only tool part: after its nearest preceding old tool part."""
    merged_ids = [
        part.tool_invocation.tool_call_id if isinstance(part, ToolInvocationPart) else None
        for part in merged
    ]
    for part in reversed(old.content.parts[:old_index]):
        if not isinstance(part, ToolInvocationPart):
            continue
        tool_call_id = part.tool_invocation.tool_call_id
        if tool_call_id in merged_ids:
            return merged_ids.index(tool_call_id) + 1
    return min(old_index, len(merged))


def _first_set(preferred, fallback):
    return preferred if preferred is not None else fallback
