"""
Format normalizer - converts any accepted input shape into canonical messages.

Pure function, no state beyond a single call. It is the single source of truth
for:
- Mapping legacy/prompt content segments onto canonical parts
- Pairing tool results with preceding tool calls (by toolCallId, never by
  position) and carrying the call's args onto the result
- Splitting a message whose content mixes calls, results and further text
  into independently addressable fragments (`<id>__split-<n>`)
- Hydrating the denormalized toolInvocations list from parts
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from .errors import DanglingToolResult
from .formats import (
    FileSegment,
    ImageSegment,
    LegacyMessage,
    PromptMessage,
    ReasoningSegment,
    RedactedReasoningSegment,
    Segment,
    TextSegment,
    ToolCallSegment,
    ToolResultSegment,
    UIMessage,
    parse_message,
)
from .identity import DefaultIdentity, IdentityProvider
from .types import (
    CanonicalMessage,
    FilePart,
    MessageContent,
    MessageRole,
    Part,
    ReasoningPart,
    ReasoningTextDetail,
    RedactedReasoningDetail,
    TextPart,
    ToolCall,
    ToolInvocation,
    ToolInvocationPart,
    ToolResult,
    split_id,
)

logger = logging.getLogger(__name__)

# tool_call_id → latest invocation seen for that call
ToolCallBuffer = dict[str, ToolInvocation]


def normalize_messages(
    messages: Any,
    *,
    identity: IdentityProvider | None = None,
    known_calls: Mapping[str, ToolInvocation] | None = None,
    strict: bool = True,
) -> list[CanonicalMessage]:
    """
    Normalize one message or a sequence of messages into canonical messages.

    Args:
        messages: A single input (str, dict, or typed message) or an iterable
            of inputs in any mix of shapes.
        identity: Source of ids/timestamps for inputs that lack them.
        known_calls: Tool calls already recorded elsewhere (e.g. in the
            history store). Seeds the buffer used to pair tool results.
        strict: Raise DanglingToolResult for unpaired results. When False,
            unpaired results are logged and dropped.

    Returns:
        Canonical messages in input order. Split fragments appear in place.

    Raises:
        DanglingToolResult: A tool-result segment has no preceding tool-call.
        UnsupportedMessageShape: An input matches none of the accepted shapes.

    Example:
        >>> msgs = normalize_messages([
        ...     {"role": "user", "content": "weather?"},
        ...     {"role": "assistant", "content": [
        ...         {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": {}}]},
        ...     {"role": "tool", "content": [
        ...         {"type": "tool-result", "toolCallId": "c1", "toolName": "weather", "result": "sunny"}]},
        ... ])
        >>> [m.role for m in msgs]
        ['user', 'assistant', 'tool']
    """
    identity = identity or DefaultIdentity()
    buffer: ToolCallBuffer = dict(known_calls or {})

    normalized: list[CanonicalMessage] = []
    for raw in _as_sequence(messages):
        match parse_message(raw):
            case str() as text:
                produced = [_from_string(text, identity)]
            case CanonicalMessage() as message:
                produced = [_from_canonical(message)]
            case UIMessage() as message:
                produced = [_from_ui(message, identity)]
            case LegacyMessage() as message:
                produced = _from_segments(
                    role=message.role,
                    content=message.content,
                    message_id=message.id,
                    created_at=message.created_at or identity.now(),
                    thread_id=message.thread_id,
                    resource_id=message.resource_id,
                    buffer=buffer,
                    strict=strict,
                )
            case PromptMessage() as message:
                produced = _from_segments(
                    role=message.role,
                    content=message.content,
                    message_id=identity.new_id(),
                    created_at=identity.now(),
                    thread_id=None,
                    resource_id=None,
                    buffer=buffer,
                    strict=strict,
                )

        for message in produced:
            _record_calls(message, buffer)
        normalized.extend(produced)

    return normalized


def _as_sequence(messages: Any) -> Iterable[Any]:
    if isinstance(messages, (str, Mapping, BaseModel)):
        return [messages]
    return messages


def _record_calls(message: CanonicalMessage, buffer: ToolCallBuffer) -> None:
    for part in message.tool_invocation_parts():
        buffer[part.tool_invocation.tool_call_id] = part.tool_invocation


def _from_string(text: str, identity: IdentityProvider) -> CanonicalMessage:
    return CanonicalMessage(
        id=identity.new_id(),
        role="user",
        created_at=identity.now(),
        content=MessageContent(parts=[TextPart(text=text)], content=text),
    )


def _from_canonical(message: CanonicalMessage) -> CanonicalMessage:
    normalized = message.model_copy(deep=True)
    _hydrate_tool_parts(normalized, normalized.content.tool_invocations)
    normalized.sync_tool_invocations()
    return normalized


def _from_ui(message: UIMessage, identity: IdentityProvider) -> CanonicalMessage:
    parts: list[Part] = [part.model_copy(deep=True) for part in message.parts]
    if not parts and message.content:
        parts.append(TextPart(text=message.content))

    normalized = CanonicalMessage(
        id=message.id or identity.new_id(),
        role=message.role,
        created_at=message.created_at or identity.now(),
        content=MessageContent(
            parts=parts,
            metadata=message.metadata,
            experimental_attachments=(
                [a.model_copy() for a in message.experimental_attachments]
                if message.experimental_attachments is not None
                else None
            ),
        ),
    )
    _hydrate_tool_parts(normalized, message.tool_invocations or [])
    normalized.sync_tool_invocations()
    return normalized


def _hydrate_tool_parts(
    message: CanonicalMessage, invocations: list[ToolInvocation]
) -> None:
    """
    Append invocations that only exist in the denormalized list as parts.

    Parts win when both carry the same call (stored toolInvocations may have
    lost their args).
    """
    for invocation in invocations:
        if message.find_tool_invocation(invocation.tool_call_id) is None:
            message.content.parts.append(
                ToolInvocationPart(tool_invocation=invocation.model_copy(deep=True))
            )


def _from_segments(
    *,
    role: MessageRole,
    content: str | list[Segment],
    message_id: str,
    created_at: datetime,
    thread_id: str | None,
    resource_id: str | None,
    buffer: ToolCallBuffer,
    strict: bool,
) -> list[CanonicalMessage]:
    """
    Convert legacy/prompt content into one or more canonical messages.

    Content is cut at every boundary between tool results and other content,
    so an assistant turn of [text, call, result, text] becomes three
    fragments: assistant [text, call], tool [result], assistant [text].
    """
    if isinstance(content, str):
        return [
            CanonicalMessage(
                id=message_id,
                role=role,
                created_at=created_at,
                thread_id=thread_id,
                resource_id=resource_id,
                content=MessageContent(parts=[TextPart(text=content)], content=content),
            )
        ]

    content_role: MessageRole = "assistant" if role == "tool" else role
    fragments: list[tuple[MessageRole, list[Part]]] = []

    def fragment(fragment_role: MessageRole) -> list[Part]:
        if not fragments or fragments[-1][0] != fragment_role:
            fragments.append((fragment_role, []))
        return fragments[-1][1]

    for segment in content:
        match segment:
            case ToolResultSegment():
                result = _pair_result(segment, buffer, strict)
                if result is None:
                    continue
                buffer[result.tool_call_id] = result
                fragment("tool").append(ToolInvocationPart(tool_invocation=result))
            case ToolCallSegment():
                call = ToolCall(
                    tool_call_id=segment.tool_call_id,
                    tool_name=segment.tool_name,
                    args=segment.args,
                )
                buffer[call.tool_call_id] = call
                fragment(content_role).append(ToolInvocationPart(tool_invocation=call))
            case _:
                fragment(content_role).append(_segment_to_part(segment))

    if not fragments:
        fragments.append((role, []))

    messages = []
    for index, (fragment_role, parts) in enumerate(fragments):
        message = CanonicalMessage(
            id=split_id(message_id, index),
            role=fragment_role,
            created_at=created_at,
            thread_id=thread_id,
            resource_id=resource_id,
            content=MessageContent(parts=parts),
        )
        message.sync_tool_invocations()
        messages.append(message)

    if len(messages) > 1:
        logger.debug(f"Split message {message_id} into {len(messages)} fragments")
    return messages


def _pair_result(
    segment: ToolResultSegment, buffer: ToolCallBuffer, strict: bool
) -> ToolResult | None:
    """Pair a tool-result segment with its call by toolCallId."""
    call = buffer.get(segment.tool_call_id)
    if call is None:
        if strict:
            raise DanglingToolResult(segment.tool_call_id, segment.tool_name)
        logger.warning(
            f"Dropping tool-result without matching tool-call: "
            f"name={segment.tool_name}, toolCallId={segment.tool_call_id}"
        )
        return None

    return ToolResult(
        tool_call_id=segment.tool_call_id,
        tool_name=segment.tool_name or call.tool_name,
        args=call.args if call.args is not None else {},
        result=segment.result,
        step=call.step,
    )


def _segment_to_part(segment: Segment) -> Part:
    match segment:
        case TextSegment(text=text):
            return TextPart(text=text)
        case ReasoningSegment(text=text, signature=signature):
            return ReasoningPart(
                reasoning=text,
                details=[ReasoningTextDetail(text=text, signature=signature)],
            )
        case RedactedReasoningSegment(data=data):
            return ReasoningPart(details=[RedactedReasoningDetail(data=data)])
        case FileSegment(mime_type=mime_type, data=data):
            return FilePart(mime_type=mime_type, data=encode_data(data))
        case ImageSegment(image=image, mime_type=mime_type):
            return FilePart(mime_type=mime_type or "image/*", data=encode_data(image))
    raise TypeError(f"Unexpected segment: {segment!r}")


def encode_data(data: bytes | str) -> str:
    """Binary payloads are stored base64-encoded. URLs and strings pass through."""
    if isinstance(data, bytes):
        return base64.b64encode(data).decode("ascii")
    return data
