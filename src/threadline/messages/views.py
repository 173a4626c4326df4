"""
Projection views over canonical messages.

Pure functions: each takes canonical messages and returns fresh objects in
another shape, never aliasing the input.

    canonical → to_canonical  (deep copies)
              → to_legacy     (flat records, split at tool-result boundaries)
              → to_ui         (display shape, unresolved calls hidden)
              → to_model      (provider-neutral prompt, orphan calls dropped)

Assistant messages are cut into turns before projecting to the legacy and
model shapes: a turn is the content and calls up to the point where resolved
calls are followed by more content. Each turn yields an assistant record and,
if any of its calls were resolved, a tool record carrying the results.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .formats import (
    FileSegment,
    LegacyMessage,
    PromptMessage,
    ReasoningSegment,
    RedactedReasoningSegment,
    Segment,
    TextSegment,
    ToolCallSegment,
    ToolResultSegment,
    UIMessage,
)
from .types import (
    CanonicalMessage,
    FilePart,
    MessageRole,
    MessageSource,
    Part,
    ReasoningPart,
    ReasoningTextDetail,
    StepStartPart,
    TextPart,
    ToolInvocationPart,
    split_id,
)

if TYPE_CHECKING:
    from .store import MessageHistory

logger = logging.getLogger(__name__)

Turn = tuple[MessageRole, list[Part]]


def split_turns(message: CanonicalMessage) -> list[Turn]:
    """
    Cut a message into (role, parts) turns.

    Non-assistant messages are a single turn. For assistant messages, a
    content part (or step boundary) that follows resolved calls closes the
    current turn: the turn's parts become an assistant turn and its resolved
    calls a following tool turn.
    """
    parts = list(message.content.parts)
    if message.role != "assistant":
        return [(message.role, parts)]

    turns: list[Turn] = []
    current: list[Part] = []
    results: list[Part] = []

    def flush() -> None:
        nonlocal current, results
        if current:
            turns.append(("assistant", current))
        if results:
            turns.append(("tool", results))
        current, results = [], []

    for part in parts:
        if isinstance(part, ToolInvocationPart):
            current.append(part)
            if part.tool_invocation.state == "result":
                results.append(part)
            continue
        if results:
            flush()
        current.append(part)
    flush()
    return turns


# --- Canonical ---


def to_canonical(messages: Iterable[CanonicalMessage]) -> list[CanonicalMessage]:
    return [message.model_copy(deep=True) for message in messages]


# --- Legacy ---


def to_legacy(messages: Iterable[CanonicalMessage]) -> list[LegacyMessage]:
    """
    Explode canonical messages into flat legacy records.

    Records of one message are numbered `id`, `id__split-1`, ... in order.
    Feeding the result back through normalize_messages and a history store
    reproduces the same records.
    """
    records: list[LegacyMessage] = []
    for message in messages:
        index = 0
        for role, parts in split_turns(message):
            if role == "tool":
                segments: list[Segment] = [_result_segment(p) for p in _resolved(parts)]
                record_type = "tool-result"
            else:
                segments = _content_segments(parts, keep_unresolved=True)
                record_type = (
                    "tool-call"
                    if any(isinstance(s, ToolCallSegment) for s in segments)
                    else "text"
                )
            if not segments:
                continue

            records.append(
                LegacyMessage(
                    id=split_id(message.id, index),
                    role=role,
                    content=_flatten(message, segments),
                    type=record_type,
                    created_at=message.created_at,
                    thread_id=message.thread_id,
                    resource_id=message.resource_id,
                )
            )
            index += 1
    return records


# --- UI display ---


def to_ui(messages: Iterable[CanonicalMessage]) -> list[UIMessage]:
    """
    Display-shaped messages.

    Calls still awaiting their result (partial-call or call) are removed from
    both parts and toolInvocations.
    """
    ui_messages = []
    for message in messages:
        parts = [
            part.model_copy(deep=True)
            for part in message.content.parts
            if not (
                isinstance(part, ToolInvocationPart)
                and part.tool_invocation.state != "result"
            )
        ]
        text = message.content.content
        if text is None:
            text = "".join(p.text for p in parts if isinstance(p, TextPart))
        reasoning = "".join(p.reasoning for p in parts if isinstance(p, ReasoningPart))
        attachments = message.content.experimental_attachments

        ui_messages.append(
            UIMessage(
                id=message.id,
                role=message.role,
                content=text,
                created_at=message.created_at,
                parts=parts,
                tool_invocations=[
                    p.tool_invocation for p in parts if isinstance(p, ToolInvocationPart)
                ],
                experimental_attachments=(
                    [a.model_copy() for a in attachments] if attachments is not None else None
                ),
                metadata=copy.deepcopy(message.content.metadata),
                reasoning=reasoning or None,
            )
        )
    return ui_messages


# --- Model prompt ---


def to_model(messages: Iterable[CanonicalMessage]) -> list[PromptMessage]:
    """
    Provider-neutral prompt messages, safe to send back to a model.

    - Tool calls without a result in the same message are dropped (logged)
    - Tool results whose call was never emitted are dropped (logged)
    - User attachments become file segments
    - System messages in the list are kept in place
    """
    prompt: list[PromptMessage] = []
    emitted_calls: set[str] = set()

    for message in messages:
        for role, parts in split_turns(message):
            match role:
                case "system":
                    prompt.append(PromptMessage(role="system", content=_system_text(parts)))
                case "tool":
                    segments = []
                    for part in _resolved(parts):
                        tool_call_id = part.tool_invocation.tool_call_id
                        if tool_call_id not in emitted_calls:
                            logger.warning(
                                f"Dropping tool-result without preceding tool-call: "
                                f"message={message.id}, toolCallId={tool_call_id}"
                            )
                            continue
                        segments.append(_result_segment(part))
                    if segments:
                        prompt.append(PromptMessage(role="tool", content=segments))
                case _:
                    segments = _content_segments(parts, keep_unresolved=False)
                    for part in parts:
                        if not isinstance(part, ToolInvocationPart):
                            continue
                        invocation = part.tool_invocation
                        if invocation.state == "result":
                            emitted_calls.add(invocation.tool_call_id)
                        else:
                            logger.warning(
                                f"Dropping orphaned tool call (no result): "
                                f"message={message.id}, name={invocation.tool_name}, "
                                f"toolCallId={invocation.tool_call_id}"
                            )
                    if role == "user":
                        segments.extend(_attachment_segments(message))
                    if segments:
                        prompt.append(
                            PromptMessage(role=role, content=_flatten(message, segments))
                        )
    return prompt


def to_prompt(
    system_messages: Iterable[CanonicalMessage], messages: Iterable[CanonicalMessage]
) -> list[PromptMessage]:
    """Model view with the system messages prepended."""
    system = [
        PromptMessage(role="system", content=_system_text(m.content.parts))
        for m in system_messages
    ]
    return system + to_model(messages)


# --- Segment helpers ---


def _content_segments(parts: list[Part], *, keep_unresolved: bool) -> list[Segment]:
    segments: list[Segment] = []
    for part in parts:
        match part:
            case TextPart(text=text):
                segments.append(TextSegment(text=text))
            case ReasoningPart():
                segments.extend(_reasoning_segments(part))
            case FilePart(mime_type=mime_type, data=data):
                segments.append(FileSegment(mime_type=mime_type, data=data))
            case ToolInvocationPart(tool_invocation=invocation):
                if invocation.state != "result" and not keep_unresolved:
                    continue
                segments.append(
                    ToolCallSegment(
                        tool_call_id=invocation.tool_call_id,
                        tool_name=invocation.tool_name,
                        args=invocation.args if invocation.args is not None else {},
                    )
                )
            case StepStartPart():
                pass
            case _:
                logger.debug(f"No segment for {part.type} part")
    return segments


def _reasoning_segments(part: ReasoningPart) -> list[Segment]:
    if not part.details:
        return [ReasoningSegment(text=part.reasoning)] if part.reasoning else []
    return [
        ReasoningSegment(text=d.text, signature=d.signature)
        if isinstance(d, ReasoningTextDetail)
        else RedactedReasoningSegment(data=d.data)
        for d in part.details
    ]


def _resolved(parts: list[Part]) -> list[ToolInvocationPart]:
    return [
        p
        for p in parts
        if isinstance(p, ToolInvocationPart) and p.tool_invocation.state == "result"
    ]


def _result_segment(part: ToolInvocationPart) -> ToolResultSegment:
    invocation = part.tool_invocation
    return ToolResultSegment(
        tool_call_id=invocation.tool_call_id,
        tool_name=invocation.tool_name,
        result=invocation.result,
    )


def _attachment_segments(message: CanonicalMessage) -> list[Segment]:
    return [
        FileSegment(
            mime_type=attachment.content_type or "application/octet-stream",
            data=attachment.url,
            filename=attachment.name,
        )
        for attachment in message.content.experimental_attachments or []
    ]


def _flatten(message: CanonicalMessage, segments: list[Segment]) -> str | list[Segment]:
    """Restore string content when the message arrived as a flat string."""
    text = message.content.content
    if text is not None and segments == [TextSegment(text=text)]:
        return text
    return segments


def _system_text(parts: list[Part]) -> str:
    return "\n".join(p.text for p in parts if isinstance(p, TextPart))


# --- Filtered views ---


class HistoryView:
    """
    The projections of one MessageHistory, optionally restricted by source.

    Example:
        history.all.ui()
        history.remembered.legacy()
        history.response.canonical()
    """

    def __init__(
        self,
        history: MessageHistory,
        sources: frozenset[MessageSource] | None = None,
    ):
        self._history = history
        self._sources = sources

    def _messages(self) -> list[CanonicalMessage]:
        return self._history.select(self._sources)

    def canonical(self) -> list[CanonicalMessage]:
        return to_canonical(self._messages())

    def legacy(self) -> list[LegacyMessage]:
        return to_legacy(self._messages())

    def ui(self) -> list[UIMessage]:
        return to_ui(self._messages())

    def model(self) -> list[PromptMessage]:
        return to_model(self._messages())

    def prompt(self) -> list[PromptMessage]:
        return to_prompt(self._history.get_all_system_messages(), self._messages())
