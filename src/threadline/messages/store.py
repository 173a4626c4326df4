"""
Canonical history store - one conversation's messages, in order.

Every input goes through the same path:

    add(raw, source) → normalize_messages → per message:
        system     → deduplicated system list (memory-sourced: dropped)
        tool       → results merged into the assistant message holding the call
        new id     → appended
        known id   → reconcile_message(old, new)

Streaming feeds every accumulator snapshot into the same add(), so batch and
streaming ingestion share one merge routine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from threadline.config import HistoryConfig

from .errors import OrphanToolResult, UnsupportedMessageShape
from .identity import DefaultIdentity, IdentityProvider
from .normalizer import normalize_messages
from .reconciler import apply_tool_invocation, reconcile_message
from .types import CanonicalMessage, MessageSource, TextPart, ToolInvocation
from .views import HistoryView

if TYPE_CHECKING:
    from threadline.streaming.accumulator import AccumulationResult, ToolCallHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryCheckpoint:
    """Opaque copy of a store's state, for MessageHistory.restore()."""

    messages: dict[str, CanonicalMessage]
    sources: dict[str, frozenset[MessageSource]]
    system: list[CanonicalMessage]
    tagged_system: dict[str, list[CanonicalMessage]]
    unsaved: tuple[str, ...]


class MessageHistory:
    """
    Canonical message history for one conversation-processing session.

    Not safe for unsynchronized concurrent mutation. Streams fed through
    stream() are serialized by an internal lock.

    Example:
        history = MessageHistory(thread_id="t-1")
        history.add("What's the weather?", "input")
        result = await history.stream(events)
        history.all.prompt()
    """

    def __init__(
        self,
        *,
        config: HistoryConfig | None = None,
        thread_id: str | None = None,
        resource_id: str | None = None,
        identity: IdentityProvider | None = None,
    ):
        self.config = config or HistoryConfig()
        self.thread_id = thread_id or self.config.thread_id
        self.resource_id = resource_id or self.config.resource_id
        self._identity = identity or DefaultIdentity()

        self._messages: dict[str, CanonicalMessage] = {}
        self._sources: dict[str, set[MessageSource]] = {}
        self._system: list[CanonicalMessage] = []
        self._tagged_system: dict[str, list[CanonicalMessage]] = {}
        self._unsaved: dict[str, None] = {}
        self._stream_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._messages)

    # --- Views ---

    @property
    def all(self) -> HistoryView:
        return HistoryView(self)

    @property
    def remembered(self) -> HistoryView:
        """Messages recalled from memory."""
        return HistoryView(self, frozenset({"memory"}))

    @property
    def input(self) -> HistoryView:
        """Messages supplied by the caller for this session."""
        return HistoryView(self, frozenset({"input", "user"}))

    @property
    def response(self) -> HistoryView:
        """Messages produced by the model in this session."""
        return HistoryView(self, frozenset({"response"}))

    def select(self, sources: frozenset[MessageSource] | None = None) -> list[CanonicalMessage]:
        """
        Stored messages in order, optionally restricted to a set of sources.

        Returns the live records. Views copy before handing them out.
        """
        if sources is None:
            return list(self._messages.values())
        return [
            message
            for message_id, message in self._messages.items()
            if self._sources.get(message_id, set()) & sources
        ]

    def sources_of(self, message_id: str) -> frozenset[MessageSource]:
        return frozenset(self._sources.get(message_id, ()))

    # --- Insertion ---

    def add(self, messages: Any, source: MessageSource = "input") -> MessageHistory:
        """
        Normalize and insert one message or a sequence of messages.

        Inserting a message whose id is already stored merges it into the
        stored version, so re-submission is always safe.

        Args:
            messages: Any accepted input shape, or a sequence of them.
            source: Provenance of the messages.

        Returns:
            self, for chaining.

        Raises:
            DanglingToolResult: A tool result has no call in the batch or store
                (only with strict_tool_results).
            OrphanToolResult: A tool message's call is not held by any
                assistant message. Nothing from the batch is inserted.
            UnsupportedMessageShape: An input matches no accepted shape.
        """
        normalized = normalize_messages(
            messages,
            identity=self._identity,
            known_calls=self._known_calls(),
            strict=self.config.strict_tool_results,
        )
        self._check_call_holders(normalized)
        for message in normalized:
            match message.role:
                case "system":
                    self._add_system(message, source, tag=None)
                case "tool":
                    self._merge_tool_message(message, source)
                case _:
                    self._insert(message, source)
        return self

    def add_system(self, messages: Any, tag: str | None = None) -> MessageHistory:
        """
        Add system messages, optionally under a tag.

        Strings are taken as system text. Identical content is stored once
        per tag.

        Raises:
            UnsupportedMessageShape: If a message does not have the system role.
        """
        if isinstance(messages, (str, Mapping, BaseModel)):
            messages = [messages]
        raw = [
            {"role": "system", "content": m} if isinstance(m, str) else m for m in messages
        ]
        for message in normalize_messages(raw, identity=self._identity):
            if message.role != "system":
                raise UnsupportedMessageShape(
                    f"add_system expects system messages, got role {message.role!r}"
                )
            self._add_system(message, "system", tag=tag)
        return self

    def get_system_messages(self, tag: str | None = None) -> list[CanonicalMessage]:
        """System messages without a tag, or those stored under `tag`."""
        bucket = self._system if tag is None else self._tagged_system.get(tag, [])
        return [message.model_copy(deep=True) for message in bucket]

    def get_all_system_messages(self) -> list[CanonicalMessage]:
        """Untagged system messages followed by every tagged group."""
        messages = self.get_system_messages()
        for tag in self._tagged_system:
            messages.extend(self.get_system_messages(tag))
        return messages

    def _insert(self, message: CanonicalMessage, source: MessageSource) -> None:
        if message.thread_id is None:
            message.thread_id = self.thread_id
        if message.resource_id is None:
            message.resource_id = self.resource_id

        existing = self._messages.get(message.id)
        if existing is None:
            self._messages[message.id] = message
            changed = True
            logger.debug(f"Appended {message.role} message {message.id} ({source})")
        else:
            merged = reconcile_message(existing, message)
            changed = merged != existing
            if changed:
                self._messages[message.id] = merged
                logger.debug(f"Merged message {message.id} ({source})")

        self._sources.setdefault(message.id, set()).add(source)
        if changed and source != "memory":
            self._unsaved[message.id] = None

    def _merge_tool_message(self, message: CanonicalMessage, source: MessageSource) -> None:
        """Fold the results of a tool message into the calling assistant messages."""
        updates: list[tuple[CanonicalMessage, ToolInvocation]] = []
        for part in message.tool_invocation_parts():
            invocation = part.tool_invocation
            target = self._find_call_holder(invocation.tool_call_id)
            if target is None:
                raise OrphanToolResult(invocation.tool_call_id, message.id)
            updates.append((target, invocation))

        skipped = len(message.content.parts) - len(updates)
        if skipped:
            logger.debug(f"Ignoring {skipped} non-tool parts of tool message {message.id}")

        for target, invocation in updates:
            changed = apply_tool_invocation(target, invocation)
            self._sources[target.id].add(source)
            if changed and source != "memory":
                self._unsaved[target.id] = None
            logger.debug(
                f"Folded result for {invocation.tool_call_id} into message {target.id}"
            )

    def _check_call_holders(self, messages: list[CanonicalMessage]) -> None:
        """Reject the batch before any insert if a tool message has no calling message."""
        held = {
            part.tool_invocation.tool_call_id
            for message in self._messages.values()
            if message.role == "assistant"
            for part in message.tool_invocation_parts()
        }
        for message in messages:
            tool_call_ids = [
                part.tool_invocation.tool_call_id for part in message.tool_invocation_parts()
            ]
            match message.role:
                case "assistant":
                    held.update(tool_call_ids)
                case "tool":
                    for tool_call_id in tool_call_ids:
                        if tool_call_id not in held:
                            raise OrphanToolResult(tool_call_id, message.id)

    def _find_call_holder(self, tool_call_id: str) -> CanonicalMessage | None:
        for message in reversed(self._messages.values()):
            if message.role == "assistant" and message.find_tool_invocation(tool_call_id):
                return message
        return None

    def _add_system(
        self, message: CanonicalMessage, source: MessageSource, tag: str | None
    ) -> None:
        if source == "memory":
            logger.debug(f"Skipping memory-sourced system message {message.id}")
            return

        bucket = self._system if tag is None else self._tagged_system.setdefault(tag, [])
        text = _system_text(message)
        if any(_system_text(existing) == text for existing in bucket):
            logger.debug(f"Skipping duplicate system message {message.id}")
            return
        bucket.append(message)

    def _known_calls(self) -> dict[str, ToolInvocation]:
        return {
            part.tool_invocation.tool_call_id: part.tool_invocation
            for message in self._messages.values()
            for part in message.tool_invocation_parts()
        }

    # --- Persistence hooks ---

    def drain_unsaved(self) -> list[CanonicalMessage]:
        """
        Non-memory messages added or changed since the last drain.

        Returned in store order as copies. The unsaved set is cleared.
        """
        drained = [
            message.model_copy(deep=True)
            for message_id, message in self._messages.items()
            if message_id in self._unsaved
        ]
        self._unsaved.clear()
        return drained

    def checkpoint(self) -> HistoryCheckpoint:
        """Capture the current state for a later restore()."""
        return HistoryCheckpoint(
            messages={k: m.model_copy(deep=True) for k, m in self._messages.items()},
            sources={k: frozenset(v) for k, v in self._sources.items()},
            system=[m.model_copy(deep=True) for m in self._system],
            tagged_system={
                tag: [m.model_copy(deep=True) for m in bucket]
                for tag, bucket in self._tagged_system.items()
            },
            unsaved=tuple(self._unsaved),
        )

    def restore(self, checkpoint: HistoryCheckpoint) -> None:
        """Roll the store back to a checkpoint. The checkpoint stays reusable."""
        self._messages = {k: m.model_copy(deep=True) for k, m in checkpoint.messages.items()}
        self._sources = {k: set(v) for k, v in checkpoint.sources.items()}
        self._system = [m.model_copy(deep=True) for m in checkpoint.system]
        self._tagged_system = {
            tag: [m.model_copy(deep=True) for m in bucket]
            for tag, bucket in checkpoint.tagged_system.items()
        }
        self._unsaved = dict.fromkeys(checkpoint.unsaved)
        logger.debug(f"Restored history to {len(self._messages)} messages")

    # --- Streaming ---

    async def stream(
        self,
        events: AsyncIterable[Any] | Iterable[Any],
        *,
        source: MessageSource = "response",
        on_tool_call: ToolCallHandler | None = None,
    ) -> AccumulationResult:
        """
        Fold a live event stream into the history.

        Every snapshot is inserted as it is emitted, so an aborted stream
        leaves the store at the last snapshot. Streams on one history run
        one after another.

        When the latest stored message is an assistant message (and
        continue_last_assistant is set), the stream continues it: same id,
        earlier tool calls stay resolvable.

        Args:
            events: Async (or plain) iterable of typed or raw stream events.
            source: Provenance recorded for the streamed message.
            on_tool_call: Optional client-side tool executor, see
                MessageAccumulator.consume().

        Returns:
            AccumulationResult for the stream.
        """
        from threadline.streaming.accumulator import MessageAccumulator

        async with self._stream_lock:
            accumulator = MessageAccumulator(
                identity=self._identity, message=self._continuation_base()
            )
            return await accumulator.consume(
                events,
                on_tool_call=on_tool_call,
                on_snapshot=lambda snapshot: self.add(snapshot.message, source),
            )

    def _continuation_base(self) -> CanonicalMessage | None:
        if not self.config.continue_last_assistant or not self._messages:
            return None
        last = next(reversed(self._messages.values()))
        if last.role != "assistant":
            return None
        logger.debug(f"Continuing assistant message {last.id}")
        return last


def _system_text(message: CanonicalMessage) -> str:
    if message.content.content is not None:
        return message.content.content
    return "\n".join(p.text for p in message.content.parts if isinstance(p, TextPart))
