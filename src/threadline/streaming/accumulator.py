"""
Delta accumulator - folds a live event stream into one canonical message.

The in-progress message is privately owned by the accumulator. Observers
only ever see snapshots: deep, independent copies taken after each mutating
event, each with a fresh revision id.

    events ──► parse_stream_event ──► apply ──► live CanonicalMessage
                                          │
                                          └──► MessageSnapshot (copy-out)

Continuation: passing an existing assistant message resumes it. The id is
kept and earlier tool calls stay resolvable for tool-result events. A stream
whose first step-start names that same message is a replay: the message is
rebuilt from its first step, so a retried stream converges on the same result.

Tool state regressions (a call replayed after its result) are logged and
ignored, never fatal.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic_core import from_json

from threadline.messages.errors import (
    InvalidLifecycleTransition,
    MalformedStreamEvent,
    OrphanToolResult,
    ReconciliationError,
    StreamFailed,
)
from threadline.messages.identity import DefaultIdentity, IdentityProvider
from threadline.messages.lifecycle import advance
from threadline.messages.normalizer import encode_data
from threadline.messages.types import (
    CanonicalMessage,
    FilePart,
    MessageContent,
    PartialToolCall,
    ReasoningPart,
    ReasoningTextDetail,
    RedactedReasoningDetail,
    SourcePart,
    StepStartPart,
    TextPart,
    ToolCall,
    ToolInvocation,
    ToolInvocationPart,
    ToolResult,
)

from .events import (
    DataEvent,
    ErrorEvent,
    FileEvent,
    FinishEvent,
    ReasoningDeltaEvent,
    ReasoningSignatureEvent,
    RedactedReasoningEvent,
    SourceEvent,
    StepFinishEvent,
    StepStartEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
    ToolCallStartEvent,
    ToolResultEvent,
    Usage,
    parse_stream_event,
)
from .partial_json import PartialJsonBuffer

logger = logging.getLogger(__name__)

# Client-side tool executor: receives the finalized call, returns its result
# (or None to leave the call open for someone else to resolve).
ToolCallHandler = Callable[[ToolCall], Any]
SnapshotHandler = Callable[["MessageSnapshot"], None]


@dataclass
class MessageSnapshot:
    """Independent copy of the in-progress message at one revision."""

    message: CanonicalMessage
    revision_id: str
    data: list[Any] = field(default_factory=list)


@dataclass
class AccumulationResult:
    """Outcome of consuming a whole stream."""

    message: CanonicalMessage | None
    finish_reason: str | None = None
    usage: Usage | None = None
    data: list[Any] = field(default_factory=list)


class MessageAccumulator:
    """
    Builds one assistant message from stream events.

    Example:
        accumulator = MessageAccumulator()
        for event in events:
            snapshot = accumulator.apply(event)
            if snapshot:
                render(snapshot.message)
    """

    def __init__(
        self,
        *,
        identity: IdentityProvider | None = None,
        message: CanonicalMessage | None = None,
    ):
        self._identity = identity or DefaultIdentity()
        self._message = message.model_copy(deep=True) if message else None
        self._step = _highest_step(message) if message else 0

        self._text: TextPart | None = None
        self._reasoning: ReasoningPart | None = None
        self._reasoning_detail: ReasoningTextDetail | None = None
        self._arg_buffers: dict[str, PartialJsonBuffer] = {}
        # Tool calls of a replaced base message, restored as the replay reaches them
        self._carried: dict[str, ToolInvocation] = {}
        self._continued = False
        self._closed = False
        self._untouched = message is not None

        self.finish_reason: str | None = None
        self.usage: Usage | None = None
        self.data: list[Any] = []

    @property
    def message(self) -> CanonicalMessage | None:
        """Copy of the current in-progress message."""
        return self._message.model_copy(deep=True) if self._message else None

    @property
    def step(self) -> int:
        return self._step

    @property
    def closed(self) -> bool:
        return self._closed

    def apply(self, event: StreamEvent | dict[str, Any]) -> MessageSnapshot | None:
        """
        Fold one event into the in-progress message.

        Returns:
            A snapshot if the event mutated the message, else None.

        Raises:
            MalformedStreamEvent: Unparseable event, or any event after the
                accumulator was closed by an earlier failure
            OrphanToolResult: tool-result for a call not in the message
            StreamFailed: The stream reported an error
        """
        if self._closed:
            raise MalformedStreamEvent("Accumulator is closed after a failed event")

        parsed = self._parse(event)
        try:
            mutated = self._dispatch(parsed)
        except ReconciliationError:
            self._closed = True
            raise
        self._untouched = False

        if not mutated:
            return None
        return self._snapshot()

    async def consume(
        self,
        events: AsyncIterable[Any] | Iterable[Any],
        *,
        on_tool_call: ToolCallHandler | None = None,
        on_snapshot: SnapshotHandler | None = None,
    ) -> AccumulationResult:
        """
        Drive a whole event stream through the accumulator.

        Args:
            events: Async (or plain) iterable of typed or raw events.
            on_tool_call: Awaited after each finalized tool-call that still
                awaits its result. A non-None return value is applied as that
                call's result.
            on_snapshot: Called with every snapshot, in order.

        Returns:
            AccumulationResult with the final message and finish metadata.
        """
        async for raw in _aiter(events):
            event = self._parse(raw)
            self._emit(self.apply(event), on_snapshot)

            if on_tool_call is None or not isinstance(event, ToolCallEvent):
                continue

            invocation = self._message.find_tool_invocation(event.tool_call_id).tool_invocation
            if invocation.state != "call":
                continue
            result = on_tool_call(invocation.model_copy(deep=True))
            if inspect.isawaitable(result):
                result = await result
            if result is None:
                continue

            logger.debug(f"Client-side tool {event.tool_name} resolved {event.tool_call_id}")
            snapshot = self.apply(
                ToolResultEvent(
                    tool_call_id=event.tool_call_id,
                    tool_name=event.tool_name,
                    result=result,
                )
            )
            self._emit(snapshot, on_snapshot)

        return self.result()

    def result(self) -> AccumulationResult:
        return AccumulationResult(
            message=self.message,
            finish_reason=self.finish_reason,
            usage=self.usage,
            data=list(self.data),
        )

    # --- Event handlers ---

    def _parse(self, raw: Any) -> StreamEvent:
        try:
            return parse_stream_event(raw)
        except MalformedStreamEvent:
            self._closed = True
            raise

    def _dispatch(self, event: StreamEvent) -> bool:
        """Apply one event. Returns True if the message changed."""
        match event:
            case StepStartEvent():
                return self._on_step_start(event)
            case TextDeltaEvent(text=text):
                self._on_text(text)
            case ReasoningDeltaEvent(text=text):
                self._on_reasoning(text)
            case RedactedReasoningEvent(data=data):
                self._close_text()
                self._open_reasoning().details.append(RedactedReasoningDetail(data=data))
                self._reasoning_detail = None
            case ReasoningSignatureEvent(signature=signature):
                self._close_text()
                if self._reasoning_detail is None:
                    logger.debug("Ignoring reasoning signature without open reasoning text")
                    return False
                self._reasoning_detail.signature = signature
            case FileEvent(mime_type=mime_type, data=data):
                self._close_text()
                self._append(FilePart(mime_type=mime_type, data=encode_data(data)))
            case SourceEvent(source=source):
                self._close_text()
                self._append(SourcePart(source=source))
            case ToolCallStartEvent():
                return self._on_tool_call_start(event)
            case ToolCallDeltaEvent():
                return self._on_tool_call_delta(event)
            case ToolCallEvent():
                return self._on_tool_call(event)
            case ToolResultEvent():
                return self._on_tool_result(event)
            case StepFinishEvent():
                self._on_step_finish(event)
                return False
            case FinishEvent():
                self._close_text()
                self.finish_reason = event.finish_reason
                self.usage = event.usage
                return False
            case ErrorEvent(error=error):
                logger.error(f"Stream failed: {error}")
                raise StreamFailed(error)
            case DataEvent(data=data):
                self.data.extend(data)
                return self._message is not None
        return True

    def _on_step_start(self, event: StepStartEvent) -> bool:
        if self._untouched and event.message_id == self._message.id:
            self._restart()

        created = self._message is None
        self._ensure_message(event.message_id)

        if self._continued:
            self._continued = False
            return created

        self._close_text()
        self._close_reasoning()
        self._append(StepStartPart())
        return True

    def _restart(self) -> None:
        """
        Rebuild the message from scratch under its own id.

        A stream naming the continued message carries that message from its
        beginning (a retry), so its snapshots replace the stored content
        instead of extending it. Earlier tool calls are restored in place when
        the replay reaches them.
        """
        base = self._message
        self._carried = {
            part.tool_invocation.tool_call_id: part.tool_invocation
            for part in base.tool_invocation_parts()
        }
        self._message = CanonicalMessage(
            id=base.id,
            role=base.role,
            created_at=base.created_at,
            content=MessageContent(),
        )
        self._step = 0
        logger.debug(f"Replaying message {base.id} from its first step")

    def _on_text(self, text: str) -> None:
        if self._text is None:
            self._text = TextPart(text="")
            self._append(self._text)
        self._text.text += text

    def _on_reasoning(self, text: str) -> None:
        self._close_text()
        reasoning = self._open_reasoning()
        if self._reasoning_detail is None:
            self._reasoning_detail = ReasoningTextDetail(text="")
            reasoning.details.append(self._reasoning_detail)
        self._reasoning_detail.text += text
        reasoning.reasoning += text

    def _on_tool_call_start(self, event: ToolCallStartEvent) -> bool:
        self._close_text()
        if self._find(event.tool_call_id) is not None:
            logger.warning(f"Ignoring repeated tool-call-start for {event.tool_call_id}")
            return False
        if self._restore_carried(event.tool_call_id) is not None:
            return True

        self._arg_buffers[event.tool_call_id] = PartialJsonBuffer()
        self._append(
            ToolInvocationPart(
                tool_invocation=PartialToolCall(
                    tool_call_id=event.tool_call_id,
                    tool_name=event.tool_name,
                    step=self._step,
                )
            )
        )
        return True

    def _on_tool_call_delta(self, event: ToolCallDeltaEvent) -> bool:
        self._close_text()
        part = self._find(event.tool_call_id)
        if part is None:
            raise MalformedStreamEvent(
                f"tool-call-delta for unannounced tool call {event.tool_call_id!r}"
            )
        buffer = self._arg_buffers.get(event.tool_call_id)
        if buffer is None or part.tool_invocation.state != "partial-call":
            logger.debug(f"Ignoring args delta for finalized call {event.tool_call_id}")
            return False

        args = buffer.feed(event.args_text_delta)
        return self._replace(
            part,
            PartialToolCall(
                tool_call_id=event.tool_call_id,
                tool_name=part.tool_invocation.tool_name,
                args=args,
                step=part.tool_invocation.step,
            ),
        )

    def _on_tool_call(self, event: ToolCallEvent) -> bool:
        self._close_text()
        call = ToolCall(
            tool_call_id=event.tool_call_id,
            tool_name=event.tool_name,
            args=_final_args(event),
            step=self._step,
        )
        self._arg_buffers.pop(event.tool_call_id, None)

        part = self._find_or_restore(event.tool_call_id)
        if part is None:
            self._append(ToolInvocationPart(tool_invocation=call))
            return True
        return self._replace(part, call)

    def _on_tool_result(self, event: ToolResultEvent) -> bool:
        self._close_text()
        part = self._find_or_restore(event.tool_call_id)
        if part is None:
            raise OrphanToolResult(
                event.tool_call_id, self._message.id if self._message else None
            )

        current = part.tool_invocation
        return self._replace(
            part,
            ToolResult(
                tool_call_id=current.tool_call_id,
                tool_name=event.tool_name or current.tool_name,
                args=current.args if current.args is not None else {},
                result=event.result,
                step=current.step,
            ),
        )

    def _on_step_finish(self, event: StepFinishEvent) -> None:
        self._step += 1
        if event.is_continued:
            self._continued = True
            return
        self._close_text()
        self._close_reasoning()

    # --- Helpers ---

    def _ensure_message(self, message_id: str | None = None) -> CanonicalMessage:
        if self._message is None:
            self._message = CanonicalMessage(
                id=message_id or self._identity.new_id(),
                role="assistant",
                created_at=self._identity.now(),
                content=MessageContent(),
            )
            logger.debug(f"Started message {self._message.id}")
        return self._message

    def _append(self, part) -> None:
        self._ensure_message().content.parts.append(part)

    def _open_reasoning(self) -> ReasoningPart:
        if self._reasoning is None:
            self._reasoning = ReasoningPart()
            self._append(self._reasoning)
        return self._reasoning

    def _close_text(self) -> None:
        self._text = None

    def _close_reasoning(self) -> None:
        self._reasoning = None
        self._reasoning_detail = None

    def _find(self, tool_call_id: str) -> ToolInvocationPart | None:
        if self._message is None:
            return None
        return self._message.find_tool_invocation(tool_call_id)

    def _restore_carried(self, tool_call_id: str) -> ToolInvocationPart | None:
        invocation = self._carried.pop(tool_call_id, None)
        if invocation is None:
            return None
        part = ToolInvocationPart(tool_invocation=invocation)
        self._append(part)
        return part

    def _find_or_restore(self, tool_call_id: str) -> ToolInvocationPart | None:
        part = self._find(tool_call_id)
        if part is None:
            part = self._restore_carried(tool_call_id)
        return part

    def _replace(self, part: ToolInvocationPart, incoming: ToolInvocation) -> bool:
        """Advance a tool part. A regression keeps the current record."""
        try:
            merged = advance(part.tool_invocation, incoming)
        except InvalidLifecycleTransition as e:
            logger.warning(f"Ignoring tool state regression: {e}")
            return False
        if merged == part.tool_invocation:
            return False
        part.tool_invocation = merged
        return True

    def _snapshot(self) -> MessageSnapshot:
        self._message.sync_tool_invocations()
        snapshot = MessageSnapshot(
            message=self._message.model_copy(deep=True),
            revision_id=self._identity.new_id(),
            data=list(self.data),
        )
        logger.debug(f"Snapshot {snapshot.revision_id} of message {self._message.id}")
        return snapshot

    @staticmethod
    def _emit(snapshot: MessageSnapshot | None, on_snapshot: SnapshotHandler | None) -> None:
        if snapshot is not None and on_snapshot is not None:
            on_snapshot(snapshot)


def _final_args(event: ToolCallEvent) -> Any:
    """Final args of a tool-call event. String args must be complete JSON."""
    if not isinstance(event.args, str):
        return event.args
    if not event.args.strip():
        return {}
    try:
        return from_json(event.args)
    except ValueError as e:
        raise MalformedStreamEvent(
            f"tool-call {event.tool_call_id!r} has malformed args: {e}"
        ) from e


def _highest_step(message: CanonicalMessage) -> int:
    steps = [
        part.tool_invocation.step
        for part in message.tool_invocation_parts()
        if part.tool_invocation.step is not None
    ]
    return max(steps, default=0)


async def _aiter(events: AsyncIterable[Any] | Iterable[Any]):
    if isinstance(events, AsyncIterable):
        async for event in events:
            yield event
    else:
        for event in events:
            yield event
