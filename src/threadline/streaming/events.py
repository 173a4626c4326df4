"""
Stream events - the wire contract with the model-invocation layer.

Events arrive either as typed models or as raw dicts in one of two shapes:

    flat:          {"type": "text-delta", "text": "Hi"}
    chunk-shaped:  {"type": "text-delta", "payload": {"text": "Hi"}}

Payload fields are opaque and passed through, except tool-call argument
text which the accumulator parses.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from threadline.messages.errors import MalformedStreamEvent
from threadline.messages.types import WireModel


class Usage(WireModel):
    """Token usage totals. Provider-specific counters are kept as extras."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class StepStartEvent(WireModel):
    type: Literal["step-start"] = "step-start"
    message_id: str | None = None


class TextDeltaEvent(WireModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class ReasoningDeltaEvent(WireModel):
    type: Literal["reasoning-delta"] = "reasoning-delta"
    text: str


class RedactedReasoningEvent(WireModel):
    type: Literal["redacted-reasoning"] = "redacted-reasoning"
    data: str


class ReasoningSignatureEvent(WireModel):
    type: Literal["reasoning-signature"] = "reasoning-signature"
    signature: str


class FileEvent(WireModel):
    type: Literal["file"] = "file"
    mime_type: str
    data: bytes | str


class SourceEvent(WireModel):
    type: Literal["source"] = "source"
    source: dict[str, Any]


class ToolCallStartEvent(WireModel):
    type: Literal["tool-call-start"] = "tool-call-start"
    tool_call_id: str
    tool_name: str


class ToolCallDeltaEvent(WireModel):
    type: Literal["tool-call-delta"] = "tool-call-delta"
    tool_call_id: str
    args_text_delta: str
    tool_name: str | None = None


class ToolCallEvent(WireModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)


class ToolResultEvent(WireModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str | None = None
    result: Any = None


class StepFinishEvent(WireModel):
    type: Literal["step-finish"] = "step-finish"
    finish_reason: str | None = None
    usage: Usage | None = None
    is_continued: bool = False


class FinishEvent(WireModel):
    type: Literal["finish"] = "finish"
    finish_reason: str | None = None
    usage: Usage | None = None


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    error: Any = None


class DataEvent(WireModel):
    """Stream data annotations. Kept beside the message, not in it."""

    type: Literal["data"] = "data"
    data: list[Any] = Field(default_factory=list)


StreamEvent = Annotated[
    Union[
        StepStartEvent,
        TextDeltaEvent,
        ReasoningDeltaEvent,
        RedactedReasoningEvent,
        ReasoningSignatureEvent,
        FileEvent,
        SourceEvent,
        ToolCallStartEvent,
        ToolCallDeltaEvent,
        ToolCallEvent,
        ToolResultEvent,
        StepFinishEvent,
        FinishEvent,
        ErrorEvent,
        DataEvent,
    ],
    Field(discriminator="type"),
]

EVENT_TYPES = (
    StepStartEvent,
    TextDeltaEvent,
    ReasoningDeltaEvent,
    RedactedReasoningEvent,
    ReasoningSignatureEvent,
    FileEvent,
    SourceEvent,
    ToolCallStartEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    StepFinishEvent,
    FinishEvent,
    ErrorEvent,
    DataEvent,
)

_EVENT_ADAPTER: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_stream_event(raw: Any) -> StreamEvent:
    """
    Validate one raw stream event.

    Typed events pass through. Dicts may be flat or chunk-shaped.

    Raises:
        MalformedStreamEvent: If the event has no type, an unknown type, or
            fields that fail validation
    """
    match raw:
        case BaseModel() if isinstance(raw, EVENT_TYPES):
            return raw
        case BaseModel():
            raise MalformedStreamEvent(f"Not a stream event: {type(raw).__name__}")
        case {"type": str() as kind, "payload": Mapping() as payload}:
            data = {**payload, "type": kind}
        case {"type": str()}:
            data = raw
        case _:
            raise MalformedStreamEvent(f"Stream event without a type: {str(raw)[:100]}")

    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MalformedStreamEvent(f"Invalid {data['type']!r} event: {e}") from e
