"""
Canonical message types for conversation reconciliation.

Every accepted input shape (legacy, UI-display, model-prompt, bare string)
reduces to CanonicalMessage. Projections are produced from it on demand:

    Raw input → CanonicalMessage (stored) → legacy / UI / model-prompt views

Models use snake_case attributes and serialize with camelCase aliases so the
wire shapes (toolCallId, createdAt, mimeType, ...) round-trip unchanged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageRole = Literal["user", "assistant", "system", "tool"]

# Provenance tag. Controls insertion policy only, never display.
MessageSource = Literal["input", "response", "memory", "system", "user"]

ToolState = Literal["partial-call", "call", "result"]

SPLIT_MARKER = "__split-"


class WireModel(BaseModel):
    """Base for all message models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump with wire aliases, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Tool invocations ---


class PartialToolCall(WireModel):
    """A tool call whose arguments are still streaming."""

    state: Literal["partial-call"] = "partial-call"
    tool_call_id: str
    tool_name: str
    args: Any = None
    step: int | None = None


class ToolCall(WireModel):
    """A finalized tool call awaiting its result."""

    state: Literal["call"] = "call"
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)
    step: int | None = None


class ToolResult(WireModel):
    """A resolved tool call. Terminal state."""

    state: Literal["result"] = "result"
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)
    result: Any = None
    step: int | None = None


ToolInvocation = Annotated[
    Union[PartialToolCall, ToolCall, ToolResult], Field(discriminator="state")
]


# --- Parts ---


class ReasoningTextDetail(WireModel):
    type: Literal["text"] = "text"
    text: str
    signature: str | None = None


class RedactedReasoningDetail(WireModel):
    type: Literal["redacted"] = "redacted"
    data: str


ReasoningDetail = Annotated[
    Union[ReasoningTextDetail, RedactedReasoningDetail], Field(discriminator="type")
]


class TextPart(WireModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(WireModel):
    """
    One reasoning turn.

    Visible and redacted segments of the same turn live side by side in
    `details`; `reasoning` is the concatenated visible text.
    """

    type: Literal["reasoning"] = "reasoning"
    reasoning: str = ""
    details: list[ReasoningDetail] = Field(default_factory=list)


class FilePart(WireModel):
    type: Literal["file"] = "file"
    mime_type: str
    data: str  # base64 payload or URL


class SourcePart(WireModel):
    type: Literal["source"] = "source"
    source: dict[str, Any]


class StepStartPart(WireModel):
    type: Literal["step-start"] = "step-start"


class ToolInvocationPart(WireModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation


Part = Annotated[
    Union[
        TextPart,
        ReasoningPart,
        FilePart,
        SourcePart,
        StepStartPart,
        ToolInvocationPart,
    ],
    Field(discriminator="type"),
]


class Attachment(WireModel):
    """Attachment descriptor carried by UI messages."""

    url: str
    name: str | None = None
    content_type: str | None = None


class MessageContent(WireModel):
    """Content of a canonical message."""

    format: Literal[2] = 2
    parts: list[Part] = Field(default_factory=list)
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    experimental_attachments: list[Attachment] | None = Field(
        default=None, alias="experimental_attachments"
    )
    # Flat string of a string-content input, kept to restore string shape
    content: str | None = None


class CanonicalMessage(WireModel):
    """
    The unified internal message record.

    Ids are unique within a conversation and stable across merges.
    Provenance (source) is tracked by the store, not on the message.
    """

    id: str
    role: MessageRole
    created_at: datetime
    thread_id: str | None = None
    resource_id: str | None = None
    content: MessageContent = Field(default_factory=MessageContent)

    def tool_invocation_parts(self) -> list[ToolInvocationPart]:
        return [p for p in self.content.parts if isinstance(p, ToolInvocationPart)]

    def find_tool_invocation(self, tool_call_id: str) -> ToolInvocationPart | None:
        for part in self.tool_invocation_parts():
            if part.tool_invocation.tool_call_id == tool_call_id:
                return part
        return None

    def sync_tool_invocations(self) -> None:
        """Rebuild the denormalized tool_invocations list from the parts."""
        self.content.tool_invocations = [
            p.tool_invocation for p in self.tool_invocation_parts()
        ]


def split_id(message_id: str, index: int) -> str:
    """
    Id of the index-th split fragment of a message.

    Fragment 0 keeps the id. An id that already carries a split suffix is
    reused as-is so suffixes never stack.
    """
    if index == 0 or SPLIT_MARKER in message_id:
        return message_id
    return f"{message_id}{SPLIT_MARKER}{index}"
