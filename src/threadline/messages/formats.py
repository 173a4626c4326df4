"""
Accepted input shapes.

Four record shapes plus bare strings are accepted:

- LegacyMessage: flat record with a `type` discriminant and string or
  segment-list content
- CanonicalMessage: the internal shape (see types.py)
- UIMessage: display shape with `parts`, flattened `content` and
  flattened `toolInvocations`
- PromptMessage: model-prompt shape, role plus string or segment-list content
- str: user text

Raw dicts are classified once by parse_message(); everything downstream
dispatches on the model type.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Field

from .errors import UnsupportedMessageShape
from .types import (
    Attachment,
    CanonicalMessage,
    MessageRole,
    Part,
    ToolInvocation,
    WireModel,
)

# --- Content segments shared by the legacy and model-prompt shapes ---


class TextSegment(WireModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningSegment(WireModel):
    type: Literal["reasoning"] = "reasoning"
    text: str
    signature: str | None = None


class RedactedReasoningSegment(WireModel):
    type: Literal["redacted-reasoning"] = "redacted-reasoning"
    data: str


class FileSegment(WireModel):
    type: Literal["file"] = "file"
    mime_type: str
    data: bytes | str
    filename: str | None = None


class ImageSegment(WireModel):
    type: Literal["image"] = "image"
    image: bytes | str
    mime_type: str | None = None


class ToolCallSegment(WireModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)


class ToolResultSegment(WireModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str | None = None
    result: Any = None
    is_error: bool | None = None


Segment = Annotated[
    Union[
        TextSegment,
        ReasoningSegment,
        RedactedReasoningSegment,
        FileSegment,
        ImageSegment,
        ToolCallSegment,
        ToolResultSegment,
    ],
    Field(discriminator="type"),
]


# --- Message shapes ---


class LegacyMessage(WireModel):
    """Flat legacy record. One message per tool call or tool result."""

    id: str
    role: MessageRole
    content: str | list[Segment]
    type: Literal["text", "tool-call", "tool-result"] = "text"
    created_at: datetime | None = None
    thread_id: str | None = None
    resource_id: str | None = None


class UIMessage(WireModel):
    """Display-oriented message."""

    id: str | None = None
    role: MessageRole
    content: str = ""
    parts: list[Part] = Field(default_factory=list)
    tool_invocations: list[ToolInvocation] | None = None
    experimental_attachments: list[Attachment] | None = Field(
        default=None, alias="experimental_attachments"
    )
    created_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    reasoning: str | None = None


class PromptMessage(WireModel):
    """Model-prompt message: no id, no timestamp."""

    role: MessageRole
    content: str | list[Segment]


MessageInput = Union[str, LegacyMessage, CanonicalMessage, UIMessage, PromptMessage]


def parse_message(raw: Any) -> MessageInput:
    """
    Classify one raw input into a typed message shape.

    Typed models and strings pass through. Dicts are classified by their
    distinguishing keys:

        content is a mapping  → CanonicalMessage
        top-level "parts"     → UIMessage
        top-level "type"      → LegacyMessage
        top-level "id"        → LegacyMessage (type "text" unless given)
        "role" only           → PromptMessage

    Raises:
        UnsupportedMessageShape: If the input matches none of the shapes
        pydantic.ValidationError: If the shape matches but fields are invalid
    """
    match raw:
        case str() | LegacyMessage() | CanonicalMessage() | UIMessage() | PromptMessage():
            return raw
        case {"content": Mapping()}:
            return CanonicalMessage.model_validate(raw)
        case {"parts": _}:
            return UIMessage.model_validate(raw)
        case {"type": _, "role": _}:
            return LegacyMessage.model_validate(raw)
        case {"id": str(), "role": _}:
            return LegacyMessage.model_validate(raw)
        case {"role": _}:
            return PromptMessage.model_validate(raw)
        case _:
            raise UnsupportedMessageShape(
                f"Unsupported message shape: {type(raw).__name__} {str(raw)[:100]}"
            )
