"""
Canonical message model, normalization, merging and projections.

The main entry point is `MessageHistory`, which normalizes every input shape
into canonical messages, merges re-submissions by id, and exposes views.

Example:
    from threadline.messages import MessageHistory

    history = MessageHistory(thread_id="thread-1")
    history.add({"role": "user", "content": "hi"}, "input")
    history.add(remembered_messages, "memory")

    prompt = history.all.prompt()
    ui = history.response.ui()
"""

from .errors import (
    DanglingToolResult,
    InvalidLifecycleTransition,
    MalformedStreamEvent,
    OrphanToolResult,
    ReconciliationError,
    StreamFailed,
    UnsupportedMessageShape,
)
from .formats import (
    LegacyMessage,
    MessageInput,
    PromptMessage,
    Segment,
    UIMessage,
    parse_message,
)
from .identity import DefaultIdentity, IdentityProvider
from .normalizer import normalize_messages
from .reconciler import reconcile_message
from .store import HistoryCheckpoint, MessageHistory
from .types import (
    Attachment,
    CanonicalMessage,
    MessageContent,
    MessageRole,
    MessageSource,
    Part,
    PartialToolCall,
    ToolCall,
    ToolInvocation,
    ToolResult,
)
from .views import HistoryView, to_legacy, to_model, to_prompt, to_ui

__all__ = [
    # Store
    "MessageHistory",
    "HistoryCheckpoint",
    "HistoryView",
    # Types
    "CanonicalMessage",
    "MessageContent",
    "MessageRole",
    "MessageSource",
    "Part",
    "Attachment",
    "ToolInvocation",
    "PartialToolCall",
    "ToolCall",
    "ToolResult",
    # Input shapes
    "LegacyMessage",
    "UIMessage",
    "PromptMessage",
    "Segment",
    "MessageInput",
    "parse_message",
    # Operations
    "normalize_messages",
    "reconcile_message",
    "to_legacy",
    "to_ui",
    "to_model",
    "to_prompt",
    # Identity
    "IdentityProvider",
    "DefaultIdentity",
    # Errors
    "ReconciliationError",
    "DanglingToolResult",
    "OrphanToolResult",
    "InvalidLifecycleTransition",
    "MalformedStreamEvent",
    "StreamFailed",
    "UnsupportedMessageShape",
]
