"""
Threadline - conversation reconciliation for agent runtimes.

Messages Layer:
    MessageHistory: Canonical history with idempotent, monotonic merging
    normalize_messages: Any input shape → canonical messages
    reconcile_message: Merge two versions of the same message

Streaming Layer:
    MessageAccumulator: Folds live response events into one message
    MessageSnapshot: Independent copy emitted after every mutating event

Configuration:
    HistoryConfig: Store-level configuration
    load_history_config: Named profiles from threadline.yaml

Example:
    from threadline import MessageHistory

    history = MessageHistory(thread_id="thread-1", resource_id="user-1")
    history.add(remembered, "memory")
    history.add("What's the weather in Paris?", "input")

    result = await history.stream(model_events)

    send_to_model(history.all.prompt())
    render(history.all.ui())
"""

from .config import HistoryConfig, load_history_config
from .messages import (
    CanonicalMessage,
    DanglingToolResult,
    DefaultIdentity,
    HistoryView,
    IdentityProvider,
    InvalidLifecycleTransition,
    LegacyMessage,
    MalformedStreamEvent,
    MessageHistory,
    OrphanToolResult,
    PromptMessage,
    ReconciliationError,
    StreamFailed,
    UIMessage,
    UnsupportedMessageShape,
    normalize_messages,
    reconcile_message,
)
from .streaming import (
    AccumulationResult,
    MessageAccumulator,
    MessageSnapshot,
    parse_stream_event,
)

__all__ = [
    # Messages
    "MessageHistory",
    "HistoryView",
    "CanonicalMessage",
    "LegacyMessage",
    "UIMessage",
    "PromptMessage",
    "normalize_messages",
    "reconcile_message",
    # Streaming
    "MessageAccumulator",
    "MessageSnapshot",
    "AccumulationResult",
    "parse_stream_event",
    # Identity
    "IdentityProvider",
    "DefaultIdentity",
    # Configuration
    "HistoryConfig",
    "load_history_config",
    # Errors
    "ReconciliationError",
    "DanglingToolResult",
    "OrphanToolResult",
    "InvalidLifecycleTransition",
    "MalformedStreamEvent",
    "StreamFailed",
    "UnsupportedMessageShape",
]

__version__ = "0.1.0"
