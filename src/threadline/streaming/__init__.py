"""
Streaming ingestion - folds model response events into canonical messages.

Components:
    MessageAccumulator: Builds one assistant message from stream events
    MessageSnapshot: Independent copy emitted after every mutating event
    parse_stream_event: Validates raw (flat or chunk-shaped) events
"""

from .accumulator import AccumulationResult, MessageAccumulator, MessageSnapshot
from .events import StreamEvent, Usage, parse_stream_event
from .partial_json import PartialJsonBuffer, parse_partial_json

__all__ = [
    "MessageAccumulator",
    "MessageSnapshot",
    "AccumulationResult",
    "StreamEvent",
    "Usage",
    "parse_stream_event",
    "parse_partial_json",
    "PartialJsonBuffer",
]
