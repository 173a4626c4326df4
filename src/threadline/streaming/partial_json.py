"""Best-effort parsing of incomplete JSON argument text."""

from __future__ import annotations

from typing import Any

from pydantic_core import from_json


def parse_partial_json(text: str) -> Any:
    """
    Parse a possibly truncated JSON document.

    Incomplete trailing strings are kept, incomplete keys and literals are
    dropped. Returns None for blank or unparseable text instead of raising.

    >>> parse_partial_json('{"city": "Par')
    {'city': 'Par'}
    """
    if not text.strip():
        return None
    try:
        return from_json(text, allow_partial="trailing-strings")
    except ValueError:
        return None


class PartialJsonBuffer:
    """
    Argument text buffer for one streaming tool call.

    Keeps the last value that parsed, so a delta that leaves the buffer
    momentarily unparseable never erases args already shown.
    """

    def __init__(self) -> None:
        self._text = ""
        self._value: Any = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def value(self) -> Any:
        return self._value

    def feed(self, delta: str) -> Any:
        """Append a fragment and return the best value parsed so far."""
        self._text += delta
        parsed = parse_partial_json(self._text)
        if parsed is not None:
            self._value = parsed
        return self.value
