"""Identity and clock source. Reconciliation is deterministic given its outputs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdentityProvider(Protocol):
    """
    Supplies message/revision ids and timestamps.

    Implementations: DefaultIdentity (uuid4 + UTC wall clock),
    FakeIdentity (deterministic, for tests).
    """

    def new_id(self) -> str:
        """Return a fresh unique id."""
        ...

    def now(self) -> datetime:
        """Return the current timestamp."""
        ...


class DefaultIdentity:
    """uuid4 ids and timezone-aware UTC timestamps."""

    def new_id(self) -> str:
        return str(uuid.uuid4())

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
