"""Test doubles for code built on threadline."""

from .fake_identity import FakeIdentity
from .fake_stream import event_stream

__all__ = ["FakeIdentity", "event_stream"]
