"""Trace-level failures."""
from __future__ import annotations

__all__ = ["ConcolicDesyncError", "TraceError"]


class TraceError(ValueError):
    """The trace data is malformed and analysis of it cannot proceed."""


class ConcolicDesyncError(TraceError):
    """The shadow stack no longer mirrors the concrete operand stack."""
