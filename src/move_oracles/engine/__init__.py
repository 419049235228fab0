"""Concolic engine package."""

from __future__ import annotations

from .concolic import ConcolicState, PathConstraint, ShadowFrame
from .dispatch import OracleEngine, TraceOutcome, replay
from .symbols import UNKNOWN, SymbolValue

__all__ = [
    "UNKNOWN",
    "ConcolicState",
    "OracleEngine",
    "PathConstraint",
    "ShadowFrame",
    "SymbolValue",
    "TraceOutcome",
    "replay",
]
