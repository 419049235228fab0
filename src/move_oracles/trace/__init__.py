"""VM trace vocabulary: opcodes, values, events and recorded traces."""

from __future__ import annotations

from .errors import ConcolicDesyncError, TraceError
from .events import (
    MOVE_CALL_START,
    CloseFrame,
    EffectEvent,
    EmittedEvent,
    ExecutionEffects,
    ExecutionStatus,
    ExternalEvent,
    Frame,
    FunctionIdent,
    InstructionEvent,
    OpenFrame,
    TraceEvent,
    TraceState,
)
from .loader import RecordedTrace, TraceStep, load_trace, load_trace_file
from .opcodes import Instruction, Opcode
from .values import ConcreteValue, value_bitwidth, value_sig_bits, value_to_int

__all__ = [
    "MOVE_CALL_START",
    "CloseFrame",
    "ConcolicDesyncError",
    "ConcreteValue",
    "EffectEvent",
    "EmittedEvent",
    "ExecutionEffects",
    "ExecutionStatus",
    "ExternalEvent",
    "Frame",
    "FunctionIdent",
    "Instruction",
    "InstructionEvent",
    "OpenFrame",
    "Opcode",
    "RecordedTrace",
    "TraceError",
    "TraceEvent",
    "TraceState",
    "TraceStep",
    "load_trace",
    "load_trace_file",
    "value_bitwidth",
    "value_sig_bits",
    "value_to_int",
]
