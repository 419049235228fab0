"""Trace event vocabulary emitted by the VM while it executes a transaction."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .opcodes import Instruction
from .values import ConcreteValue

__all__ = [
    "MOVE_CALL_START",
    "CloseFrame",
    "EffectEvent",
    "EmittedEvent",
    "ExecutionEffects",
    "ExecutionStatus",
    "ExternalEvent",
    "Frame",
    "FunctionIdent",
    "InstructionEvent",
    "OpenFrame",
    "TraceEvent",
    "TraceState",
]

# External marker the VM emits at the start of every top-level call.
MOVE_CALL_START = "MoveCallStart"


@dataclass(slots=True, frozen=True, order=True)
class FunctionIdent:
    module: str
    name: str
    package: str = ""

    @property
    def qualified(self) -> str:
        if self.package:
            return f"{self.package}::{self.module}::{self.name}"
        return str(self)

    def __str__(self) -> str:
        return f"{self.module}::{self.name}"


@dataclass(slots=True, frozen=True)
class Frame:
    frame_id: int
    function: FunctionIdent
    parameters: tuple[ConcreteValue, ...] = ()
    # Parameter types first, then the remaining locals.
    local_types: tuple[str, ...] = ()
    return_count: int = 0
    is_native: bool = False


@dataclass(slots=True, frozen=True)
class OpenFrame:
    frame: Frame


@dataclass(slots=True, frozen=True)
class CloseFrame:
    frame_id: int
    return_values: tuple[ConcreteValue, ...] = ()


@dataclass(slots=True, frozen=True)
class InstructionEvent:
    pc: int
    instruction: Instruction


@dataclass(slots=True, frozen=True)
class EffectEvent:
    kind: str
    value: ConcreteValue | None = None


@dataclass(slots=True, frozen=True)
class ExternalEvent:
    name: str
    payload: Any = None


TraceEvent = Union[OpenFrame, CloseFrame, InstructionEvent, EffectEvent, ExternalEvent]


@dataclass(slots=True)
class TraceState:
    """Concrete VM registers at the moment of an event.

    ``operand_stack`` is the innermost frame's operand stack, bottom first.
    """

    operand_stack: list[ConcreteValue] = field(default_factory=list)
    locals: dict[int, ConcreteValue] = field(default_factory=dict)

    def last_n(self, count: int) -> tuple[ConcreteValue, ...] | None:
        """Return the top *count* operands (deepest first), or None if the stack is shorter."""
        if count <= 0:
            return ()
        if len(self.operand_stack) < count:
            return None
        return tuple(self.operand_stack[-count:])

    def top(self) -> ConcreteValue | None:
        return self.operand_stack[-1] if self.operand_stack else None


@dataclass(slots=True, frozen=True)
class ExecutionStatus:
    success: bool = True
    abort_code: int | None = None
    command: int | None = None
    message: str | None = None

    @classmethod
    def aborted(cls, abort_code: int, command: int | None = None) -> ExecutionStatus:
        return cls(success=False, abort_code=abort_code, command=command, message="MoveAbort")


@dataclass(slots=True, frozen=True)
class EmittedEvent:
    module: str
    name: str
    package: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ExecutionEffects:
    status: ExecutionStatus = field(default_factory=ExecutionStatus)
    events: tuple[EmittedEvent, ...] = ()
