"""Base oracle definitions."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from ..trace.events import ExecutionEffects, Frame, FunctionIdent, TraceEvent, TraceState
from ..trace.opcodes import Instruction

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState

__all__ = [
    "SEVERITY_RANK",
    "BaseOracle",
    "DisableableOracle",
    "HarnessState",
    "OracleError",
    "OracleFinding",
    "Severity",
    "format_finding_info",
]

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    CRITICAL = "critical"
    MAJOR = "major"
    MEDIUM = "medium"
    MINOR = "minor"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.MAJOR: 1,
    Severity.MEDIUM: 2,
    Severity.MINOR: 3,
}


class OracleError(RuntimeError):
    """An oracle could not analyse the trace; processing of that trace stops."""


@dataclass(slots=True, frozen=True)
class OracleFinding:
    oracle: str
    severity: Severity
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def __reduce__(self) -> tuple[Any, ...]:
        # Rebuilt from a plain dict so findings pickle and deep-copy across workers.
        return (type(self), (self.oracle, self.severity, dict(self.extra)))

    @property
    def message(self) -> str:
        return str(self.extra.get("message", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"oracle": self.oracle, "severity": str(self.severity), "extra": dict(self.extra)}


@dataclass(slots=True)
class HarnessState:
    """Per-execution context supplied by the fuzzing harness.

    ``allowed_success`` records whether the harness accepted a successful
    outcome for this execution; ``None`` means it made no determination.
    """

    allowed_success: bool | None = None


def format_finding_info(
    message: str,
    function: FunctionIdent | None = None,
    pc: int | None = None,
    **fields: Any,
) -> dict[str, Any]:
    info: dict[str, Any] = {"message": message}
    if function is not None:
        info["function"] = str(function)
    if pc is not None:
        info["pc"] = pc
    info.update(fields)
    return info


class BaseOracle:
    """Hook contract every oracle implements.

    All hooks default to doing nothing and reporting nothing, so an oracle only
    overrides the hooks it cares about. Hooks return findings as data and raise
    only when the analysis itself cannot proceed.
    """

    name = "base"
    description = "base oracle"

    def pre_execution(self, state: HarnessState) -> None:
        return None

    def open_frame(
        self,
        frame: Frame,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        return []

    def before_instruction(
        self,
        pc: int,
        instruction: Instruction,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        return []

    def event(
        self,
        event: TraceEvent,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        return []

    def done_execution(self, effects: ExecutionEffects, state: HarnessState) -> list[OracleFinding]:
        return []

    def finding(
        self,
        severity: Severity,
        message: str,
        *,
        function: FunctionIdent | None = None,
        pc: int | None = None,
        **fields: Any,
    ) -> OracleFinding:
        """Create an OracleFinding whose payload carries the oracle name and location."""
        extra = {"oracle": self.name, **format_finding_info(message, function, pc, **fields)}
        logger.info("%s: %s (%s)", self.name, message, extra.get("function", "?"))
        return OracleFinding(oracle=self.name, severity=severity, extra=extra)


class DisableableOracle(BaseOracle):
    """Wraps an oracle so it can be switched off without leaving the registry."""

    def __init__(self, inner: BaseOracle, disabled: bool = False) -> None:
        self.inner = inner
        self.disabled = disabled

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.inner.name

    @property
    def description(self) -> str:  # type: ignore[override]
        return self.inner.description

    def pre_execution(self, state: HarnessState) -> None:
        if not self.disabled:
            self.inner.pre_execution(state)

    def open_frame(
        self,
        frame: Frame,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if self.disabled:
            return []
        return self.inner.open_frame(frame, trace_state, symbol_stack, current_function, state)

    def before_instruction(
        self,
        pc: int,
        instruction: Instruction,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if self.disabled:
            return []
        return self.inner.before_instruction(pc, instruction, trace_state, symbol_stack, current_function, state)

    def event(
        self,
        event: TraceEvent,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if self.disabled:
            return []
        return self.inner.event(event, trace_state, symbol_stack, current_function, state)

    def done_execution(self, effects: ExecutionEffects, state: HarnessState) -> list[OracleFinding]:
        if self.disabled:
            return []
        return self.inner.done_execution(effects, state)
