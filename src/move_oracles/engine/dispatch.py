"""Trace-event dispatch: concolic maintenance plus ordered oracle fan-out."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..oracles.base import BaseOracle, HarnessState, OracleError, OracleFinding
from ..trace.errors import TraceError
from ..trace.events import (
    MOVE_CALL_START,
    CloseFrame,
    EffectEvent,
    ExecutionEffects,
    ExternalEvent,
    Frame,
    FunctionIdent,
    InstructionEvent,
    OpenFrame,
    TraceEvent,
    TraceState,
)
from ..trace.opcodes import Instruction
from .concolic import ConcolicState, PathConstraint

if TYPE_CHECKING:
    from ..trace.loader import RecordedTrace

__all__ = ["EXECUTION_ERROR", "OracleEngine", "TraceOutcome", "replay"]

logger = logging.getLogger(__name__)

# Effect kind the VM reports when the announced instruction did not complete.
EXECUTION_ERROR = "execution_error"


@dataclass(slots=True, frozen=True)
class TraceOutcome:
    findings: tuple[OracleFinding, ...] = ()
    pending_error: Exception | None = None
    constraints: tuple[PathConstraint, ...] = field(default_factory=tuple)

    @property
    def crashed(self) -> bool:
        return self.pending_error is not None


class OracleEngine:
    """Drives one execution's oracles from the VM trace hooks.

    The shadow stack is updated before oracles run, so every hook observes the
    operands of the instruction about to execute. Oracles run in registration
    order and every oracle sees every event. The first failure is kept in
    ``pending_error``, re-raised, and all later events for the trace are
    ignored; findings gathered until then remain in ``findings``.
    """

    def __init__(self, oracles: Sequence[BaseOracle], state: HarnessState | None = None) -> None:
        self.oracles = list(oracles)
        self.state = state if state is not None else HarnessState()
        self.concolic = ConcolicState()
        self.findings: list[OracleFinding] = []
        self.current_functions: list[FunctionIdent] = []
        self.pending_error: Exception | None = None

    @property
    def current_function(self) -> FunctionIdent | None:
        return self.current_functions[-1] if self.current_functions else None

    @property
    def halted(self) -> bool:
        return self.pending_error is not None

    def outcome(self) -> TraceOutcome:
        return TraceOutcome(
            findings=tuple(self.findings),
            pending_error=self.pending_error,
            constraints=tuple(self.concolic.constraints),
        )

    # -- hooks -------------------------------------------------------------

    def pre_execution(self) -> None:
        for oracle in self.oracles:
            with self._oracle_failures(oracle, "pre_execution"):
                oracle.pre_execution(self.state)

    def notify(self, event: TraceEvent, trace_state: TraceState) -> list[OracleFinding]:
        """Route *event* to the hook that handles its kind."""
        if isinstance(event, OpenFrame):
            return self.open_frame(event.frame, trace_state)
        if isinstance(event, InstructionEvent):
            return self.before_instruction(event.pc, event.instruction, trace_state)
        return self.event(event, trace_state)

    def open_frame(self, frame: Frame, trace_state: TraceState) -> list[OracleFinding]:
        if self.halted:
            return []
        with self._trace_failures():
            self.concolic.open_frame(frame)
        self.current_functions.append(frame.function)
        return self._collect(
            "open_frame",
            lambda oracle: oracle.open_frame(frame, trace_state, self.concolic, frame.function, self.state),
        )

    def before_instruction(self, pc: int, instruction: Instruction, trace_state: TraceState) -> list[OracleFinding]:
        if self.halted:
            return []
        with self._trace_failures():
            self.concolic.settle()
            self.concolic.check_sync(trace_state)
        function = self.current_function
        found = self._collect(
            "before_instruction",
            lambda oracle: oracle.before_instruction(pc, instruction, trace_state, self.concolic, function, self.state),
        )
        announced = InstructionEvent(pc, instruction)
        found += self._collect(
            "event",
            lambda oracle: oracle.event(announced, trace_state, self.concolic, function, self.state),
        )
        with self._trace_failures():
            self.concolic.prepare(pc, instruction, trace_state)
        return found

    def event(self, trace_event: TraceEvent, trace_state: TraceState) -> list[OracleFinding]:
        if isinstance(trace_event, (OpenFrame, InstructionEvent)):
            return self.notify(trace_event, trace_state)
        if self.halted:
            return []

        function = self.current_function
        with self._trace_failures():
            if isinstance(trace_event, CloseFrame):
                self.concolic.close_frame(trace_event.frame_id, len(trace_event.return_values))
            elif isinstance(trace_event, EffectEvent) and trace_event.kind == EXECUTION_ERROR:
                self.concolic.discard_pending()
            elif isinstance(trace_event, ExternalEvent) and trace_event.name == MOVE_CALL_START:
                logger.debug("Top-level call %d starts", len(self.concolic.args))
                self.concolic.reset_call()
                self.current_functions.clear()
                function = None

        found = self._collect(
            "event",
            lambda oracle: oracle.event(trace_event, trace_state, self.concolic, function, self.state),
        )
        if isinstance(trace_event, CloseFrame) and self.current_functions:
            self.current_functions.pop()
        return found

    def done_execution(self, effects: ExecutionEffects) -> list[OracleFinding]:
        if self.halted:
            return []
        self.concolic.discard_pending()
        return self._collect("done_execution", lambda oracle: oracle.done_execution(effects, self.state))

    # -- helpers -----------------------------------------------------------

    def _collect(self, hook: str, call: Callable[[BaseOracle], list[OracleFinding]]) -> list[OracleFinding]:
        found: list[OracleFinding] = []
        for oracle in self.oracles:
            with self._oracle_failures(oracle, hook):
                produced = list(call(oracle))
            # Recorded per oracle so findings survive a failure later in the hook.
            self.findings.extend(produced)
            found.extend(produced)
        return found

    @contextmanager
    def _oracle_failures(self, oracle: BaseOracle, hook: str) -> Iterator[None]:
        try:
            yield
        except (OracleError, TraceError) as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            error = OracleError(f"Oracle {oracle.name} failed in {hook}: {exc}")
            self._fail(error)
            raise error from exc

    @contextmanager
    def _trace_failures(self) -> Iterator[None]:
        try:
            yield
        except TraceError as exc:
            self._fail(exc)
            raise

    def _fail(self, error: Exception) -> None:
        logger.error("Trace analysis stopped: %s", error)
        self.pending_error = error


def replay(recorded: RecordedTrace, oracles: Sequence[BaseOracle], state: HarnessState | None = None) -> TraceOutcome:
    """Feed a recorded trace through *oracles* and return what they reported.

    A failure stops the replay; it is returned in ``TraceOutcome.pending_error``
    together with the findings reported before it.
    """
    if state is None:
        state = HarnessState(allowed_success=recorded.allowed_success)
    engine = OracleEngine(oracles, state)
    try:
        engine.pre_execution()
        for step in recorded.steps:
            engine.notify(step.event, step.trace_state)
        if recorded.effects is not None:
            engine.done_execution(recorded.effects)
    except (OracleError, TraceError):
        logger.debug("Replay halted after %d findings", len(engine.findings))
    return engine.outcome()
