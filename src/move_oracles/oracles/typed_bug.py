"""Bugs the contract under test signals on purpose."""
from __future__ import annotations

from enum import StrEnum

from ..trace.events import ExecutionEffects
from .base import BaseOracle, HarnessState, OracleFinding, Severity

CRASH_MODULE = "oracle"
CRASH_EVENT = "Crash"


class TypedBugMode(StrEnum):
    ABORT = "abort"
    EVENT = "event"


class TypedBugOracle(BaseOracle):
    """Reports a sentinel abort code or an ``oracle::Crash`` event.

    In ``abort`` mode a failed execution whose abort code equals
    ``abort_code`` is reported. In ``event`` mode the first ``oracle::Crash``
    event of an execution the harness marked as an allowed success is
    reported. Only one of the two mechanisms is active per instance.
    """

    name = "typed_bug"
    description = "Detects contract-signalled sentinel aborts or Crash events"

    DEFAULT_ABORT_CODE = 1337

    def __init__(self, mode: TypedBugMode | str = TypedBugMode.EVENT, abort_code: int = DEFAULT_ABORT_CODE) -> None:
        self.mode = TypedBugMode(mode)
        self.abort_code = abort_code

    def done_execution(self, effects: ExecutionEffects, state: HarnessState) -> list[OracleFinding]:
        if self.mode is TypedBugMode.ABORT:
            status = effects.status
            if status.success or status.abort_code != self.abort_code:
                return []
            return [
                self.finding(
                    Severity.CRITICAL,
                    f"Execution aborted with sentinel code {status.abort_code}",
                    abort_code=status.abort_code,
                )
            ]

        if not state.allowed_success:
            return []
        for emitted in effects.events:
            if emitted.module == CRASH_MODULE and emitted.name == CRASH_EVENT:
                return [
                    self.finding(
                        Severity.CRITICAL,
                        "Contract emitted oracle::Crash",
                        event=f"{emitted.module}::{emitted.name}",
                        payload=dict(emitted.payload),
                    )
                ]
        return []
