"""Stuck-loop detector: the same branch condition evaluated over and over."""
from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

from ..trace.events import Frame, FunctionIdent, TraceState
from ..trace.opcodes import CONDITIONAL_BRANCHES, Instruction
from .base import BaseOracle, HarnessState, OracleFinding, Severity

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState

logger = logging.getLogger(__name__)


def hash_to_u64(text: str) -> int:
    return int.from_bytes(hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest(), "big")


def function_key(function: FunctionIdent) -> int:
    """Fixed-width key of a function; collisions are tolerated."""
    return hash_to_u64(str(function))


class InfiniteLoopOracle(BaseOracle):
    name = "infinite_loop"
    description = "Detects conditional branches whose condition repeats unchanged at one location"

    THRESHOLD = 1000

    def __init__(self) -> None:
        # function key -> pc -> (condition hash, repeat count)
        self.branch_counts: dict[int, dict[int, tuple[int, int]]] = {}

    def open_frame(
        self,
        frame: Frame,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        self.branch_counts.pop(function_key(frame.function), None)
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
        if instruction.opcode not in CONDITIONAL_BRANCHES or current_function is None:
            return []
        condition = symbol_stack.top()
        if condition is None or condition.is_unknown:
            logger.debug("No symbolic condition at %s:%d", current_function, pc)
            return []

        concrete = trace_state.top()
        value_hash = hash_to_u64(f"{condition.formula.sexpr()}|{concrete}")
        counts = self.branch_counts.setdefault(function_key(current_function), {})
        last_hash, count = counts.get(pc, (None, 0))
        if last_hash != value_hash:
            counts[pc] = (value_hash, 1)
            return []

        count += 1
        if count >= self.THRESHOLD:
            counts[pc] = (value_hash, 0)
            return [
                self.finding(
                    Severity.MAJOR,
                    f"Branch condition repeated {self.THRESHOLD} times without changing",
                    function=current_function,
                    pc=pc,
                )
            ]
        counts[pc] = (value_hash, count)
        return []
