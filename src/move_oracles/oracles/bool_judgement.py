"""Comparisons decided entirely by constants."""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..engine.symbols import is_variable, search_formula
from ..trace.events import FunctionIdent, TraceState
from ..trace.opcodes import COMPARISON_OPS, Instruction
from .base import BaseOracle, HarnessState, OracleFinding, Severity

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState


class BoolJudgementOracle(BaseOracle):
    name = "bool_judgement"
    description = "Detects comparisons between two values that depend on no input"

    MAX_VISITED_NODES = 10_000

    def has_variable(self, formula) -> bool | None:
        return search_formula(formula, is_variable, self.MAX_VISITED_NODES)

    def before_instruction(
        self,
        pc: int,
        instruction: Instruction,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if instruction.opcode not in COMPARISON_OPS:
            return []
        operands = symbol_stack.last_n(2)
        if operands is None or any(operand.is_unknown for operand in operands):
            return []
        # A capped walk is undecided and must not report.
        if not all(self.has_variable(operand.formula) is False for operand in operands):
            return []
        return [
            self.finding(
                Severity.MINOR,
                "Unnecessary bool judgement (two constants)",
                function=current_function,
                pc=pc,
            )
        ]
