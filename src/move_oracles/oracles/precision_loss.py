"""Multiplication of a value that already went through an integer division."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..engine.symbols import is_division, search_formula
from ..trace.events import FunctionIdent, TraceState
from ..trace.opcodes import Instruction, Opcode
from .base import BaseOracle, HarnessState, OracleFinding, Severity

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState

logger = logging.getLogger(__name__)


class PrecisionLossOracle(BaseOracle):
    name = "precision_loss"
    description = "Detects (a / b) * c patterns that lose precision compared to (a * c) / b"

    MAX_VISITED_NODES = 10_000

    def contains_division(self, formula) -> bool:
        found = search_formula(formula, is_division, self.MAX_VISITED_NODES)
        if found is None:
            logger.debug("Formula walk hit the %d node cap", self.MAX_VISITED_NODES)
        return found is True

    def before_instruction(
        self,
        pc: int,
        instruction: Instruction,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if instruction.opcode != Opcode.MUL:
            return []
        operands = symbol_stack.last_n(2)
        if operands is None:
            return []
        if not any(not operand.is_unknown and self.contains_division(operand.formula) for operand in operands):
            return []
        return [
            self.finding(
                Severity.MEDIUM,
                "Multiplication after division loses precision",
                function=current_function,
                pc=pc,
            )
        ]
