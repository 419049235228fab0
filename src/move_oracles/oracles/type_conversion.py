"""Casts to the width the operand already has."""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..trace.events import FunctionIdent, TraceState
from ..trace.opcodes import CAST_WIDTHS, Instruction
from ..trace.values import value_bitwidth
from .base import BaseOracle, HarnessState, OracleFinding, Severity

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState


class TypeConversionOracle(BaseOracle):
    name = "type_conversion"
    description = "Detects redundant casts whose operand already has the target width"

    def before_instruction(
        self,
        pc: int,
        instruction: Instruction,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        target = CAST_WIDTHS.get(instruction.opcode)
        operand = trace_state.top()
        if target is None or operand is None:
            return []
        if value_bitwidth(operand) != target:
            return []
        return [
            self.finding(
                Severity.MINOR,
                f"Redundant cast of {operand.type_name} to u{target}",
                function=current_function,
                pc=pc,
            )
        ]
