"""Left shifts that push significant bits past the operand width."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..trace.events import FunctionIdent, InstructionEvent, TraceEvent, TraceState
from ..trace.opcodes import Opcode
from ..trace.values import value_bitwidth, value_sig_bits, value_to_int
from .base import BaseOracle, HarnessState, OracleFinding, Severity

if TYPE_CHECKING:
    from ..engine.concolic import ConcolicState

logger = logging.getLogger(__name__)


def shift_overflows(width: int, sig_bits: int, shift: int) -> bool:
    return shift >= width or sig_bits + shift > width


class OverflowOracle(BaseOracle):
    name = "overflow"
    description = "Detects left shifts that discard significant bits of the operand"

    def event(
        self,
        event: TraceEvent,
        trace_state: TraceState,
        symbol_stack: ConcolicState,
        current_function: FunctionIdent | None,
        state: HarnessState,
    ) -> list[OracleFinding]:
        if not isinstance(event, InstructionEvent) or event.instruction.opcode != Opcode.SHL:
            return []
        operands = trace_state.last_n(2)
        if operands is None:
            logger.debug("Shl at pc %d with fewer than two operands", event.pc)
            return []
        value, amount = operands
        width = value_bitwidth(value)
        sig_bits = value_sig_bits(value)
        shift = value_to_int(amount)
        if not shift_overflows(width, sig_bits, shift):
            return []
        return [
            self.finding(
                Severity.MEDIUM,
                f"Shift left by {shift} overflows {value.type_name} value with {sig_bits} significant bits",
                function=current_function,
                pc=event.pc,
                width=width,
                sig_bits=sig_bits,
                shift=shift,
            )
        ]
