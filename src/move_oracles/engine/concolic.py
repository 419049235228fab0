"""Shadow operand stack mirroring the VM in lockstep.

Each call frame owns its own shadow operand list and locals. The shadow effect
of an instruction is computed when the instruction is announced (while the
concrete operands are still on the VM stack) and applied when the next event
arrives, so hooks always observe the "about to execute" view.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import z3

from ..trace.errors import ConcolicDesyncError
from ..trace.events import Frame, FunctionIdent, TraceState
from ..trace.opcodes import (
    ARITHMETIC_OPS,
    BITWISE_OPS,
    CALL_OPS,
    CAST_WIDTHS,
    COMPARISON_OPS,
    CONSTANT_LOADS,
    FIXED_STACK_EFFECTS,
    PACK_OPS,
    UNPACK_OPS,
    VALUE_PRESERVING_OPS,
    Instruction,
    Opcode,
)
from ..trace.values import PRIMITIVE_WIDTHS, ConcreteValue, value_bitwidth, value_to_int
from .symbols import (
    UNKNOWN,
    SymbolValue,
    int_bvand_const,
    int_bvnot,
    int_bvor_const,
    int_bvxor_const,
    int_mod_2n,
    int_two_pow,
    max_u_bits,
    resolve_value,
)

__all__ = ["ConcolicState", "PathConstraint", "ShadowFrame"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ShadowFrame:
    function: FunctionIdent | None
    frame_id: int | None = None
    return_count: int = 0
    is_native: bool = False
    stack: list[SymbolValue] = field(default_factory=list)
    locals: list[SymbolValue] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PathConstraint:
    """A boolean formula the concrete execution satisfied at *pc*.

    ``kind`` is ``"cmp"`` for comparison outcomes, ``"cast"`` for the range a
    cast operand had to respect and ``"shl"`` for the condition under which a
    left shift would drop bits.
    """

    pc: int
    kind: str
    formula: Any


@dataclass(slots=True)
class _Effect:
    pops: int = 0
    pushes: tuple[SymbolValue, ...] = ()
    store: tuple[int, SymbolValue] | None = None
    moved_local: int | None = None


class ConcolicState:
    """Symbolic shadow of the VM operand stack, one frame per activation."""

    def __init__(self) -> None:
        self.frames: list[ShadowFrame] = []
        # Symbolic parameters of each top-level call, keyed by parameter index.
        self.args: list[dict[int, Any]] = []
        self.constraints: list[PathConstraint] = []
        self.disabled = False
        self._pending: _Effect | None = None

    # -- read-only view for oracles -------------------------------------

    @property
    def stack(self) -> list[SymbolValue]:
        """Shadow operand stack of the innermost frame (empty when tracking is off)."""
        if self.disabled or not self.frames:
            return []
        return self.frames[-1].stack

    def top(self) -> SymbolValue | None:
        stack = self.stack
        return stack[-1] if stack else None

    def last_n(self, count: int) -> tuple[SymbolValue, ...] | None:
        stack = self.stack
        if len(stack) < count:
            return None
        return tuple(stack[-count:]) if count > 0 else ()

    @property
    def depth(self) -> int:
        return len(self.frames)

    # -- lifecycle -------------------------------------------------------

    def disable(self, reason: str) -> None:
        logger.warning("Concolic tracking disabled: %s", reason)
        self.disabled = True
        self._pending = None

    def reset_call(self) -> None:
        """Start a new top-level call: frames are dropped, argument history is kept."""
        self.frames.clear()
        self._pending = None

    def discard_pending(self) -> None:
        """Forget the announced instruction; the VM reported it did not complete."""
        self._pending = None

    def open_frame(self, frame: Frame) -> None:
        if self.disabled:
            return
        self.settle()
        param_count = len(frame.parameters)
        if not self.frames:
            call_index = len(self.args)
            locals_ = [
                self._resolve_arg(call_index, idx, param)
                for idx, param in enumerate(frame.parameters)
            ]
            self.args.append(
                {idx: value.formula for idx, value in enumerate(locals_) if not value.is_unknown}
            )
        else:
            caller = self.frames[-1].stack
            taken = min(param_count, len(caller))
            locals_ = caller[len(caller) - taken :]
            del caller[len(caller) - taken :]
            if taken < param_count:
                logger.debug("Frame %s opened with %d of %d arguments tracked", frame.function, taken, param_count)
                locals_ = [UNKNOWN] * (param_count - taken) + locals_
        if len(frame.local_types) > len(locals_):
            locals_.extend([UNKNOWN] * (len(frame.local_types) - len(locals_)))
        self.frames.append(
            ShadowFrame(
                function=frame.function,
                frame_id=frame.frame_id,
                return_count=frame.return_count,
                is_native=frame.is_native,
                locals=locals_,
            )
        )
        logger.debug("Open frame %s at depth %d", frame.function.qualified, len(self.frames))

    def close_frame(self, frame_id: int, returned_values: int = 0) -> None:
        """Pop the innermost frame and hand its return values to the caller.

        The number of values handed back is the larger of the count the frame
        declared when it opened and the number of values the VM reported.
        """
        if self.disabled:
            return
        self.settle()
        if not self.frames:
            raise ConcolicDesyncError("Close frame without a matching open frame")
        callee = self.frames[-1]
        if callee.frame_id is not None and callee.frame_id != frame_id:
            raise ConcolicDesyncError(f"Close of frame {frame_id} while frame {callee.frame_id} is innermost")
        self.frames.pop()
        if not self.frames:
            return
        return_count = max(returned_values, callee.return_count)
        if callee.is_native:
            # Natives run no bytecode, so nothing they return is tracked.
            returned = [UNKNOWN] * return_count
        elif return_count and len(callee.stack) >= return_count:
            returned = callee.stack[-return_count:]
        else:
            returned = [UNKNOWN] * return_count
        self.frames[-1].stack.extend(returned)

    def check_sync(self, trace_state: TraceState) -> None:
        """Verify the innermost shadow stack has one slot per concrete operand."""
        if self.disabled or not self.frames:
            return
        shadow = self.frames[-1].stack
        concrete = trace_state.operand_stack
        if len(shadow) == len(concrete):
            return
        if not concrete:
            logger.warning("Concrete stack empty but %d shadow values remain; clearing", len(shadow))
            shadow.clear()
            return
        raise ConcolicDesyncError(
            f"Shadow stack has {len(shadow)} values but the operand stack has {len(concrete)}"
        )

    # -- instruction effects ---------------------------------------------

    def settle(self) -> None:
        """Apply the effect of the previously announced instruction."""
        effect, self._pending = self._pending, None
        if effect is None or self.disabled or not self.frames:
            return
        frame = self.frames[-1]
        if effect.pops:
            if len(frame.stack) < effect.pops:
                raise ConcolicDesyncError(
                    f"Instruction pops {effect.pops} values but the shadow stack holds {len(frame.stack)}"
                )
            del frame.stack[-effect.pops :]
        if effect.store is not None:
            index, value = effect.store
            if index >= len(frame.locals):
                frame.locals.extend([UNKNOWN] * (index + 1 - len(frame.locals)))
            frame.locals[index] = value
        if effect.moved_local is not None and effect.moved_local < len(frame.locals):
            frame.locals[effect.moved_local] = UNKNOWN
        frame.stack.extend(effect.pushes)

    def prepare(self, pc: int, instruction: Instruction, trace_state: TraceState) -> None:
        """Compute the shadow effect of *instruction*; it is applied by the next ``settle``."""
        if self.disabled or not self.frames:
            return
        self._pending = self._effect_of(pc, instruction, trace_state)

    def _effect_of(self, pc: int, instruction: Instruction, trace_state: TraceState) -> _Effect | None:
        opcode = instruction.opcode
        frame = self.frames[-1]

        if opcode in CONSTANT_LOADS:
            return _Effect(pushes=(UNKNOWN,))
        if opcode == Opcode.LD_TRUE:
            return _Effect(pushes=(SymbolValue.of(z3.IntVal(1)),))
        if opcode == Opcode.LD_FALSE:
            return _Effect(pushes=(SymbolValue.of(z3.IntVal(0)),))
        if opcode in (Opcode.COPY_LOC, Opcode.MUT_BORROW_LOC, Opcode.IMM_BORROW_LOC):
            return _Effect(pushes=(self._local(frame, instruction, pc),))
        if opcode == Opcode.MOVE_LOC:
            index = int(instruction.operand or 0)
            return _Effect(pushes=(self._local(frame, instruction, pc),), moved_local=index)
        if opcode == Opcode.ST_LOC:
            if not frame.stack:
                raise ConcolicDesyncError(f"ST_LOC on an empty shadow stack at pc {pc}")
            return _Effect(pops=1, store=(int(instruction.operand or 0), frame.stack[-1]))
        if opcode in ARITHMETIC_OPS:
            return _Effect(pops=2, pushes=(self._arithmetic(opcode, frame, trace_state),))
        if opcode in BITWISE_OPS:
            return _Effect(pops=2, pushes=(self._bitwise(opcode, frame, trace_state),))
        if opcode in (Opcode.SHL, Opcode.SHR):
            return _Effect(pops=2, pushes=(self._shift(pc, opcode, frame, trace_state),))
        if opcode == Opcode.NOT:
            return _Effect(pops=1, pushes=(self._not(frame, trace_state),))
        if opcode in COMPARISON_OPS:
            return _Effect(pops=2, pushes=(self._compare(pc, opcode, frame, trace_state),))
        if opcode in CAST_WIDTHS:
            self._record_cast(pc, CAST_WIDTHS[opcode], frame)
            return None
        if opcode in VALUE_PRESERVING_OPS or opcode in CALL_OPS:
            return None
        if opcode in (Opcode.VEC_PACK, Opcode.VEC_UNPACK) or opcode in PACK_OPS or opcode in UNPACK_OPS:
            count = self._count(instruction)
            if count is None:
                self.disable(f"{instruction.name} at pc {pc} carries no element count")
                return None
            if opcode == Opcode.VEC_PACK or opcode in PACK_OPS:
                return _Effect(pops=count, pushes=(UNKNOWN,))
            return _Effect(pops=1, pushes=(UNKNOWN,) * count)
        if opcode in FIXED_STACK_EFFECTS:
            pops, pushes = FIXED_STACK_EFFECTS[opcode]
            return _Effect(pops=pops, pushes=(UNKNOWN,) * pushes)

        self.disable(f"no shadow semantics for {opcode.name} at pc {pc}")
        return None

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _count(instruction: Instruction) -> int | None:
        count = instruction.count
        if count is None and instruction.opcode in (Opcode.VEC_PACK, Opcode.VEC_UNPACK):
            count = instruction.operand
        return None if count is None else int(count)

    @staticmethod
    def _local(frame: ShadowFrame, instruction: Instruction, pc: int) -> SymbolValue:
        index = int(instruction.operand or 0)
        if index < len(frame.locals):
            return frame.locals[index]
        logger.warning("Local index %d out of bounds at pc %d", index, pc)
        return UNKNOWN

    @staticmethod
    def _resolve_arg(call_index: int, param_index: int, param: ConcreteValue) -> SymbolValue:
        if param.is_ref or param.type_name.startswith("&") or param.type_name not in PRIMITIVE_WIDTHS:
            return UNKNOWN
        return SymbolValue.of(z3.Int(f"{call_index}.{param_index}"))

    @staticmethod
    def _operands(frame: ShadowFrame, trace_state: TraceState) -> tuple[SymbolValue, SymbolValue, ConcreteValue, ConcreteValue]:
        concrete = trace_state.last_n(2)
        if len(frame.stack) < 2 or concrete is None:
            raise ConcolicDesyncError("Binary instruction with fewer than two operands")
        true_lhs, true_rhs = concrete
        return frame.stack[-2], frame.stack[-1], true_lhs, true_rhs

    def _lift_pair(self, frame: ShadowFrame, trace_state: TraceState) -> tuple[Any, Any] | None:
        """Both operands as formulas, substituting concrete numerals for unknown ones."""
        lhs, rhs, true_lhs, true_rhs = self._operands(frame, trace_state)
        if lhs.is_unknown and rhs.is_unknown:
            return None
        left = resolve_value(true_lhs) if lhs.is_unknown else lhs.formula
        right = resolve_value(true_rhs) if rhs.is_unknown else rhs.formula
        return left, right

    def _arithmetic(self, opcode: Opcode, frame: ShadowFrame, trace_state: TraceState) -> SymbolValue:
        pair = self._lift_pair(frame, trace_state)
        if pair is None:
            return UNKNOWN
        left, right = pair
        if opcode == Opcode.ADD:
            return SymbolValue.of(left + right)
        if opcode == Opcode.SUB:
            return SymbolValue.of(left - right)
        if opcode == Opcode.MUL:
            return SymbolValue.of(left * right)
        if opcode == Opcode.DIV:
            return SymbolValue.of(left / right)
        return SymbolValue.of(left % right)

    def _bitwise(self, opcode: Opcode, frame: ShadowFrame, trace_state: TraceState) -> SymbolValue:
        lhs, rhs, true_lhs, true_rhs = self._operands(frame, trace_state)
        if lhs.is_unknown == rhs.is_unknown:
            # Neither or both symbolic: the constant-mask encodings do not apply.
            return UNKNOWN
        if lhs.is_unknown:
            formula, mask = rhs.formula, value_to_int(true_lhs)
        else:
            formula, mask = lhs.formula, value_to_int(true_rhs)
        bits = value_bitwidth(true_lhs)
        if opcode in (Opcode.BIT_AND, Opcode.AND):
            return SymbolValue.of(int_bvand_const(formula, mask, bits))
        if opcode in (Opcode.BIT_OR, Opcode.OR):
            return SymbolValue.of(int_bvor_const(formula, mask, bits))
        return SymbolValue.of(int_bvxor_const(formula, mask, bits))

    def _shift(self, pc: int, opcode: Opcode, frame: ShadowFrame, trace_state: TraceState) -> SymbolValue:
        lhs, rhs, true_lhs, true_rhs = self._operands(frame, trace_state)
        if lhs.is_unknown or not rhs.is_unknown:
            return UNKNOWN
        shift = value_to_int(true_rhs)
        if opcode == Opcode.SHR:
            return SymbolValue.of(lhs.formula / int_two_pow(shift))
        bits = value_bitwidth(true_lhs)
        shifted = lhs.formula * int_two_pow(shift)
        self.constraints.append(PathConstraint(pc, "shl", shifted > max_u_bits(bits)))
        return SymbolValue.of(int_mod_2n(shifted, bits))

    @staticmethod
    def _not(frame: ShadowFrame, trace_state: TraceState) -> SymbolValue:
        if not frame.stack:
            raise ConcolicDesyncError("NOT on an empty shadow stack")
        operand = frame.stack[-1]
        if operand.is_unknown:
            return UNKNOWN
        concrete = trace_state.top()
        bits = value_bitwidth(concrete) if concrete is not None else 1
        return SymbolValue.of(int_bvnot(operand.formula, bits))

    def _compare(self, pc: int, opcode: Opcode, frame: ShadowFrame, trace_state: TraceState) -> SymbolValue:
        pair = self._lift_pair(frame, trace_state)
        if pair is None:
            return UNKNOWN
        left, right = pair
        _, _, true_lhs, true_rhs = self._operands(frame, trace_state)
        concrete_left, concrete_right = value_to_int(true_lhs), value_to_int(true_rhs)
        if opcode == Opcode.EQ:
            condition, holds = left == right, concrete_left == concrete_right
        elif opcode == Opcode.NEQ:
            condition, holds = left != right, concrete_left != concrete_right
        elif opcode == Opcode.LT:
            condition, holds = left < right, concrete_left < concrete_right
        elif opcode == Opcode.LE:
            condition, holds = left <= right, concrete_left <= concrete_right
        elif opcode == Opcode.GT:
            condition, holds = left > right, concrete_left > concrete_right
        else:
            condition, holds = left >= right, concrete_left >= concrete_right
        self.constraints.append(PathConstraint(pc, "cmp", condition if holds else z3.Not(condition)))
        return SymbolValue.of(z3.If(condition, z3.IntVal(1), z3.IntVal(0)))

    def _record_cast(self, pc: int, bits: int, frame: ShadowFrame) -> None:
        if not frame.stack:
            logger.warning("Stack underflow at pc %d", pc)
            return
        operand = frame.stack[-1]
        if operand.is_unknown or bits >= 256:
            return
        self.constraints.append(PathConstraint(pc, "cast", operand.formula <= max_u_bits(bits)))
