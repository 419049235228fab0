"""Tests for the concolic shadow stack."""
from __future__ import annotations

import pytest
import z3

from move_oracles.engine.concolic import ConcolicState
from move_oracles.engine.dispatch import OracleEngine
from move_oracles.oracles.base import BaseOracle
from move_oracles.trace.errors import ConcolicDesyncError
from move_oracles.trace.events import (
    MOVE_CALL_START,
    CloseFrame,
    EffectEvent,
    ExternalEvent,
    Frame,
    FunctionIdent,
    TraceState,
)
from move_oracles.trace.opcodes import Instruction, Opcode
from move_oracles.trace.values import ConcreteValue

u8 = ConcreteValue.u8
u64 = ConcreteValue.u64


class StackRecorder(BaseOracle):
    name = "recorder"

    def __init__(self) -> None:
        self.observations: list[tuple[int, int, int]] = []

    def before_instruction(self, pc, instruction, trace_state, symbol_stack, current_function, state):
        self.observations.append((pc, len(symbol_stack.stack), len(trace_state.operand_stack)))
        return []


def _frame(name: str, params=(), local_types=None, frame_id: int = 0, return_count: int = 0) -> Frame:
    if local_types is None:
        local_types = [p.type_name for p in params]
    return Frame(
        frame_id=frame_id,
        function=FunctionIdent("pool", name),
        parameters=tuple(params),
        local_types=tuple(local_types),
        return_count=return_count,
    )


def _step(engine: OracleEngine, pc: int, opcode: Opcode, stack, operand=None, count=None):
    return engine.before_instruction(pc, Instruction(opcode, operand, count), TraceState(list(stack)))


def _equivalent(left, right) -> bool:
    solver = z3.Solver()
    solver.add(left != right)
    return solver.check() == z3.unsat


def test_shadow_stack_length_follows_concrete_stack():
    recorder = StackRecorder()
    engine = OracleEngine([recorder])
    engine.open_frame(_frame("ratio", [u64(10), u64(3)], ["u64", "u64", "u64"], return_count=1), TraceState())

    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.COPY_LOC, [u64(10)], 1)
    _step(engine, 2, Opcode.DIV, [u64(10), u64(3)])
    _step(engine, 3, Opcode.ST_LOC, [u64(3)], 2)
    _step(engine, 4, Opcode.COPY_LOC, [], 2)
    _step(engine, 5, Opcode.LD_U64, [u64(3)], 4)
    _step(engine, 6, Opcode.MUL, [u64(3), u64(4)])
    _step(engine, 7, Opcode.RET, [u64(12)])
    engine.event(CloseFrame(0, (u64(12),)), TraceState())

    assert [pc for pc, _, _ in recorder.observations] == list(range(8))
    assert all(shadow == concrete for _, shadow, concrete in recorder.observations)


def test_division_result_flows_through_locals():
    engine = OracleEngine([])
    engine.open_frame(_frame("ratio", [u64(10), u64(3)], ["u64", "u64", "u64"]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.COPY_LOC, [u64(10)], 1)
    _step(engine, 2, Opcode.DIV, [u64(10), u64(3)])
    _step(engine, 3, Opcode.ST_LOC, [u64(3)], 2)
    _step(engine, 4, Opcode.COPY_LOC, [], 2)
    _step(engine, 5, Opcode.POP, [u64(3)])

    top = engine.concolic.top()
    a, b = z3.Int("0.0"), z3.Int("0.1")
    assert top is not None and z3.eq(top.formula, a / b)


def test_top_level_parameters_are_symbolic_per_call():
    engine = OracleEngine([])
    engine.event(ExternalEvent(MOVE_CALL_START), TraceState())
    engine.open_frame(_frame("first", [u64(1)]), TraceState())
    engine.event(CloseFrame(0), TraceState())
    engine.event(ExternalEvent(MOVE_CALL_START), TraceState())
    engine.open_frame(_frame("second", [u64(2), u8(3)]), TraceState())

    locals_ = engine.concolic.frames[-1].locals
    assert z3.eq(locals_[0].formula, z3.Int("1.0"))
    assert z3.eq(locals_[1].formula, z3.Int("1.1"))
    assert len(engine.concolic.args) == 2
    assert set(engine.concolic.args[1]) == {0, 1}


def test_reference_and_struct_parameters_are_unknown():
    state = ConcolicState()
    params = [ConcreteValue("u64", 5, is_ref=True), ConcreteValue("0x2::coin::Coin", None), u64(1)]
    state.open_frame(_frame("mixed", params))

    locals_ = state.frames[-1].locals
    assert locals_[0].is_unknown
    assert locals_[1].is_unknown
    assert not locals_[2].is_unknown
    assert set(state.args[0]) == {2}


def test_nested_call_moves_arguments_and_returns_values():
    engine = OracleEngine([])
    engine.open_frame(_frame("outer", [u64(7)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.CALL, [u64(7)], 0)

    engine.open_frame(_frame("inner", [u64(7)], frame_id=1, return_count=1), TraceState())
    assert engine.concolic.depth == 2
    assert engine.concolic.stack == []
    assert z3.eq(engine.concolic.frames[-1].locals[0].formula, z3.Int("0.0"))
    assert engine.concolic.frames[0].stack == []

    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.RET, [u64(7)])
    engine.event(CloseFrame(1, (u64(7),)), TraceState([u64(7)]))

    _step(engine, 2, Opcode.RET, [u64(7)])
    assert engine.concolic.depth == 1
    top = engine.concolic.top()
    assert top is not None and z3.eq(top.formula, z3.Int("0.0"))


def test_untracked_return_values_are_unknown():
    engine = OracleEngine([])
    engine.open_frame(_frame("outer"), TraceState())
    _step(engine, 0, Opcode.CALL, [], 0)
    engine.open_frame(_frame("native", frame_id=1, return_count=2), TraceState())
    engine.event(CloseFrame(1, (u64(1), u64(2))), TraceState([u64(1), u64(2)]))
    _step(engine, 1, Opcode.POP, [u64(1), u64(2)])

    assert len(engine.concolic.stack) == 2
    assert all(value.is_unknown for value in engine.concolic.stack)


def test_declared_return_count_fills_missing_return_values():
    engine = OracleEngine([])
    engine.open_frame(_frame("outer"), TraceState())
    _step(engine, 0, Opcode.CALL, [], 0)
    engine.open_frame(_frame("inner", frame_id=1, return_count=1), TraceState())
    _step(engine, 0, Opcode.LD_U64, [], 5)
    _step(engine, 1, Opcode.RET, [u64(5)])
    engine.event(CloseFrame(1), TraceState([u64(5)]))
    _step(engine, 1, Opcode.POP, [u64(5)])

    assert engine.pending_error is None
    assert engine.concolic.depth == 1
    assert len(engine.concolic.stack) == 1


def test_native_frame_returns_unknown_values():
    engine = OracleEngine([])
    engine.open_frame(_frame("outer", [u64(3)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.CALL, [u64(3)], 0)
    sha3 = Frame(1, FunctionIdent("hash", "sha3"), parameters=(u64(3),), return_count=1, is_native=True)
    engine.open_frame(sha3, TraceState())
    engine.event(CloseFrame(1, (u64(9),)), TraceState([u64(9)]))
    _step(engine, 2, Opcode.POP, [u64(9)])

    (returned,) = engine.concolic.stack
    assert returned.is_unknown


def test_closing_a_frame_that_is_not_innermost_is_a_desync():
    engine = OracleEngine([])
    engine.open_frame(_frame("outer"), TraceState())

    with pytest.raises(ConcolicDesyncError, match="frame 0 is innermost"):
        engine.event(CloseFrame(4), TraceState())
    assert engine.halted


def test_comparison_pushes_indicator_and_records_consistent_constraint():
    engine = OracleEngine([])
    engine.open_frame(_frame("cmp", [u64(10)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.LD_U64, [u64(10)], 20)
    _step(engine, 2, Opcode.LT, [u64(10), u64(20)])
    _step(engine, 3, Opcode.COPY_LOC, [ConcreteValue.boolean(True)], 0)
    _step(engine, 4, Opcode.LD_U64, [ConcreteValue.boolean(True), u64(10)], 20)
    _step(engine, 5, Opcode.GT, [ConcreteValue.boolean(True), u64(10), u64(20)])
    _step(engine, 6, Opcode.POP, [ConcreteValue.boolean(True), ConcreteValue.boolean(False)])

    x = z3.Int("0.0")
    held, refuted = engine.concolic.constraints
    assert (held.pc, held.kind) == (2, "cmp")
    assert _equivalent(held.formula, x < 20)
    assert _equivalent(refuted.formula, z3.Not(x > 20))
    assert _equivalent(engine.concolic.top().formula, z3.If(x < 20, 1, 0))


def test_cast_keeps_operand_and_records_range():
    engine = OracleEngine([])
    engine.open_frame(_frame("narrow", [u64(44)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.CAST_U8, [u64(44)])
    _step(engine, 2, Opcode.POP, [u8(44)])

    (constraint,) = engine.concolic.constraints
    assert constraint.kind == "cast"
    assert z3.eq(engine.concolic.top().formula, z3.Int("0.0"))


def test_shift_left_reduces_and_records_overflow_condition():
    engine = OracleEngine([])
    engine.open_frame(_frame("shift", [u8(0b0110_0001)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.LD_U8, [u8(0b0110_0001)], 2)
    _step(engine, 2, Opcode.SHL, [u8(0b0110_0001), u8(2)])
    _step(engine, 3, Opcode.POP, [u8(0b1000_0100)])

    (constraint,) = engine.concolic.constraints
    assert constraint.kind == "shl"
    shifted = engine.concolic.top().formula
    x = z3.Int("0.0")
    assert z3.simplify(z3.substitute(shifted, (x, z3.IntVal(0b0110_0001)))).as_long() == 0b1000_0100


def test_bitwise_and_with_constant_mask():
    engine = OracleEngine([])
    engine.open_frame(_frame("mask", [u8(182)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.LD_U8, [u8(182)], 60)
    _step(engine, 2, Opcode.BIT_AND, [u8(182), u8(60)])
    _step(engine, 3, Opcode.POP, [u8(52)])

    masked = engine.concolic.top().formula
    x = z3.Int("0.0")
    assert z3.simplify(z3.substitute(masked, (x, z3.IntVal(182)))).as_long() == 52


def test_arithmetic_on_two_unknowns_is_unknown():
    engine = OracleEngine([])
    engine.open_frame(_frame("consts"), TraceState())
    _step(engine, 0, Opcode.LD_U64, [], 1)
    _step(engine, 1, Opcode.LD_U64, [u64(1)], 2)
    _step(engine, 2, Opcode.ADD, [u64(1), u64(2)])
    _step(engine, 3, Opcode.POP, [u64(3)])

    assert engine.concolic.top().is_unknown


def test_move_loc_clears_the_local():
    engine = OracleEngine([])
    engine.open_frame(_frame("take", [u64(1)]), TraceState())
    _step(engine, 0, Opcode.MOVE_LOC, [], 0)
    _step(engine, 1, Opcode.POP, [u64(1)])

    assert engine.concolic.frames[-1].locals[0].is_unknown
    assert not engine.concolic.top().is_unknown


def test_missing_pack_count_disables_tracking():
    engine = OracleEngine([])
    engine.open_frame(_frame("build"), TraceState())
    _step(engine, 0, Opcode.LD_U64, [], 1)
    _step(engine, 1, Opcode.PACK, [u64(1)])

    assert engine.concolic.disabled
    assert engine.concolic.stack == []
    # Tracking is off, so later mismatches are not desyncs.
    _step(engine, 2, Opcode.POP, [ConcreteValue("0x2::pool::Pool", None)])


def test_pack_with_count_collapses_fields():
    engine = OracleEngine([])
    engine.open_frame(_frame("build"), TraceState())
    _step(engine, 0, Opcode.LD_U64, [], 1)
    _step(engine, 1, Opcode.LD_U64, [u64(1)], 2)
    _step(engine, 2, Opcode.PACK, [u64(1), u64(2)], 0, 2)
    _step(engine, 3, Opcode.POP, [ConcreteValue("0x2::pool::Pool", None)])

    assert len(engine.concolic.stack) == 1


def test_length_mismatch_is_a_desync_failure():
    engine = OracleEngine([])
    engine.open_frame(_frame("broken"), TraceState())

    with pytest.raises(ConcolicDesyncError):
        _step(engine, 0, Opcode.POP, [u64(1)])
    assert isinstance(engine.pending_error, ConcolicDesyncError)


def test_empty_concrete_stack_clears_stale_shadow():
    engine = OracleEngine([])
    engine.open_frame(_frame("stale", [u64(1)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.BRANCH, [], 0)

    assert engine.concolic.stack == []
    assert engine.pending_error is None


def test_execution_error_discards_announced_effect():
    engine = OracleEngine([])
    engine.open_frame(_frame("fails", [u64(1)]), TraceState())
    _step(engine, 0, Opcode.COPY_LOC, [], 0)
    _step(engine, 1, Opcode.LD_U64, [u64(1)], 0)
    _step(engine, 2, Opcode.DIV, [u64(1), u64(0)])
    engine.event(EffectEvent("execution_error"), TraceState([u64(1), u64(0)]))

    assert len(engine.concolic.stack) == 2
