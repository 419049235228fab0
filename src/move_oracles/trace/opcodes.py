"""Move bytecode opcode definitions and stack-arity metadata.

Numbering follows the Move binary format serializer.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class Opcode(IntEnum):
    POP = 0x01
    RET = 0x02
    BR_TRUE = 0x03
    BR_FALSE = 0x04
    BRANCH = 0x05
    LD_U64 = 0x06
    LD_CONST = 0x07
    LD_TRUE = 0x08
    LD_FALSE = 0x09
    COPY_LOC = 0x0A
    MOVE_LOC = 0x0B
    ST_LOC = 0x0C
    MUT_BORROW_LOC = 0x0D
    IMM_BORROW_LOC = 0x0E
    MUT_BORROW_FIELD = 0x0F
    IMM_BORROW_FIELD = 0x10
    CALL = 0x11
    PACK = 0x12
    UNPACK = 0x13
    READ_REF = 0x14
    WRITE_REF = 0x15
    ADD = 0x16
    SUB = 0x17
    MUL = 0x18
    MOD = 0x19
    DIV = 0x1A
    BIT_OR = 0x1B
    BIT_AND = 0x1C
    XOR = 0x1D
    OR = 0x1E
    AND = 0x1F
    NOT = 0x20
    EQ = 0x21
    NEQ = 0x22
    LT = 0x23
    GT = 0x24
    LE = 0x25
    GE = 0x26
    ABORT = 0x27
    NOP = 0x28
    FREEZE_REF = 0x2E
    SHL = 0x2F
    SHR = 0x30
    LD_U8 = 0x31
    LD_U128 = 0x32
    CAST_U8 = 0x33
    CAST_U64 = 0x34
    CAST_U128 = 0x35
    MUT_BORROW_FIELD_GENERIC = 0x36
    IMM_BORROW_FIELD_GENERIC = 0x37
    CALL_GENERIC = 0x38
    PACK_GENERIC = 0x39
    UNPACK_GENERIC = 0x3A
    VEC_PACK = 0x40
    VEC_LEN = 0x41
    VEC_IMM_BORROW = 0x42
    VEC_MUT_BORROW = 0x43
    VEC_PUSH_BACK = 0x44
    VEC_POP_BACK = 0x45
    VEC_UNPACK = 0x46
    VEC_SWAP = 0x47
    LD_U16 = 0x48
    LD_U32 = 0x49
    LD_U256 = 0x4A
    CAST_U16 = 0x4B
    CAST_U32 = 0x4C
    CAST_U256 = 0x4D
    PACK_VARIANT = 0x4E
    PACK_VARIANT_GENERIC = 0x4F
    UNPACK_VARIANT = 0x50
    UNPACK_VARIANT_IMM_REF = 0x51
    UNPACK_VARIANT_MUT_REF = 0x52
    UNPACK_VARIANT_GENERIC = 0x53
    UNPACK_VARIANT_GENERIC_IMM_REF = 0x54
    UNPACK_VARIANT_GENERIC_MUT_REF = 0x55
    VARIANT_SWITCH = 0x56


CONDITIONAL_BRANCHES: frozenset[Opcode] = frozenset({Opcode.BR_TRUE, Opcode.BR_FALSE})

CAST_WIDTHS: dict[Opcode, int] = {
    Opcode.CAST_U8: 8,
    Opcode.CAST_U16: 16,
    Opcode.CAST_U32: 32,
    Opcode.CAST_U64: 64,
    Opcode.CAST_U128: 128,
    Opcode.CAST_U256: 256,
}

ARITHMETIC_OPS: frozenset[Opcode] = frozenset(
    {Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV, Opcode.MOD}
)

BITWISE_OPS: frozenset[Opcode] = frozenset(
    {Opcode.BIT_AND, Opcode.AND, Opcode.BIT_OR, Opcode.OR, Opcode.XOR}
)

COMPARISON_OPS: frozenset[Opcode] = frozenset(
    {Opcode.EQ, Opcode.NEQ, Opcode.LT, Opcode.LE, Opcode.GT, Opcode.GE}
)

CONSTANT_LOADS: frozenset[Opcode] = frozenset(
    {
        Opcode.LD_U8,
        Opcode.LD_U16,
        Opcode.LD_U32,
        Opcode.LD_U64,
        Opcode.LD_U128,
        Opcode.LD_U256,
        Opcode.LD_CONST,
    }
)

PACK_OPS: frozenset[Opcode] = frozenset(
    {Opcode.PACK, Opcode.PACK_GENERIC, Opcode.PACK_VARIANT, Opcode.PACK_VARIANT_GENERIC}
)

UNPACK_OPS: frozenset[Opcode] = frozenset(
    {
        Opcode.UNPACK,
        Opcode.UNPACK_GENERIC,
        Opcode.UNPACK_VARIANT,
        Opcode.UNPACK_VARIANT_IMM_REF,
        Opcode.UNPACK_VARIANT_MUT_REF,
        Opcode.UNPACK_VARIANT_GENERIC,
        Opcode.UNPACK_VARIANT_GENERIC_IMM_REF,
        Opcode.UNPACK_VARIANT_GENERIC_MUT_REF,
    }
)

CALL_OPS: frozenset[Opcode] = frozenset({Opcode.CALL, Opcode.CALL_GENERIC})

# (pops, pushes) for instructions whose shadow effect carries no symbolic
# information. Instructions with data-dependent arity are handled separately.
FIXED_STACK_EFFECTS: dict[Opcode, tuple[int, int]] = {
    Opcode.POP: (1, 0),
    Opcode.RET: (0, 0),
    Opcode.BR_TRUE: (1, 0),
    Opcode.BR_FALSE: (1, 0),
    Opcode.BRANCH: (0, 0),
    Opcode.NOP: (0, 0),
    Opcode.ABORT: (1, 0),
    Opcode.MUT_BORROW_FIELD: (1, 1),
    Opcode.IMM_BORROW_FIELD: (1, 1),
    Opcode.MUT_BORROW_FIELD_GENERIC: (1, 1),
    Opcode.IMM_BORROW_FIELD_GENERIC: (1, 1),
    Opcode.WRITE_REF: (2, 0),
    Opcode.VEC_LEN: (1, 1),
    Opcode.VEC_IMM_BORROW: (2, 1),
    Opcode.VEC_MUT_BORROW: (2, 1),
    Opcode.VEC_PUSH_BACK: (2, 0),
    Opcode.VEC_POP_BACK: (1, 1),
    Opcode.VEC_SWAP: (3, 0),
    Opcode.VARIANT_SWITCH: (1, 0),
}


@dataclass(slots=True, frozen=True)
class Instruction:
    """A decoded instruction.

    ``operand`` holds the immediate (branch target, local index, constant,
    element count) when the opcode has one. ``count`` carries the field count
    the VM reports for pack/unpack style instructions.
    """

    opcode: Opcode
    operand: Any = None
    count: int | None = None

    @property
    def name(self) -> str:
        return self.opcode.name

    def __str__(self) -> str:
        if self.operand is None:
            return self.opcode.name
        return f"{self.opcode.name}({self.operand})"


# Instructions that leave the top shadow slot in place: a read through a
# reference yields the value the reference was borrowed from.
VALUE_PRESERVING_OPS: frozenset[Opcode] = frozenset({Opcode.READ_REF, Opcode.FREEZE_REF})
