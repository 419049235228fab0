"""Symbolic counterparts of operand-stack slots.

Formulas live in z3's integer theory. Fixed-width semantics are encoded with
``mod``/``div`` by powers of two rather than bit-vectors so that arithmetic on
mixed-width operands composes without sort conversions.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import z3

from ..trace.values import ConcreteValue, value_to_int

__all__ = [
    "UNKNOWN",
    "SymbolValue",
    "int_bvand_const",
    "int_bvnot",
    "int_bvor_const",
    "int_bvxor_const",
    "int_mod_2n",
    "int_two_pow",
    "is_division",
    "is_variable",
    "max_u_bits",
    "resolve_value",
    "search_formula",
]


@dataclass(slots=True, frozen=True)
class SymbolValue:
    """Either ``UNKNOWN`` (``formula is None``) or a z3 integer formula."""

    formula: Any = None

    @classmethod
    def of(cls, formula: Any) -> SymbolValue:
        return cls(formula=formula)

    @property
    def is_unknown(self) -> bool:
        return self.formula is None

    def __str__(self) -> str:
        return "Unknown" if self.formula is None else f"Value({self.formula})"


UNKNOWN = SymbolValue()


def int_two_pow(bits: int) -> z3.ArithRef:
    return z3.IntVal(1 << bits)


def max_u_bits(bits: int) -> z3.ArithRef:
    return z3.IntVal((1 << bits) - 1)


def int_mod_2n(x: z3.ArithRef, bits: int) -> z3.ArithRef:
    return x % int_two_pow(bits)


def resolve_value(value: ConcreteValue) -> z3.ArithRef:
    """Lift a concrete primitive into a numeral."""
    return z3.IntVal(value_to_int(value))


def int_bvand_const(x: z3.ArithRef, mask: int, bits: int) -> z3.ArithRef:
    """``x & mask`` under *bits*-wide semantics using only integer div/mod.

    The mask is split into runs of ones; each run ``[a, b]`` contributes
    ``((x mod 2^(b+1)) div 2^a) mod 2^(b-a+1) * 2^a``.
    """
    mask &= (1 << bits) - 1
    if mask == 0:
        return z3.IntVal(0)
    x0 = int_mod_2n(x, bits)

    terms: list[z3.ArithRef] = []
    position = 0
    while mask:
        while mask and not mask & 1:
            mask >>= 1
            position += 1
        start = position
        while mask & 1:
            mask >>= 1
            position += 1
        end = position - 1
        run = end - start + 1
        terms.append(
            (x0 % int_two_pow(end + 1) / int_two_pow(start)) % int_two_pow(run) * int_two_pow(start)
        )
    return z3.Sum(terms) if len(terms) > 1 else terms[0]


def int_bvor_const(x: z3.ArithRef, mask: int, bits: int) -> z3.ArithRef:
    """``x | mask``: clear the mask bits of x, then add the mask."""
    full = (1 << bits) - 1
    mask_w = mask & full
    kept = int_bvand_const(x, full ^ mask_w, bits)
    return kept + z3.IntVal(mask_w)


def int_bvnot(x: z3.ArithRef, bits: int) -> z3.ArithRef:
    """``~x`` within *bits*: ``(2^bits - 1) - (x mod 2^bits)``."""
    return max_u_bits(bits) - int_mod_2n(x, bits)


def int_bvxor_const(x: z3.ArithRef, mask: int, bits: int) -> z3.ArithRef:
    """``x ^ mask`` as ``(x & ~mask) + (~x & mask)``; the two parts are bit-disjoint."""
    full = (1 << bits) - 1
    mask_w = mask & full
    keep = int_bvand_const(x, full ^ mask_w, bits)
    flip = int_bvand_const(int_bvnot(x, bits), mask_w, bits)
    return int_mod_2n(keep + flip, bits)


def _children(node: Any) -> tuple[Any, ...]:
    children = getattr(node, "children", None)
    if not callable(children):
        return ()
    return tuple(children())


def search_formula(formula: Any, predicate: Callable[[Any], bool], limit: int) -> bool | None:
    """Depth-first search of *formula*'s sub-terms for a node matching *predicate*.

    Returns True on a match, False once the graph is exhausted, and None when
    *limit* nodes were visited without a verdict. Uses an explicit work list so
    deep formulas cannot exhaust the Python stack; shared sub-terms are visited
    once per occurrence, so the limit is the only termination guarantee for
    cyclic or very wide graphs.
    """
    work: list[Any] = [formula]
    visited = 0
    while work:
        node = work.pop()
        visited += 1
        if visited > limit:
            return None
        if predicate(node):
            return True
        work.extend(_children(node))
    return False


def is_division(node: Any) -> bool:
    return z3.is_app(node) and node.decl().kind() in (z3.Z3_OP_DIV, z3.Z3_OP_IDIV)


def is_variable(node: Any) -> bool:
    return z3.is_const(node) and node.decl().kind() == z3.Z3_OP_UNINTERPRETED
