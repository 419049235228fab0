"""Concrete VM values and the numeric properties oracles derive from them."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import TraceError

__all__ = [
    "PRIMITIVE_WIDTHS",
    "ConcreteValue",
    "value_bitwidth",
    "value_sig_bits",
    "value_to_int",
]

PRIMITIVE_WIDTHS: dict[str, int] = {
    "bool": 1,
    "u8": 8,
    "u16": 16,
    "u32": 32,
    "u64": 64,
    "u128": 128,
    "u256": 256,
}


@dataclass(slots=True, frozen=True)
class ConcreteValue:
    """A value on the VM operand stack, tagged with its Move type name.

    References are represented by the value they point to, with ``is_ref`` set.
    """

    type_name: str
    value: Any = None
    is_ref: bool = False

    @property
    def is_primitive(self) -> bool:
        return self.type_name in PRIMITIVE_WIDTHS

    @classmethod
    def u8(cls, value: int) -> ConcreteValue:
        return cls("u8", value)

    @classmethod
    def u16(cls, value: int) -> ConcreteValue:
        return cls("u16", value)

    @classmethod
    def u32(cls, value: int) -> ConcreteValue:
        return cls("u32", value)

    @classmethod
    def u64(cls, value: int) -> ConcreteValue:
        return cls("u64", value)

    @classmethod
    def u128(cls, value: int) -> ConcreteValue:
        return cls("u128", value)

    @classmethod
    def u256(cls, value: int) -> ConcreteValue:
        return cls("u256", value)

    @classmethod
    def boolean(cls, value: bool) -> ConcreteValue:
        return cls("bool", bool(value))

    def __str__(self) -> str:
        prefix = "&" if self.is_ref else ""
        return f"{prefix}{self.type_name.upper()}({self.value})"


def _require_primitive(value: ConcreteValue) -> None:
    if not value.is_primitive:
        raise TraceError(f"Expected an integer or bool operand, got {value.type_name}")


def value_bitwidth(value: ConcreteValue) -> int:
    """Declared bit width of *value*'s type (1 for bool)."""
    _require_primitive(value)
    return PRIMITIVE_WIDTHS[value.type_name]


def value_to_int(value: ConcreteValue) -> int:
    """Numeric magnitude of *value* as an unbounded int (bool is 0/1)."""
    _require_primitive(value)
    if value.type_name == "bool":
        return 1 if value.value else 0
    magnitude = int(value.value)
    if magnitude < 0 or magnitude >= 1 << PRIMITIVE_WIDTHS[value.type_name]:
        raise TraceError(f"Value {magnitude} does not fit in {value.type_name}")
    return magnitude


def value_sig_bits(value: ConcreteValue) -> int:
    """Number of significant bits in the concrete value (0 for zero)."""
    return value_to_int(value).bit_length()
