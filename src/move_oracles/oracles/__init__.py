"""Trace oracles module."""

from __future__ import annotations

from collections.abc import Iterable

from .base import (
    SEVERITY_RANK,
    BaseOracle,
    DisableableOracle,
    HarnessState,
    OracleError,
    OracleFinding,
    Severity,
)
from .bool_judgement import BoolJudgementOracle
from .infinite_loop import InfiniteLoopOracle
from .overflow import OverflowOracle
from .precision_loss import PrecisionLossOracle
from .type_conversion import TypeConversionOracle
from .typed_bug import TypedBugMode, TypedBugOracle

ALL_ORACLES: dict[str, type[BaseOracle]] = {
    "bool_judgement": BoolJudgementOracle,
    "infinite_loop": InfiniteLoopOracle,
    "precision_loss": PrecisionLossOracle,
    "type_conversion": TypeConversionOracle,
    "overflow": OverflowOracle,
    "typed_bug": TypedBugOracle,
}


def build_oracles(
    names: Iterable[str] | None = None,
    *,
    typed_bug_mode: TypedBugMode | str = TypedBugMode.EVENT,
    typed_bug_abort_code: int = TypedBugOracle.DEFAULT_ABORT_CODE,
    disable_defects: bool = False,
) -> list[BaseOracle]:
    """Instantiate fresh oracles in registry order.

    ``names`` restricts the set; unknown names raise ``ValueError``. With
    ``disable_defects`` every oracle stays registered but reports nothing.
    """
    selected = list(ALL_ORACLES) if names is None else list(dict.fromkeys(names))
    unknown = [name for name in selected if name not in ALL_ORACLES]
    if unknown:
        raise ValueError(f"Unknown oracle(s): {', '.join(unknown)}")

    oracles: list[BaseOracle] = []
    for name in ALL_ORACLES:
        if name not in selected:
            continue
        if name == "typed_bug":
            oracle: BaseOracle = TypedBugOracle(mode=typed_bug_mode, abort_code=typed_bug_abort_code)
        else:
            oracle = ALL_ORACLES[name]()
        oracles.append(DisableableOracle(oracle, disabled=disable_defects))
    return oracles


__all__ = [
    "ALL_ORACLES",
    "SEVERITY_RANK",
    "BaseOracle",
    "BoolJudgementOracle",
    "DisableableOracle",
    "HarnessState",
    "InfiniteLoopOracle",
    "OracleError",
    "OracleFinding",
    "OverflowOracle",
    "PrecisionLossOracle",
    "Severity",
    "TypeConversionOracle",
    "TypedBugMode",
    "TypedBugOracle",
    "build_oracles",
]
