"""Recorded trace documents for offline replay.

A trace file is a JSON object::

    {
      "events": [
        {"kind": "external", "name": "MoveCallStart"},
        {"kind": "open_frame", "frame_id": 0, "function": "0x2::pool::swap",
         "parameters": [{"type": "u64", "value": 7}], "local_types": ["u64"],
         "return_count": 1, "stack": []},
        {"kind": "instruction", "pc": 0, "opcode": "CopyLoc", "operand": 0, "stack": []},
        {"kind": "close_frame", "frame_id": 0, "return_values": [...], "stack": [...]},
        {"kind": "effect", "effect": "execution_error"}
      ],
      "effects": {"status": {"success": false, "abort_code": 1337},
                  "events": [{"module": "oracle", "name": "Crash", "payload": {}}]},
      "allowed_success": null
    }

``stack`` is the concrete operand stack of the innermost frame when the event
fires, bottom first.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import TraceError
from .events import (
    CloseFrame,
    EffectEvent,
    EmittedEvent,
    ExecutionEffects,
    ExecutionStatus,
    ExternalEvent,
    Frame,
    FunctionIdent,
    InstructionEvent,
    OpenFrame,
    TraceEvent,
    TraceState,
)
from .opcodes import Instruction, Opcode
from .values import PRIMITIVE_WIDTHS, ConcreteValue

__all__ = ["RecordedTrace", "TraceStep", "load_trace", "load_trace_file", "parse_function", "parse_opcode", "parse_value"]

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@dataclass(slots=True, frozen=True)
class TraceStep:
    event: TraceEvent
    trace_state: TraceState


@dataclass(slots=True, frozen=True)
class RecordedTrace:
    steps: tuple[TraceStep, ...] = ()
    effects: ExecutionEffects | None = None
    allowed_success: bool | None = None


def parse_opcode(raw: Any) -> Opcode:
    """Accept ``"CopyLoc"``, ``"COPY_LOC"`` or the numeric opcode."""
    if isinstance(raw, int) and not isinstance(raw, bool):
        try:
            return Opcode(raw)
        except ValueError as exc:
            raise TraceError(f"Unknown opcode 0x{raw:02x}") from exc
    if not isinstance(raw, str) or not raw:
        raise TraceError(f"Invalid opcode: {raw!r}")
    name = raw if "_" in raw or raw.isupper() else _CAMEL_BOUNDARY.sub("_", raw)
    try:
        return Opcode[name.upper()]
    except KeyError as exc:
        raise TraceError(f"Unknown opcode: {raw}") from exc


def parse_function(raw: Any) -> FunctionIdent:
    if not isinstance(raw, str):
        raise TraceError(f"Function must be a string, got {raw!r}")
    parts = raw.split("::")
    if len(parts) == 2:
        return FunctionIdent(module=parts[0], name=parts[1])
    if len(parts) == 3:
        return FunctionIdent(package=parts[0], module=parts[1], name=parts[2])
    raise TraceError(f"Function must be module::name or package::module::name, got {raw!r}")


def parse_value(raw: Any) -> ConcreteValue:
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise TraceError(f"Value must be an object with a type, got {raw!r}")
    type_name = raw["type"].strip()
    is_ref = bool(raw.get("ref", False))
    if type_name.startswith("&"):
        is_ref = True
        type_name = type_name.removeprefix("&").removeprefix("mut ").strip()
    value = raw.get("value")
    if type_name == "bool":
        if not isinstance(value, bool):
            raise TraceError(f"bool value expected, got {value!r}")
    elif type_name in PRIMITIVE_WIDTHS:
        try:
            value = int(value, 0) if isinstance(value, str) else int(value)
        except (TypeError, ValueError) as exc:
            raise TraceError(f"Invalid {type_name} value: {value!r}") from exc
    return ConcreteValue(type_name=type_name, value=value, is_ref=is_ref)


def _values(items: Any, what: str) -> tuple[ConcreteValue, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise TraceError(f"{what} must be a list")
    return tuple(parse_value(item) for item in items)


def _int(raw: dict[str, Any], key: str, default: int | None = None) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TraceError(f"Field {key!r} must be an integer, got {value!r}")
    return value


def _parse_event(raw: dict[str, Any]) -> TraceEvent:
    kind = raw.get("kind")
    if kind == "open_frame":
        local_types = raw.get("local_types", [])
        if not isinstance(local_types, list):
            raise TraceError("local_types must be a list")
        return OpenFrame(
            Frame(
                frame_id=_int(raw, "frame_id", 0),
                function=parse_function(raw.get("function")),
                parameters=_values(raw.get("parameters"), "parameters"),
                local_types=tuple(str(t) for t in local_types),
                return_count=_int(raw, "return_count", 0),
                is_native=bool(raw.get("is_native", False)),
            )
        )
    if kind == "instruction":
        count = raw.get("count")
        if count is not None and (isinstance(count, bool) or not isinstance(count, int)):
            raise TraceError(f"Field 'count' must be an integer, got {count!r}")
        instruction = Instruction(opcode=parse_opcode(raw.get("opcode")), operand=raw.get("operand"), count=count)
        return InstructionEvent(pc=_int(raw, "pc"), instruction=instruction)
    if kind == "close_frame":
        return CloseFrame(
            frame_id=_int(raw, "frame_id", 0),
            return_values=_values(raw.get("return_values"), "return_values"),
        )
    if kind == "effect":
        value = raw.get("value")
        return EffectEvent(kind=str(raw.get("effect", "")), value=None if value is None else parse_value(value))
    if kind == "external":
        name = raw.get("name")
        if not isinstance(name, str):
            raise TraceError("External event needs a name")
        return ExternalEvent(name=name, payload=raw.get("payload"))
    raise TraceError(f"Unknown event kind: {kind!r}")


def _parse_trace_state(raw: dict[str, Any]) -> TraceState:
    locals_raw = raw.get("locals", {})
    if not isinstance(locals_raw, dict):
        raise TraceError("locals must be an object keyed by index")
    locals_: dict[int, ConcreteValue] = {}
    for index, value in locals_raw.items():
        try:
            slot = int(index)
        except ValueError as exc:
            raise TraceError(f"Invalid local index: {index!r}") from exc
        locals_[slot] = parse_value(value)
    return TraceState(operand_stack=list(_values(raw.get("stack"), "stack")), locals=locals_)


def _parse_effects(raw: Any) -> ExecutionEffects | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise TraceError("effects must be an object")
    status_raw = raw.get("status", {})
    if not isinstance(status_raw, dict):
        raise TraceError("effects.status must be an object")
    abort_code = status_raw.get("abort_code")
    status = ExecutionStatus(
        success=bool(status_raw.get("success", True)),
        abort_code=None if abort_code is None else _int(status_raw, "abort_code"),
        command=status_raw.get("command"),
        message=status_raw.get("message"),
    )
    emitted: list[EmittedEvent] = []
    for item in raw.get("events", []):
        if not isinstance(item, dict):
            raise TraceError("Emitted events must be objects")
        payload = item.get("payload", {})
        emitted.append(
            EmittedEvent(
                module=str(item.get("module", "")),
                name=str(item.get("name", "")),
                package=str(item.get("package", "")),
                payload=payload if isinstance(payload, dict) else {"value": payload},
            )
        )
    return ExecutionEffects(status=status, events=tuple(emitted))


def load_trace(raw_json: str) -> RecordedTrace:
    """Parse a recorded trace JSON document."""
    try:
        payload = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise TraceError(f"Invalid trace JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise TraceError("Trace root must be an object")
    events = payload.get("events", [])
    if not isinstance(events, list):
        raise TraceError("events must be a list")

    steps: list[TraceStep] = []
    for index, raw in enumerate(events):
        if not isinstance(raw, dict):
            raise TraceError(f"Event #{index} must be an object")
        try:
            steps.append(TraceStep(event=_parse_event(raw), trace_state=_parse_trace_state(raw)))
        except TraceError as exc:
            raise TraceError(f"Event #{index}: {exc}") from exc

    allowed_success = payload.get("allowed_success")
    if allowed_success is not None and not isinstance(allowed_success, bool):
        raise TraceError("allowed_success must be a boolean or null")
    logger.debug("Loaded trace with %d events", len(steps))
    return RecordedTrace(
        steps=tuple(steps),
        effects=_parse_effects(payload.get("effects")),
        allowed_success=allowed_success,
    )


def load_trace_file(path: str | Path) -> RecordedTrace:
    return load_trace(Path(path).read_text(encoding="utf-8"))
