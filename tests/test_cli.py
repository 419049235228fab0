"""CLI behavior tests."""
from __future__ import annotations

import json

from click.testing import CliRunner

from move_oracles import __version__
from move_oracles.cli import main


def _trace(param_type: str = "u64", cast: str = "CastU64", extra_events=(), effects=None) -> dict:
    value = {"type": param_type, "value": 7}
    return {
        "events": [
            {"kind": "external", "name": "MoveCallStart"},
            {
                "kind": "open_frame",
                "frame_id": 0,
                "function": "0x2::vault::deposit",
                "parameters": [value],
                "local_types": [param_type],
                "stack": [],
            },
            {"kind": "instruction", "pc": 0, "opcode": "CopyLoc", "operand": 0, "stack": []},
            {"kind": "instruction", "pc": 1, "opcode": cast, "stack": [value]},
            {"kind": "instruction", "pc": 2, "opcode": "Pop", "stack": [{"type": "u64", "value": 7}]},
            *extra_events,
            {"kind": "instruction", "pc": 3, "opcode": "Ret", "stack": []},
            {"kind": "close_frame", "frame_id": 0},
        ],
        "effects": effects or {"status": {"success": True}, "events": []},
        "allowed_success": True,
    }


def _write(tmp_path, doc) -> str:
    path = tmp_path / "deposit.json"
    path.write_text(doc if isinstance(doc, str) else json.dumps(doc))
    return str(path)


def test_cli_reports_package_version():
    result = CliRunner().invoke(main, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_clean_trace_exits_zero(tmp_path):
    trace = _write(tmp_path, _trace(param_type="u32"))
    result = CliRunner().invoke(main, ["replay", trace])

    assert result.exit_code == 0
    assert "Total: 0 findings" in result.output


def test_findings_exit_with_code_three(tmp_path):
    trace = _write(tmp_path, _trace())
    result = CliRunner().invoke(main, ["replay", trace])

    assert result.exit_code == 3
    assert "Total: 1 findings" in result.output


def test_json_output_lists_findings(tmp_path):
    trace = _write(tmp_path, _trace())
    result = CliRunner().invoke(main, ["replay", trace, "--format", "json"])

    assert result.exit_code == 3
    report = json.loads(result.output)
    assert report["total"] == 1
    finding = report["findings"][0]
    assert finding["oracle"] == "type_conversion"
    assert finding["extra"]["function"] == "vault::deposit"
    assert finding["extra"]["pc"] == 1


def test_oracle_selection_filters_findings(tmp_path):
    trace = _write(tmp_path, _trace())
    result = CliRunner().invoke(main, ["replay", trace, "--oracles", "overflow,infinite_loop"])

    assert result.exit_code == 0


def test_typed_bug_abort_mode(tmp_path):
    effects = {"status": {"success": False, "abort_code": 99}, "events": []}
    trace = _write(tmp_path, _trace(param_type="u32", effects=effects))
    runner = CliRunner()

    default_code = runner.invoke(main, ["replay", trace, "--typed-bug-mode", "abort"])
    custom_code = runner.invoke(main, ["replay", trace, "--typed-bug-mode", "abort", "--abort-code", "99"])

    assert default_code.exit_code == 0
    assert custom_code.exit_code == 3


def test_markdown_report_written_to_file(tmp_path):
    trace = _write(tmp_path, _trace())
    out = tmp_path / "report.md"
    result = CliRunner().invoke(main, ["replay", trace, "--format", "markdown", "--output", str(out)])

    assert result.exit_code == 3
    assert "Report saved" in result.output
    text = out.read_text()
    assert "# Oracle Report: deposit" in text
    assert "type_conversion" in text


def test_malformed_trace_exits_one(tmp_path):
    trace = _write(tmp_path, "{not json")
    result = CliRunner().invoke(main, ["replay", trace])

    assert result.exit_code == 1
    assert "Failed to parse trace" in result.output


def test_desynchronised_trace_exits_one(tmp_path):
    pop_without_push = {"kind": "instruction", "pc": 9, "opcode": "Pop", "stack": [{"type": "u8", "value": 1}]}
    doc = _trace(param_type="u32")
    doc["events"].insert(3, pop_without_push)
    trace = _write(tmp_path, doc)
    result = CliRunner().invoke(main, ["replay", trace])

    assert result.exit_code == 1
    assert "Analysis stopped" in result.output


def test_unknown_oracle_exits_two(tmp_path):
    trace = _write(tmp_path, _trace())
    result = CliRunner().invoke(main, ["replay", trace, "--oracles", "reentrancy"])

    assert result.exit_code == 2
    assert "Unknown oracle" in result.output


def test_oracles_command_lists_registry():
    result = CliRunner().invoke(main, ["oracles"])

    assert result.exit_code == 0
    assert "infinite_loop" in result.output
    assert "typed_bug" in result.output
