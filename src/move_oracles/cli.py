"""CLI entry point for move-oracles."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .engine.dispatch import replay as replay_trace
from .oracles import ALL_ORACLES, build_oracles
from .oracles.base import SEVERITY_RANK, OracleFinding
from .oracles.typed_bug import TypedBugMode, TypedBugOracle
from .report.generator import ReportGenerator
from .trace.errors import TraceError
from .trace.loader import load_trace_file

console = Console()

_SEV_COLORS = {"critical": "red", "major": "bright_red", "medium": "yellow", "minor": "blue"}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _parse_oracle_names(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    names = [name.strip() for name in raw.split(",")]
    return [name for name in names if name]


def _findings_table(findings: list[OracleFinding]) -> Table:
    table = Table(title="Oracle Findings")
    table.add_column("Severity", style="bold")
    table.add_column("Oracle")
    table.add_column("Function")
    table.add_column("PC")
    table.add_column("Message")
    for f in sorted(findings, key=lambda x: SEVERITY_RANK.get(x.severity, 99)):
        pc = f.extra.get("pc")
        table.add_row(
            f"[{_SEV_COLORS[f.severity.value]}]{f.severity.value.upper()}[/]",
            f.oracle,
            str(f.extra.get("function", "-")),
            "-" if pc is None else str(pc),
            f.message,
        )
    return table


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Move bytecode trace oracles: replay VM traces and report suspicious behaviour."""


@main.command()
@click.argument("trace_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--oracles", "-O", "oracle_names", type=str, default=None, help="Comma-separated oracle names")
@click.option(
    "--typed-bug-mode",
    type=click.Choice([mode.value for mode in TypedBugMode], case_sensitive=False),
    default=TypedBugMode.EVENT.value,
    show_default=True,
    help="Signal the typed-bug oracle listens for.",
)
@click.option(
    "--abort-code",
    type=int,
    default=TypedBugOracle.DEFAULT_ABORT_CODE,
    show_default=True,
    help="Sentinel abort code for --typed-bug-mode abort.",
)
@click.option("--format", "fmt", type=click.Choice(["table", "json", "markdown"]), default="table")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the report to this file")
@click.option("--verbose", "-v", is_flag=True, help="Log concolic and dispatch details")
def replay(
    trace_file: str,
    oracle_names: str | None,
    typed_bug_mode: str,
    abort_code: int,
    fmt: str,
    output: str | None,
    verbose: bool,
) -> None:
    """Replay a recorded trace through the oracles.

    Exits with 3 when findings were reported and with 1 when the trace could
    not be analysed.
    """
    _configure_logging(verbose)

    try:
        oracles = build_oracles(
            _parse_oracle_names(oracle_names),
            typed_bug_mode=typed_bug_mode.lower(),
            typed_bug_abort_code=abort_code,
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(2)

    try:
        recorded = load_trace_file(trace_file)
    except TraceError as exc:
        console.print(f"[red]Failed to parse trace: {exc}[/]")
        sys.exit(1)

    outcome = replay_trace(recorded, oracles)
    findings = list(outcome.findings)
    gen = ReportGenerator(Path(trace_file).stem)

    if fmt == "json":
        report = gen.to_json(findings, outcome.pending_error)
    elif fmt == "markdown" or output:
        report = gen.to_markdown(findings, outcome.pending_error)
    else:
        report = None

    if fmt == "table":
        console.print(f"[bold blue]move-oracles v{__version__}[/]")
        console.print(f"Replaying: {trace_file} ({len(recorded.steps)} events)\n")
        if findings:
            console.print(_findings_table(findings))
        else:
            console.print("[green]No findings reported by selected oracles.[/]")
        console.print(f"\n[bold]Total: {len(findings)} findings[/]\n")

    if output and report is not None:
        Path(output).write_text(report, encoding="utf-8")
        console.print(f"[green]Report saved to {output}[/]")
    elif report is not None:
        click.echo(report)

    if outcome.crashed:
        console.print(f"[red]Analysis stopped: {outcome.pending_error}[/]")
        sys.exit(1)
    if findings:
        sys.exit(3)


@main.command(name="oracles")
def list_oracles() -> None:
    """List the available oracles in dispatch order."""
    table = Table(title="Oracles")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    for name, oracle_cls in ALL_ORACLES.items():
        table.add_row(name, oracle_cls.description)
    console.print(table)


if __name__ == "__main__":
    main()
