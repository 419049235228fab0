"""Report generator - JSON and Markdown output."""
from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from ..oracles.base import SEVERITY_RANK, OracleFinding, Severity

__all__ = ["ReportGenerator"]


class ReportGenerator:
    _SEVERITY_WEIGHTS: dict[Severity, int] = {
        Severity.CRITICAL: 100,
        Severity.MAJOR: 40,
        Severity.MEDIUM: 10,
        Severity.MINOR: 3,
    }

    def __init__(self, target: str = "unknown") -> None:
        self.target = target

    @staticmethod
    def _sorted_findings(findings: Sequence[OracleFinding]) -> list[OracleFinding]:
        # Stable: equal severities keep the order the engine reported them in.
        return sorted(findings, key=lambda finding: SEVERITY_RANK.get(finding.severity, 99))

    @classmethod
    def _severity_weight(cls, severity: Severity) -> int:
        return cls._SEVERITY_WEIGHTS.get(severity, 0)

    def _risk_profile(self, findings: list[OracleFinding]) -> dict[str, Any]:
        if not findings:
            return {"overall_max_severity": None, "oracle_max_severity": {}, "weighted_score": 0}

        overall = min((f.severity for f in findings), key=lambda s: SEVERITY_RANK[s])
        oracle_max: dict[str, Severity] = {}
        for f in findings:
            current = oracle_max.get(f.oracle)
            if current is None or SEVERITY_RANK[f.severity] < SEVERITY_RANK[current]:
                oracle_max[f.oracle] = f.severity
        return {
            "overall_max_severity": overall.value,
            "oracle_max_severity": {name: sev.value for name, sev in sorted(oracle_max.items())},
            "weighted_score": sum(self._severity_weight(f.severity) for f in findings),
        }

    def to_dict(self, findings: Sequence[OracleFinding], error: Exception | None = None) -> dict[str, Any]:
        """Serialize findings into a structured report dictionary."""
        sorted_findings = self._sorted_findings(findings)
        by_sev = {s.value: 0 for s in Severity}
        for f in sorted_findings:
            by_sev[f.severity.value] += 1
        return {
            "target": self.target,
            "timestamp": datetime.now(UTC).isoformat(),
            "summary": by_sev,
            "risk_profile": self._risk_profile(sorted_findings),
            "total": len(sorted_findings),
            "error": None if error is None else str(error),
            "findings": [f.to_dict() for f in sorted_findings],
        }

    def to_json(self, findings: Sequence[OracleFinding], error: Exception | None = None) -> str:
        """Return the report as a pretty-printed JSON string."""
        return json.dumps(self.to_dict(findings, error), indent=2, default=str)

    @staticmethod
    def _markdown_table(headers: list[str], rows: list[list[str]]) -> list[str]:
        sep = "|".join("-" * max(len(h), 3) for h in headers)
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + sep + "|",
        ]
        for row in rows:
            lines.append("| " + " | ".join(row) + " |")
        return lines

    def to_markdown(self, findings: Sequence[OracleFinding], error: Exception | None = None) -> str:
        """Render the report as a Markdown document."""
        d = self.to_dict(findings, error)
        lines = [
            f"# Oracle Report: {self.target}",
            f"\nGenerated: {d['timestamp']}\n",
            "## Summary\n",
        ]
        lines.extend(self._markdown_table(
            ["Severity", "Count"],
            [[sev.value.capitalize(), str(d["summary"][sev.value])] for sev in Severity],
        ))
        lines.append(f"\n**Total findings: {d['total']}**\n")
        if d["error"]:
            lines.append(f"**Analysis stopped early:** {d['error']}\n")
        risk = d["risk_profile"]
        if risk["oracle_max_severity"]:
            lines.append("## Risk Profile\n")
            lines.append(f"- **Overall Max Severity:** {risk['overall_max_severity'].capitalize()}")
            lines.append(f"- **Weighted Score:** {risk['weighted_score']}")
            lines.append("")
            lines.extend(self._markdown_table(
                ["Oracle", "Max Severity"],
                [[name, sev.capitalize()] for name, sev in risk["oracle_max_severity"].items()],
            ))
            lines.append("")
        lines.append("## Findings\n")
        for i, f in enumerate(d["findings"], 1):
            extra = f["extra"]
            lines.append(f"### {i}. {extra.get('message') or f['oracle']}")
            lines.append(f"\n- **Severity:** {f['severity'].capitalize()}")
            lines.append(f"- **Oracle:** {f['oracle']}")
            if extra.get("function"):
                lines.append(f"- **Function:** `{extra['function']}`")
            if extra.get("pc") is not None:
                lines.append(f"- **PC:** {extra['pc']}")
            details = {k: v for k, v in extra.items() if k not in {"oracle", "message", "function", "pc"}}
            for key, value in details.items():
                lines.append(f"- **{key}:** `{value}`")
            lines.append("")
        return "\n".join(lines)
