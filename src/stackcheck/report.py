"""
Verification outcomes and report rendering.

A run produces one :class:`CheckOutcome` per executed check. The
:class:`VerificationReport` aggregates them, decides the process exit code
(mandatory checks only) and renders text, markdown or JSON. The JSON form,
keyed by check name, is the artifact automation should consume.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from stackcheck.errors import FailureKind

# Process exit codes
EXIT_OK = 0
EXIT_CHECKS_FAILED = 1
EXIT_AUTH_FAILED = 2
EXIT_CONFIG_ERROR = 3


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class CheckOutcome(BaseModel):
    """Result of one check."""

    name: str
    group: str
    status: CheckStatus
    detail: str = ""
    optional: bool = False
    failure_kind: Optional[FailureKind] = None
    duration_ms: int = 0

    @property
    def blocking(self) -> bool:
        """True when this outcome fails the run."""
        return self.status is CheckStatus.FAIL and not self.optional


class VerificationReport(BaseModel):
    gateway_url: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    outcomes: List[CheckOutcome] = Field(default_factory=list)

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASS)

    @property
    def failed(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def skipped(self) -> int:
        return self._count(CheckStatus.SKIP)

    @property
    def mandatory_failures(self) -> List[CheckOutcome]:
        return [o for o in self.outcomes if o.blocking]

    @property
    def ok(self) -> bool:
        """All mandatory checks passed."""
        return not self.mandatory_failures

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.ok else EXIT_CHECKS_FAILED

    def by_name(self) -> dict[str, CheckOutcome]:
        return {o.name: o for o in self.outcomes}


_ICONS = {CheckStatus.PASS: "✓", CheckStatus.FAIL: "✗", CheckStatus.SKIP: "⚠"}


def render_text_report(report: VerificationReport) -> str:
    """Render a report as human-readable text."""
    lines: List[str] = []

    lines.append(f"Verification Report: {report.gateway_url}")
    lines.append(f"Started: {report.started_at.isoformat()[:19]}")
    lines.append("=" * 60)

    current_group = None
    for o in report.outcomes:
        if o.group != current_group:
            current_group = o.group
            lines.append("")
            lines.append(f"{current_group}:")
        suffix = " (optional)" if o.optional else ""
        line = f"  {_ICONS[o.status]} {o.name}{suffix}"
        if o.detail:
            line += f": {o.detail}"
        lines.append(line)

    lines.append("")
    lines.append(f"Passed: {report.passed}  Failed: {report.failed}  Skipped: {report.skipped}")
    lines.append("Result: " + ("OK" if report.ok else f"FAILED ({len(report.mandatory_failures)} mandatory)"))
    return "\n".join(lines)


def render_markdown_report(report: VerificationReport) -> str:
    """Render a report as Markdown."""
    lines: List[str] = []

    status_icon = "✓" if report.ok else "✗"
    lines.append(f"# Verification Report: {status_icon} {report.gateway_url}")
    lines.append("")
    lines.append(
        f"**Passed**: {report.passed} | **Failed**: {report.failed} | "
        f"**Skipped**: {report.skipped}"
    )
    lines.append("")
    lines.append("| Check | Group | Status | Detail |")
    lines.append("| ----- | ----- | ------ | ------ |")
    for o in report.outcomes:
        name = f"{o.name} (optional)" if o.optional else o.name
        detail = o.detail.replace("|", "\\|")
        lines.append(f"| {name} | {o.group} | {_ICONS[o.status]} {o.status.value} | {detail} |")

    if report.mandatory_failures:
        lines.append("")
        lines.append("## Mandatory Failures")
        lines.append("")
        for o in report.mandatory_failures:
            kind = f" [{o.failure_kind.value}]" if o.failure_kind else ""
            lines.append(f"- **{o.name}**{kind}: {o.detail}")

    lines.append("")
    lines.append("---")
    lines.append(f"*Generated by stackcheck at {report.started_at.isoformat()[:19]}*")
    return "\n".join(lines)


def report_to_dict(report: VerificationReport) -> dict:
    return {
        "gateway": report.gateway_url,
        "started_at": report.started_at.isoformat(),
        "finished_at": report.finished_at.isoformat() if report.finished_at else None,
        "ok": report.ok,
        "summary": {
            "passed": report.passed,
            "failed": report.failed,
            "skipped": report.skipped,
            "mandatory_failed": len(report.mandatory_failures),
        },
        "checks": {
            o.name: {
                "group": o.group,
                "status": o.status.value,
                "optional": o.optional,
                "detail": o.detail,
                "failure_kind": o.failure_kind.value if o.failure_kind else None,
                "duration_ms": o.duration_ms,
            }
            for o in report.outcomes
        },
    }


def render_aborted_report(gateway_url: str, reason: str, output_format: str = "json") -> str:
    """Render a report for a run that stopped before any check ran."""
    if output_format == "json":
        now = datetime.now(timezone.utc).isoformat()
        return json.dumps(
            {
                "gateway": gateway_url,
                "started_at": now,
                "finished_at": now,
                "ok": False,
                "aborted": reason,
                "summary": {"passed": 0, "failed": 0, "skipped": 0, "mandatory_failed": 0},
                "checks": {},
            },
            indent=2,
        )
    if output_format == "markdown":
        return f"# Verification Report: ✗ {gateway_url}\n\n**Aborted**: {reason}"
    return f"Verification Report: {gateway_url}\nResult: ABORTED ({reason})"


def render_json_report(report: VerificationReport) -> str:
    """Render a report as JSON keyed by check name."""
    return json.dumps(report_to_dict(report), indent=2)


RENDERERS = {
    "text": render_text_report,
    "markdown": render_markdown_report,
    "json": render_json_report,
}
