"""Tests for verification outcomes, exit codes and renderers."""

from __future__ import annotations

import json

import pytest

from stackcheck.errors import FailureKind
from stackcheck.report import (
    EXIT_CHECKS_FAILED,
    EXIT_OK,
    RENDERERS,
    CheckOutcome,
    CheckStatus,
    VerificationReport,
    render_aborted_report,
    render_json_report,
    render_markdown_report,
    render_text_report,
)


def _report(*outcomes: CheckOutcome) -> VerificationReport:
    return VerificationReport(gateway_url="http://grafana.test", outcomes=list(outcomes))


def _outcome(name, status, optional=False, **kw) -> CheckOutcome:
    return CheckOutcome(name=name, group="metrics", status=status, optional=optional, **kw)


class TestExitCode:
    def test_all_pass(self):
        report = _report(_outcome("a", CheckStatus.PASS), _outcome("b", CheckStatus.SKIP, optional=True))
        assert report.ok
        assert report.exit_code == EXIT_OK

    def test_optional_failure_does_not_block(self):
        report = _report(_outcome("a", CheckStatus.PASS), _outcome("cpu", CheckStatus.FAIL, optional=True))
        assert report.failed == 1
        assert report.mandatory_failures == []
        assert report.exit_code == EXIT_OK

    def test_mandatory_failure_blocks(self):
        report = _report(_outcome("a", CheckStatus.FAIL), _outcome("b", CheckStatus.PASS))
        assert not report.ok
        assert report.exit_code == EXIT_CHECKS_FAILED
        assert [o.name for o in report.mandatory_failures] == ["a"]


def test_counts_and_lookup():
    report = _report(
        _outcome("a", CheckStatus.PASS),
        _outcome("b", CheckStatus.FAIL),
        _outcome("c", CheckStatus.SKIP, optional=True),
    )
    assert (report.passed, report.failed, report.skipped) == (1, 1, 1)
    assert report.by_name()["c"].status is CheckStatus.SKIP


def test_json_keyed_by_check_name():
    report = _report(
        _outcome("Query: Pod Count", CheckStatus.PASS, detail="1 results", duration_ms=12),
        _outcome("Loki health", CheckStatus.FAIL, detail="HTTP 502: bad gateway",
                 failure_kind=FailureKind.SERVER_ERROR),
    )
    data = json.loads(render_json_report(report))

    assert data["gateway"] == "http://grafana.test"
    assert data["ok"] is False
    assert data["summary"] == {"passed": 1, "failed": 1, "skipped": 0, "mandatory_failed": 1}
    assert data["checks"]["Query: Pod Count"]["duration_ms"] == 12
    assert data["checks"]["Loki health"]["failure_kind"] == "server_error"
    assert data["checks"]["Loki health"]["status"] == "fail"


def test_text_groups_and_marks_optional():
    report = _report(
        CheckOutcome(name="Platform health", group="availability", status=CheckStatus.PASS, detail="version 10"),
        CheckOutcome(name="Cluster: Total Memory", group="cluster", status=CheckStatus.SKIP, optional=True),
    )
    text = render_text_report(report)
    assert "availability:" in text
    assert "✓ Platform health: version 10" in text
    assert "⚠ Cluster: Total Memory (optional)" in text
    assert "Result: OK" in text


def test_markdown_lists_mandatory_failures():
    report = _report(
        _outcome("Bad | name", CheckStatus.FAIL, detail="a|b", failure_kind=FailureKind.CLIENT_ERROR),
    )
    md = render_markdown_report(report)
    assert "## Mandatory Failures" in md
    assert "[client_error]" in md
    assert "a\\|b" in md


@pytest.mark.parametrize("fmt", ["text", "markdown", "json"])
def test_all_renderers_registered(fmt):
    assert RENDERERS[fmt](_report(_outcome("a", CheckStatus.PASS)))


class TestAbortedReport:
    def test_json(self):
        data = json.loads(render_aborted_report("http://grafana.test", "authentication failed: HTTP 401: bad"))
        assert data["ok"] is False
        assert data["aborted"] == "authentication failed: HTTP 401: bad"
        assert data["summary"]["passed"] == 0
        assert data["checks"] == {}

    def test_markdown_and_text(self):
        markdown = render_aborted_report("http://grafana.test", "authentication failed", "markdown")
        assert markdown.startswith("# Verification Report: ✗")
        assert "**Aborted**: authentication failed" in markdown
        text = render_aborted_report("http://grafana.test", "authentication failed", "text")
        assert "ABORTED (authentication failed)" in text
