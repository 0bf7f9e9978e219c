"""
OTel span events for verification runs.

Check outcomes and the run summary are recorded as events on the current
span, so a run launched from an instrumented CI job shows up in its trace.
Without a configured TracerProvider the current span does not record and
these calls do nothing.

Usage::

    from stackcheck.otel import emit_check_outcome

    emit_check_outcome(outcome)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from opentelemetry import trace as otel_trace

if TYPE_CHECKING:
    from stackcheck.report import CheckOutcome, VerificationReport


def add_span_event(
    name: str, attributes: dict[str, str | int | float | bool]
) -> None:
    """Add an event to the current OTel span if it is recording.

    Args:
        name: Event name (e.g. ``"stackcheck.check.completed"``).
        attributes: Flat dict of span event attributes.
    """
    span = otel_trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name=name, attributes=attributes)


def emit_check_outcome(outcome: "CheckOutcome") -> None:
    attributes: dict[str, str | int | float | bool] = {
        "check.name": outcome.name,
        "check.group": outcome.group,
        "check.status": outcome.status.value,
        "check.optional": outcome.optional,
        "check.duration_ms": outcome.duration_ms,
    }
    if outcome.failure_kind is not None:
        attributes["check.failure_kind"] = outcome.failure_kind.value
    add_span_event("stackcheck.check.completed", attributes)


def emit_run_summary(report: "VerificationReport") -> None:
    add_span_event(
        "stackcheck.run.completed",
        {
            "run.gateway": report.gateway_url,
            "run.passed": report.passed,
            "run.failed": report.failed,
            "run.skipped": report.skipped,
            "run.ok": report.ok,
        },
    )
