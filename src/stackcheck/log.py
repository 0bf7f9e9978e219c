"""
Structured logging for verification runs.

Outputs one JSON object per run event for Loki ingestion, on stderr so the
report on stdout stays machine-readable.

Logged events:
- run.started
- session.acquired
- run.aborted (authentication failed)
- datasources.discovered
- check.completed
- run.finished

Usage:
    from stackcheck.log import RunLogger

    run_log = RunLogger(gateway_url="http://localhost:3000")
    run_log.log_run_started(check_count=34)
    run_log.log_check_completed(outcome)
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from stackcheck.report import CheckOutcome, VerificationReport

# Configure structured logger for Loki
_run_logger = logging.getLogger("stackcheck.run")
_run_logger.setLevel(logging.INFO)
_run_logger.propagate = False

# Default handler outputs JSON to stderr
if not _run_logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _run_logger.addHandler(_handler)

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """
    Apply the configured level and format.

    Module loggers (``stackcheck.*``) log plain text to stderr. Run events
    stay JSON unless ``fmt`` is ``"text"``.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    package_logger = logging.getLogger("stackcheck")
    package_logger.setLevel(numeric)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
        package_logger.addHandler(handler)

    _run_logger.setLevel(numeric)
    formatter = logging.Formatter(_TEXT_FORMAT if fmt == "text" else "%(message)s")
    for handler in _run_logger.handlers:
        handler.setFormatter(formatter)


class RunLogger:
    """
    Structured logger for verification run events.

    Each entry carries ``run_id`` and ``gateway`` so all events of one run
    can be selected together in Loki.
    """

    def __init__(self, gateway_url: str, run_id: Optional[str] = None, service_name: str = "stackcheck"):
        """
        Initialize run logger.

        Args:
            gateway_url: Gateway under verification
            run_id: Run identifier (generated when omitted)
            service_name: Service name for log attribution
        """
        self.gateway_url = gateway_url
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.service_name = service_name
        self._logger = _run_logger

    def _emit(self, event: str, level: str = "info", **fields: Any) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "run_id": self.run_id,
            "gateway": self.gateway_url,
        }
        entry.update(fields)

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_run_started(self, check_count: int) -> None:
        self._emit("run.started", check_count=check_count)

    def log_session_acquired(self, username: str) -> None:
        self._emit("session.acquired", username=username)

    def log_auth_failed(self, reason: str) -> None:
        self._emit("run.aborted", level="error", reason=reason)

    def log_datasources_discovered(self, names: list[str]) -> None:
        self._emit("datasources.discovered", count=len(names), datasources=names)

    def log_check_completed(self, outcome: "CheckOutcome") -> None:
        level = "warn" if outcome.status.value == "fail" else "info"
        self._emit(
            "check.completed",
            level=level,
            check=outcome.name,
            group=outcome.group,
            status=outcome.status.value,
            optional=outcome.optional,
            failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
            detail=outcome.detail,
            duration_ms=outcome.duration_ms,
        )

    def log_run_finished(self, report: "VerificationReport") -> None:
        self._emit(
            "run.finished",
            level="info" if report.ok else "error",
            passed=report.passed,
            failed=report.failed,
            skipped=report.skipped,
            ok=report.ok,
        )
