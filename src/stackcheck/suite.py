"""
Verification suite orchestration.

A run proceeds in three phases:

1. **Authenticate** once. An ``AuthError`` aborts the run; nothing else can
   proceed without a Session.
2. **Discover** datasources once. The registry cache is written here and
   only read afterwards. A discovery failure is recorded and fails every
   check that depends on a datasource, without stopping the others.
3. **Fan out** checks group by group. Checks inside a group run
   concurrently; the gateway client caps outstanding requests. Lookups that
   several checks share (the dashboard search) run once and are awaited by
   every check that needs them.

Every check produces exactly one :class:`~stackcheck.report.CheckOutcome`.
Failures raised inside a check are classified and scoped to that check.
Optional checks record ``skip`` when their data is absent or the backend
did not answer, and ``fail`` only on an actual error response.

Usage::

    from stackcheck.config import get_config
    from stackcheck.suite import VerificationSuite

    report = VerificationSuite().run_sync(get_config())
    raise SystemExit(report.exit_code)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from stackcheck import aggregator
from stackcheck.auth import SessionAuthenticator
from stackcheck.checks import DEFAULT_CATALOG, CheckCatalog, CheckKind, CheckSpec
from stackcheck.config import StackCheckConfig
from stackcheck.errors import (
    AuthError,
    FailureKind,
    GatewayError,
    NotFoundError,
    QueryError,
    StackCheckError,
    classify,
)
from stackcheck.gateway import GatewayClient
from stackcheck.log import RunLogger
from stackcheck.models import Datasource, Session
from stackcheck.otel import emit_check_outcome, emit_run_summary
from stackcheck.platform import PlatformClient
from stackcheck.proxy import QueryProxyClient, time_window
from stackcheck.registry import DatasourceRegistry
from stackcheck.report import CheckOutcome, CheckStatus, VerificationReport

logger = logging.getLogger(__name__)


@dataclass
class Verdict:
    status: CheckStatus
    detail: str = ""
    failure_kind: Optional[FailureKind] = None


def _pass(detail: str) -> Verdict:
    return Verdict(CheckStatus.PASS, detail)


def _fail(detail: str, kind: Optional[FailureKind] = None) -> Verdict:
    return Verdict(CheckStatus.FAIL, detail, kind)


def count_verdict(spec: CheckSpec, count: int, detail: str) -> Verdict:
    """Apply a check's ``min_count`` predicate to a counted fact.

    Optional checks skip when the count is zero; a non-zero count below the
    minimum still fails.
    """
    if spec.optional and count == 0:
        return Verdict(CheckStatus.SKIP, f"no data available ({detail})")
    if count >= spec.min_count:
        return _pass(detail)
    return _fail(f"expected at least {spec.min_count}, got {count} ({detail})")


def verdict_for_error(spec: CheckSpec, error: StackCheckError) -> Verdict:
    kind = classify(error)
    if spec.optional and kind is FailureKind.TRANSPORT:
        return Verdict(CheckStatus.SKIP, f"no response: {error.diagnostic}", kind)
    return _fail(error.diagnostic, kind)


@dataclass
class RunContext:
    """State shared by the checks of one run.

    Everything here is written before the fan-out begins and read-only
    afterwards, apart from ``_shared`` which memoizes one task per key.
    """

    config: StackCheckConfig
    session: Session
    registry: DatasourceRegistry
    proxy: QueryProxyClient
    platform: PlatformClient
    datasources: list[Datasource] = field(default_factory=list)
    discovery_error: Optional[StackCheckError] = None
    _shared: dict[str, asyncio.Future] = field(default_factory=dict)

    def _check_discovery(self) -> None:
        """Raise a per-check copy of the recorded discovery failure."""
        error = self.discovery_error
        if error is None:
            return
        raise GatewayError(
            f"datasource discovery failed: {error.message}",
            kind=classify(error),
            status_code=error.status_code,
            field=error.field,
        ) from error

    def datasource(self, name: str) -> Datasource:
        self._check_discovery()
        return self.registry.resolve(name)

    def discovered(self) -> list[Datasource]:
        self._check_discovery()
        return self.datasources

    async def shared(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``factory`` once per run; every caller awaits the same task."""
        task = self._shared.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._shared[key] = task
        return await task


Handler = Callable[[CheckSpec, RunContext], Awaitable[Verdict]]


class VerificationSuite:
    """Run a check catalog against one gateway."""

    def __init__(
        self,
        catalog: Optional[CheckCatalog] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        """
        Initialize the suite.

        Args:
            catalog: Checks to run (defaults to ``DEFAULT_CATALOG``).
            http_client: Pre-built HTTP client; tests inject a MockTransport.
            run_logger: Structured event logger (one per run when omitted).
        """
        self.catalog = catalog if catalog is not None else DEFAULT_CATALOG
        self._http_client = http_client
        self._run_logger = run_logger
        self._handlers: dict[CheckKind, Handler] = {
            CheckKind.PLATFORM_HEALTH: self._check_platform_health,
            CheckKind.SESSION: self._check_session,
            CheckKind.CURRENT_USER: self._check_current_user,
            CheckKind.DATASOURCE_COUNT: self._check_datasource_count,
            CheckKind.DATASOURCE_PRESENT: self._check_datasource_present,
            CheckKind.DATASOURCE_HEALTH: self._check_datasource_health,
            CheckKind.INSTANT_QUERY: self._check_instant_query,
            CheckKind.LOG_QUERY: self._check_log_query,
            CheckKind.DASHBOARD_SEARCH: self._check_dashboard_search,
            CheckKind.DASHBOARD_DETAIL: self._check_dashboard_detail,
            CheckKind.ALERT_RULES: self._check_alert_rules,
            CheckKind.REJECTS_INVALID_QUERY: self._check_rejects_invalid_query,
            CheckKind.REJECTS_UNKNOWN_DATASOURCE: self._check_rejects_unknown_datasource,
        }

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, config: StackCheckConfig) -> list[CheckOutcome]:
        """Run every check and return outcomes in catalog order."""
        report = await self.run_report(config)
        return report.outcomes

    def run_sync(self, config: StackCheckConfig) -> VerificationReport:
        return asyncio.run(self.run_report(config))

    async def run_report(self, config: StackCheckConfig) -> VerificationReport:
        """
        Run every check and return the full report.

        Raises:
            AuthError: The credential exchange failed; no check ran.
        """
        run_log = self._run_logger or RunLogger(gateway_url=config.grafana_url)
        report = VerificationReport(gateway_url=config.grafana_url)
        run_log.log_run_started(check_count=len(self.catalog.checks))

        async with GatewayClient(
            config.grafana_url,
            timeout=config.request_timeout_s,
            max_concurrency=config.max_concurrency,
            max_retries=config.max_retries,
            http_client=self._http_client,
        ) as gateway:
            try:
                session = await SessionAuthenticator(gateway).authenticate(
                    config.username, config.password, timeout=config.auth_timeout_s
                )
            except AuthError as e:
                run_log.log_auth_failed(e.diagnostic)
                raise
            run_log.log_session_acquired(session.username)

            ctx = RunContext(
                config=config,
                session=session,
                registry=DatasourceRegistry(gateway),
                proxy=QueryProxyClient(gateway),
                platform=PlatformClient(gateway),
            )
            await self._discover(ctx, run_log)

            for group, specs in self.catalog.groups():
                logger.debug(f"Running group {group.value} ({len(specs)} checks)")
                outcomes = await asyncio.gather(*(self._execute(spec, ctx) for spec in specs))
                for outcome in outcomes:
                    run_log.log_check_completed(outcome)
                    emit_check_outcome(outcome)
                report.outcomes.extend(outcomes)

        report.finished_at = datetime.now(timezone.utc)
        run_log.log_run_finished(report)
        emit_run_summary(report)
        return report

    async def _discover(self, ctx: RunContext, run_log: RunLogger) -> None:
        try:
            ctx.datasources = await ctx.registry.discover(ctx.session)
        except StackCheckError as e:
            logger.error(f"Datasource discovery failed: {e.diagnostic}")
            ctx.discovery_error = e
            return

        names = [ds.name for ds in ctx.datasources]
        run_log.log_datasources_discovered(names)
        missing = [n for n in self.catalog.datasource_names() if n not in names]
        if missing:
            logger.warning(f"Catalog references undiscovered datasources: {', '.join(missing)}")

    async def _execute(self, spec: CheckSpec, ctx: RunContext) -> CheckOutcome:
        started = time.monotonic()
        try:
            verdict = await self._handlers[spec.kind](spec, ctx)
        except StackCheckError as e:
            verdict = verdict_for_error(spec, e)
        except Exception as e:
            logger.exception(f"Check {spec.name!r} raised unexpectedly")
            verdict = _fail(f"unexpected error: {e!r}")

        return CheckOutcome(
            name=spec.name,
            group=spec.group.value,
            status=verdict.status,
            detail=verdict.detail,
            optional=spec.optional,
            failure_kind=verdict.failure_kind,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def _check_platform_health(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        health = await ctx.platform.health(ctx.session)
        if health.database != "ok":
            return _fail(f"database reports {health.database!r}")
        return _pass(f"version {health.version}")

    async def _check_session(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        return _pass(f"token {ctx.session.token_preview}")

    async def _check_current_user(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        user = await ctx.platform.current_user(ctx.session)
        expected = spec.expect_login or ctx.config.username
        if user.login != expected:
            return _fail(f"logged in as {user.login!r}, expected {expected!r}")
        return _pass(f"current user {user.login}")

    # ------------------------------------------------------------------
    # Datasources
    # ------------------------------------------------------------------

    async def _check_datasource_count(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        datasources = ctx.discovered()
        names = ", ".join(ds.name for ds in datasources)
        return count_verdict(spec, len(datasources), f"{len(datasources)} datasources: {names}")

    async def _check_datasource_present(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        problems = []
        if spec.expect_type and ds.type != spec.expect_type:
            problems.append(f"type is {ds.type!r}, expected {spec.expect_type!r}")
        if spec.expect_default is not None and ds.is_default != spec.expect_default:
            problems.append(f"isDefault is {ds.is_default}, expected {spec.expect_default}")
        if spec.expect_url_contains and spec.expect_url_contains not in ds.url:
            problems.append(f"url {ds.url!r} lacks {spec.expect_url_contains!r}")
        if problems:
            return _fail("; ".join(problems))
        return _pass(f"{ds.type} at {ds.url or '<no url>'} (uid {ds.id})")

    async def _check_datasource_health(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        body = await ctx.registry.check_health(ctx.session, ds.name)
        return _pass(str(body.get("message") or body.get("status") or "healthy"))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _check_instant_query(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        result = await ctx.proxy.instant_query(ctx.session, ds.id, spec.expression)
        count = aggregator.QUERY_FACTS[spec.fact](result, spec.label)
        if spec.fact == "distinct_label_count":
            values = aggregator.label_values(result, spec.label)
            detail = f"{count} distinct {spec.label}: {', '.join(values[:5])}"
        elif spec.label:
            top = aggregator.top_series(result, spec.label)
            detail = f"{count} results; top: " + ", ".join(f"{n}={v:g}" for n, v in top)
        else:
            value = aggregator.first_value(result)
            detail = f"{count} results" + (f", value {value:g}" if value is not None else "")
        return count_verdict(spec, count, detail)

    async def _check_log_query(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        start, end = time_window(spec.window_s or ctx.config.log_window_s)
        result = await ctx.proxy.range_query(ctx.session, ds.id, spec.expression, start, end)

        outside = aggregator.entries_outside(result, start, end)
        if outside:
            return _fail(f"{len(outside)} log entries fall outside the query window")
        entries = aggregator.total_log_entries(result)
        streams = aggregator.stream_count(result)
        return count_verdict(spec, entries, f"{streams} streams, {entries} entries")

    async def _check_alert_rules(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        groups = await ctx.proxy.alert_rules(ctx.session, ds.id)
        rules = aggregator.total_rule_count(groups)
        return count_verdict(spec, len(groups), f"{len(groups)} groups, {rules} rules")

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    async def _search_dashboards(self, ctx: RunContext):
        return await ctx.shared("dashboards", lambda: ctx.platform.search_dashboards(ctx.session))

    async def _check_dashboard_search(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        dashboards = await self._search_dashboards(ctx)
        matches = aggregator.dashboards_matching(dashboards, spec.title_contains, spec.case_sensitive)
        titles = ", ".join(d.title for d in matches[:3])
        what = f"matching {spec.title_contains!r}" if spec.title_contains else "total"
        detail = f"{len(matches)} dashboards {what}" + (f": {titles}" if titles else "")
        return count_verdict(spec, len(matches), detail)

    async def _check_dashboard_detail(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        dashboards = await self._search_dashboards(ctx)
        matches = aggregator.dashboards_matching(dashboards, spec.title_contains, spec.case_sensitive)
        if not matches:
            if spec.optional:
                return Verdict(CheckStatus.SKIP, f"no dashboard matching {spec.title_contains!r}")
            return _fail(f"no dashboard matching {spec.title_contains!r}")
        dashboard = await ctx.platform.get_dashboard(ctx.session, matches[0].uid)
        panels = aggregator.panel_count(dashboard)
        detail = f"{dashboard.title or matches[0].title!r} has {panels} panels"
        if panels < spec.min_count:
            return _fail(f"expected at least {spec.min_count} panels; {detail}")
        return _pass(detail)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    async def _check_rejects_invalid_query(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        ds = ctx.datasource(spec.datasource)
        try:
            await ctx.proxy.instant_query(ctx.session, ds.id, spec.expression)
        except QueryError as e:
            kind = classify(e)
            if kind is FailureKind.CLIENT_ERROR:
                how = f"HTTP {e.status_code}" if e.status_code else "an error envelope"
                return _pass(f"rejected with {how}")
            return _fail(f"expected a 4xx rejection, got {kind.value}: {e.diagnostic}", kind)
        return _fail(f"invalid expression {spec.expression!r} was accepted")

    async def _check_rejects_unknown_datasource(self, spec: CheckSpec, ctx: RunContext) -> Verdict:
        if ctx.discovery_error is None and any(ds.name == spec.datasource for ds in ctx.datasources):
            return _fail(f"datasource {spec.datasource!r} exists")

        try:
            await ctx.registry.lookup(ctx.session, spec.datasource)
        except NotFoundError as e:
            if e.status_code == 404:
                return _pass("rejected with HTTP 404")
            return _fail(f"expected HTTP 404, got {e.diagnostic}", classify(e))
        return _fail(f"gateway returned a record for {spec.datasource!r}")
