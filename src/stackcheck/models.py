"""
Pydantic v2 models for the records stackcheck reads from the gateway.

Wire payloads are validated with :func:`parse_payload`, which turns a
``ValidationError`` into a :class:`~stackcheck.errors.MalformedResponseError`
naming the offending field. Query and log results have their own builders
because the Prometheus and Loki envelopes are positional lists rather than
objects.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from stackcheck.errors import MalformedResponseError

M = TypeVar("M", bound=BaseModel)


def parse_payload(model: type[M], payload: Any, what: str) -> M:
    """Validate ``payload`` as ``model`` or raise MalformedResponseError."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or "<root>"
        raise MalformedResponseError(
            f"invalid {what} payload: {first['msg']}", field=field
        ) from exc


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session(BaseModel):
    """Bearer credential for one verification run."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1, repr=False)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    username: str = ""

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def token_preview(self) -> str:
        """First characters of the token, safe to print."""
        return f"{self.token[:8]}..." if len(self.token) > 8 else "***"


# ---------------------------------------------------------------------------
# Datasources
# ---------------------------------------------------------------------------


class DatasourceKind(str, Enum):
    """Role a backend plays behind the gateway."""

    TIME_SERIES = "time_series"
    LOG = "log"
    ALERTING = "alerting"
    OTHER = "other"


_KIND_BY_TYPE = {
    "prometheus": DatasourceKind.TIME_SERIES,
    "mimir": DatasourceKind.TIME_SERIES,
    "cortex": DatasourceKind.TIME_SERIES,
    "thanos": DatasourceKind.TIME_SERIES,
    "graphite": DatasourceKind.TIME_SERIES,
    "influxdb": DatasourceKind.TIME_SERIES,
    "loki": DatasourceKind.LOG,
    "elasticsearch": DatasourceKind.LOG,
    "alertmanager": DatasourceKind.ALERTING,
}


def kind_for_type(datasource_type: str) -> DatasourceKind:
    """Derive the backend role from a Grafana plugin type id."""
    return _KIND_BY_TYPE.get(datasource_type.lower(), DatasourceKind.OTHER)


class Datasource(BaseModel):
    """A backend configured in the gateway."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    id: str = Field(..., min_length=1, validation_alias=AliasChoices("uid", "id"))
    type: str
    url: str = ""
    is_default: bool = Field(False, validation_alias=AliasChoices("isDefault", "is_default"))

    @property
    def kind(self) -> DatasourceKind:
        return kind_for_type(self.type)


# ---------------------------------------------------------------------------
# Metrics queries
# ---------------------------------------------------------------------------


class QueryStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class Sample(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float
    value: str

    def as_float(self) -> float:
        return float(self.value)


class Series(BaseModel):
    """One element of a Prometheus vector/matrix result."""

    labels: dict[str, str] = Field(default_factory=dict)
    value: Optional[Sample] = None
    samples: list[Sample] = Field(default_factory=list)


class QueryResult(BaseModel):
    status: QueryStatus
    result_type: str = "vector"
    series: list[Series] = Field(default_factory=list)


def _sample(pair: Any, field: str) -> Sample:
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        raise MalformedResponseError("sample must be a [timestamp, value] pair", field=field)
    try:
        return Sample(timestamp=float(pair[0]), value=str(pair[1]))
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError(f"bad sample {pair!r}", field=field) from exc


def build_query_result(payload: Any) -> QueryResult:
    """Build a QueryResult from a Prometheus ``/api/v1/query`` envelope."""
    if not isinstance(payload, dict):
        raise MalformedResponseError("query response is not an object", field="<root>")
    if payload.get("status") not in (QueryStatus.SUCCESS.value, QueryStatus.ERROR.value):
        raise MalformedResponseError("query response lacks status", field="status")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedResponseError("query response lacks data", field="data")

    result_type = data.get("resultType", "vector")
    raw = data.get("result") or []
    series: list[Series] = []
    if result_type in ("scalar", "string"):
        series.append(Series(value=_sample(raw, "data.result")))
    else:
        if not isinstance(raw, list):
            raise MalformedResponseError("result must be a list", field="data.result")
        for item in raw:
            if not isinstance(item, dict):
                raise MalformedResponseError("series must be an object", field="data.result")
            metric = item.get("metric") or {}
            if not isinstance(metric, dict):
                raise MalformedResponseError("series metric must be an object", field="data.result.metric")
            entry = Series(labels={k: str(v) for k, v in metric.items()})
            if "value" in item:
                entry.value = _sample(item["value"], "data.result.value")
            if "values" in item:
                entry.samples = [_sample(p, "data.result.values") for p in item["values"]]
            series.append(entry)

    return QueryResult(
        status=QueryStatus(payload["status"]),
        result_type=result_type,
        series=series,
    )


# ---------------------------------------------------------------------------
# Log queries
# ---------------------------------------------------------------------------


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_ns: int
    line: str


class LogStream(BaseModel):
    labels: dict[str, str] = Field(default_factory=dict)
    entries: list[LogEntry] = Field(default_factory=list)


class LogResult(BaseModel):
    result_type: str = "streams"
    streams: list[LogStream] = Field(default_factory=list)

    @property
    def entry_count(self) -> int:
        return sum(len(s.entries) for s in self.streams)


def build_log_result(payload: Any) -> LogResult:
    """Build a LogResult from a Loki ``query_range`` envelope."""
    if not isinstance(payload, dict):
        raise MalformedResponseError("log response is not an object", field="<root>")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedResponseError("log response lacks data", field="data")
    result_type = data.get("resultType", "streams")
    if result_type != "streams":
        raise MalformedResponseError(
            f"expected a streams result, got {result_type!r}", field="data.resultType"
        )

    streams: list[LogStream] = []
    for item in data.get("result") or []:
        if not isinstance(item, dict):
            raise MalformedResponseError("stream must be an object", field="data.result")
        entries = []
        for pair in item.get("values") or []:
            if not isinstance(pair, (list, tuple)) or len(pair) < 2:
                raise MalformedResponseError(
                    "log entry must be a [timestamp, line] pair", field="data.result.values"
                )
            try:
                entries.append(LogEntry(timestamp_ns=int(pair[0]), line=str(pair[1])))
            except (TypeError, ValueError) as exc:
                raise MalformedResponseError(
                    f"bad log timestamp {pair[0]!r}", field="data.result.values"
                ) from exc
        streams.append(
            LogStream(
                labels={k: str(v) for k, v in (item.get("stream") or {}).items()},
                entries=entries,
            )
        )
    return LogResult(result_type=result_type, streams=streams)


# ---------------------------------------------------------------------------
# Alert rules
# ---------------------------------------------------------------------------


class AlertRule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    type: str = "alerting"
    state: Optional[str] = None
    health: Optional[str] = None
    query: Optional[str] = None


class AlertGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    file: Optional[str] = None
    rules: list[AlertRule] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Gateway records
# ---------------------------------------------------------------------------


class PlatformHealth(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: str
    version: str = Field(..., min_length=1)
    commit: Optional[str] = None


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    login: str
    email: Optional[str] = None
    name: Optional[str] = None
    is_grafana_admin: bool = Field(
        False, validation_alias=AliasChoices("isGrafanaAdmin", "is_grafana_admin")
    )


class DashboardSummary(BaseModel):
    """A dashboard search hit."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    uid: str
    title: str
    folder_title: Optional[str] = Field(
        None, validation_alias=AliasChoices("folderTitle", "folder_title")
    )
    tags: list[str] = Field(default_factory=list)


class Dashboard(BaseModel):
    uid: str
    title: str
    panel_count: int = Field(0, ge=0)
    panel_titles: list[str] = Field(default_factory=list)


def build_dashboard(uid: str, payload: Any) -> Dashboard:
    """Build a Dashboard from a ``/api/dashboards/uid/{uid}`` response."""
    if not isinstance(payload, dict) or not isinstance(payload.get("dashboard"), dict):
        raise MalformedResponseError("dashboard response lacks dashboard", field="dashboard")
    body = payload["dashboard"]
    panels = body.get("panels") or []
    if not isinstance(panels, list):
        raise MalformedResponseError("dashboard panels must be a list", field="dashboard.panels")
    return parse_payload(
        Dashboard,
        {
            "uid": body.get("uid") or uid,
            "title": body.get("title") or "",
            "panel_count": len(panels),
            "panel_titles": [str(p.get("title") or "") for p in panels if isinstance(p, dict)],
        },
        "dashboard",
    )
