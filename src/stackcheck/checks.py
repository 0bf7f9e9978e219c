"""
Declarative check catalog.

A catalog lists every check a run performs. Each :class:`CheckSpec` names
what it verifies (``kind``), the datasource it depends on, the predicate that
counts as a pass, and whether it is mandatory or ``optional``. Optional
checks record ``skip`` instead of ``fail`` when their data is absent, so the
mandatory/optional split is visible configuration rather than control flow.

Catalogs are built in code (``DEFAULT_CATALOG``) or loaded from YAML::

    schema_version: "1"
    checks:
      - name: "Metrics: pod count"
        group: metrics
        kind: instant_query
        datasource: Prometheus
        expression: count(kube_pod_info)
      - name: "Cluster: CPU cores"
        group: cluster
        kind: instant_query
        datasource: Prometheus
        expression: sum(machine_cpu_cores)
        optional: true

Usage::

    from stackcheck.checks import CatalogLoader, DEFAULT_CATALOG

    catalog = CatalogLoader().load(Path("checks.yaml"))
    for spec in catalog.optional_checks():
        print(spec.name)
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import ClassVar, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class CheckGroup(str, Enum):
    """Groups run in declaration order; checks inside a group run concurrently."""

    AVAILABILITY = "availability"
    DATASOURCE_PRESENCE = "datasource_presence"
    DATASOURCE_HEALTH = "datasource_health"
    METRICS = "metrics"
    LOGS = "logs"
    DASHBOARDS = "dashboards"
    CLUSTER = "cluster"
    NAMESPACES = "namespaces"
    ALERT_RULES = "alert_rules"
    ERROR_HANDLING = "error_handling"


class CheckKind(str, Enum):
    PLATFORM_HEALTH = "platform_health"
    SESSION = "session"
    CURRENT_USER = "current_user"
    DATASOURCE_COUNT = "datasource_count"
    DATASOURCE_PRESENT = "datasource_present"
    DATASOURCE_HEALTH = "datasource_health"
    INSTANT_QUERY = "instant_query"
    LOG_QUERY = "log_query"
    DASHBOARD_SEARCH = "dashboard_search"
    DASHBOARD_DETAIL = "dashboard_detail"
    ALERT_RULES = "alert_rules"
    REJECTS_INVALID_QUERY = "rejects_invalid_query"
    REJECTS_UNKNOWN_DATASOURCE = "rejects_unknown_datasource"


# Kinds that need a logical datasource name to resolve
_NEEDS_DATASOURCE = frozenset({
    CheckKind.DATASOURCE_PRESENT,
    CheckKind.DATASOURCE_HEALTH,
    CheckKind.INSTANT_QUERY,
    CheckKind.LOG_QUERY,
    CheckKind.ALERT_RULES,
    CheckKind.REJECTS_INVALID_QUERY,
    CheckKind.REJECTS_UNKNOWN_DATASOURCE,
})

# Kinds that need a query expression
_NEEDS_EXPRESSION = frozenset({
    CheckKind.INSTANT_QUERY,
    CheckKind.LOG_QUERY,
    CheckKind.REJECTS_INVALID_QUERY,
})


class CheckSpec(BaseModel):
    """One named verification unit producing a single outcome."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1, description="Unique check name (report key)")
    group: CheckGroup
    kind: CheckKind
    optional: bool = Field(
        False, description="Absent data records skip instead of fail"
    )
    datasource: Optional[str] = Field(None, description="Logical datasource name")
    expression: Optional[str] = Field(None, description="PromQL or LogQL expression")
    fact: Literal["series_count", "distinct_label_count"] = Field(
        "series_count", description="Countable fact an instant query asserts on"
    )
    label: Optional[str] = Field(None, description="Label for distinct_label_count")
    min_count: int = Field(0, ge=0, description="Fact must be >= this value")
    window_s: Optional[int] = Field(
        None, ge=1, description="Log query look-back; defaults to the configured window"
    )
    title_contains: Optional[str] = Field(None, description="Dashboard title filter")
    case_sensitive: bool = False
    expect_type: Optional[str] = Field(None, description="Expected datasource plugin type")
    expect_default: Optional[bool] = None
    expect_url_contains: Optional[str] = None
    expect_login: Optional[str] = Field(
        None, description="Expected login; defaults to the configured username"
    )

    @model_validator(mode="after")
    def _check_required_fields(self) -> "CheckSpec":
        if self.kind in _NEEDS_DATASOURCE and not self.datasource:
            raise ValueError(f"check {self.name!r}: kind {self.kind.value} requires 'datasource'")
        if self.kind in _NEEDS_EXPRESSION and not self.expression:
            raise ValueError(f"check {self.name!r}: kind {self.kind.value} requires 'expression'")
        if self.fact == "distinct_label_count" and not self.label:
            raise ValueError(f"check {self.name!r}: distinct_label_count requires 'label'")
        return self


class CheckCatalog(BaseModel):
    """Root model for a check catalog."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field("1", min_length=1)
    checks: list[CheckSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_names(self) -> "CheckCatalog":
        seen: set[str] = set()
        for spec in self.checks:
            if spec.name in seen:
                raise ValueError(f"duplicate check name {spec.name!r}")
            seen.add(spec.name)
        return self

    def get(self, name: str) -> CheckSpec:
        for spec in self.checks:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def groups(self) -> list[tuple[CheckGroup, list[CheckSpec]]]:
        """Checks grouped in first-appearance order of their group."""
        grouped: dict[CheckGroup, list[CheckSpec]] = {}
        for spec in self.checks:
            grouped.setdefault(spec.group, []).append(spec)
        return list(grouped.items())

    def mandatory_checks(self) -> list[CheckSpec]:
        return [c for c in self.checks if not c.optional]

    def optional_checks(self) -> list[CheckSpec]:
        return [c for c in self.checks if c.optional]

    def datasource_names(self) -> list[str]:
        """Logical datasource names the catalog depends on, in order."""
        names: dict[str, None] = {}
        for spec in self.checks:
            if spec.datasource and spec.kind is not CheckKind.REJECTS_UNKNOWN_DATASOURCE:
                names.setdefault(spec.datasource, None)
        return list(names)


class CatalogLoader:
    """YAML catalog loader with per-path caching."""

    _cache: ClassVar[dict[str, CheckCatalog]] = {}

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the catalog cache (useful in tests)."""
        cls._cache.clear()

    def load(self, path: Path) -> CheckCatalog:
        """Load a catalog from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            TypeError: If the YAML root is not a mapping.
            yaml.YAMLError: If the file contains invalid YAML.
            pydantic.ValidationError: If the YAML does not match the schema.
        """
        key = str(path.resolve())
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("catalog cache hit: %s", key)
            return cached

        if not path.exists():
            raise FileNotFoundError(f"Check catalog not found: {path}")

        with open(path) as fh:
            raw = yaml.safe_load(fh)

        catalog = self._validate(raw, str(path))
        self._cache[key] = catalog
        logger.debug("Loaded check catalog %s: %d checks", key, len(catalog.checks))
        return catalog

    def load_from_string(self, yaml_str: str) -> CheckCatalog:
        """Load a catalog from a YAML string (convenience for testing)."""
        return self._validate(yaml.safe_load(yaml_str), "<string>")

    @staticmethod
    def _validate(raw: object, source: str) -> CheckCatalog:
        if not isinstance(raw, dict):
            raise TypeError(
                f"Expected YAML mapping at root of {source}, got {type(raw).__name__}"
            )
        return CheckCatalog.model_validate(raw)


# ---------------------------------------------------------------------------
# Default catalog: the full Grafana / Prometheus / Loki integration suite
# ---------------------------------------------------------------------------


def _metrics(name: str, expression: str, group: CheckGroup = CheckGroup.METRICS, **kw) -> CheckSpec:
    return CheckSpec(
        name=name,
        group=group,
        kind=CheckKind.INSTANT_QUERY,
        datasource="Prometheus",
        expression=expression,
        **kw,
    )


def _logs(name: str, expression: str) -> CheckSpec:
    return CheckSpec(
        name=name,
        group=CheckGroup.LOGS,
        kind=CheckKind.LOG_QUERY,
        datasource="Loki",
        expression=expression,
    )


def _dashboards(name: str, title: Optional[str], case_sensitive: bool = False) -> CheckSpec:
    return CheckSpec(
        name=name,
        group=CheckGroup.DASHBOARDS,
        kind=CheckKind.DASHBOARD_SEARCH,
        title_contains=title,
        case_sensitive=case_sensitive,
        min_count=1,
    )


DEFAULT_CATALOG = CheckCatalog(
    checks=[
        # Availability
        CheckSpec(name="Platform health", group=CheckGroup.AVAILABILITY, kind=CheckKind.PLATFORM_HEALTH),
        CheckSpec(name="Session token obtained", group=CheckGroup.AVAILABILITY, kind=CheckKind.SESSION),
        CheckSpec(name="Current user", group=CheckGroup.AVAILABILITY, kind=CheckKind.CURRENT_USER),
        # Datasource presence
        CheckSpec(
            name="At least 3 datasources",
            group=CheckGroup.DATASOURCE_PRESENCE,
            kind=CheckKind.DATASOURCE_COUNT,
            min_count=3,
        ),
        CheckSpec(
            name="Prometheus datasource",
            group=CheckGroup.DATASOURCE_PRESENCE,
            kind=CheckKind.DATASOURCE_PRESENT,
            datasource="Prometheus",
            expect_type="prometheus",
            expect_default=True,
        ),
        CheckSpec(
            name="Loki datasource",
            group=CheckGroup.DATASOURCE_PRESENCE,
            kind=CheckKind.DATASOURCE_PRESENT,
            datasource="Loki",
            expect_type="loki",
            expect_url_contains="loki",
        ),
        CheckSpec(
            name="Alertmanager datasource",
            group=CheckGroup.DATASOURCE_PRESENCE,
            kind=CheckKind.DATASOURCE_PRESENT,
            datasource="Alertmanager",
            expect_type="alertmanager",
        ),
        # Datasource health
        CheckSpec(
            name="Prometheus health",
            group=CheckGroup.DATASOURCE_HEALTH,
            kind=CheckKind.DATASOURCE_HEALTH,
            datasource="Prometheus",
        ),
        CheckSpec(
            name="Loki health",
            group=CheckGroup.DATASOURCE_HEALTH,
            kind=CheckKind.DATASOURCE_HEALTH,
            datasource="Loki",
        ),
        # Metrics queries
        _metrics("Query: Pod Count", "count(kube_pod_info)"),
        _metrics("Query: Node Count", "count(kube_node_info)"),
        _metrics("Query: Namespace Count", "count(kube_namespace_info)"),
        _metrics("Query: Target Up Status", "up"),
        # Log queries
        _logs("Logs: Kubelet", '{job="kubelet"}'),
        _logs("Logs: kube-system", '{namespace="kube-system"}'),
        _logs("Logs: monitoring", '{namespace="monitoring"}'),
        # Dashboards
        _dashboards("Dashboards available", None),
        _dashboards("Kubernetes dashboards", "kubernetes"),
        _dashboards("Alertmanager dashboard", "Alertmanager", case_sensitive=True),
        _dashboards("etcd dashboard", "etcd", case_sensitive=True),
        _dashboards("CoreDNS dashboard", "CoreDNS", case_sensitive=True),
        CheckSpec(
            name="Open Kubernetes dashboard",
            group=CheckGroup.DASHBOARDS,
            kind=CheckKind.DASHBOARD_DETAIL,
            title_contains="kubernetes",
        ),
        # Cluster-wide facts
        _metrics("Cluster: Total Nodes", "count(kube_node_info)", CheckGroup.CLUSTER),
        _metrics("Cluster: Total CPU Cores", "sum(machine_cpu_cores)", CheckGroup.CLUSTER, optional=True),
        _metrics("Cluster: Total Memory", "sum(machine_memory_bytes)", CheckGroup.CLUSTER, optional=True),
        _metrics("Cluster: Total Namespaces", "count(kube_namespace_info)", CheckGroup.CLUSTER),
        _metrics("Cluster: Total Deployments", "count(kube_deployment_info)", CheckGroup.CLUSTER),
        _metrics("Cluster: Total Pods", "count(kube_pod_info)", CheckGroup.CLUSTER),
        # Namespace and pod facts
        _metrics(
            "Namespaces available",
            "count by (namespace) (kube_pod_info)",
            CheckGroup.NAMESPACES,
            fact="distinct_label_count",
            label="namespace",
            min_count=1,
        ),
        _metrics(
            "Pod metrics per namespace",
            "count(kube_pod_info) by (namespace)",
            CheckGroup.NAMESPACES,
            min_count=1,
        ),
        _metrics(
            "Top pods by CPU",
            "topk(5, sum by (pod_name) (rate(container_cpu_usage_seconds_total[5m])))",
            CheckGroup.NAMESPACES,
            label="pod_name",
            optional=True,
        ),
        # Alert rules
        CheckSpec(
            name="Prometheus alert rules",
            group=CheckGroup.ALERT_RULES,
            kind=CheckKind.ALERT_RULES,
            datasource="Prometheus",
        ),
        # Error handling
        CheckSpec(
            name="Invalid query rejected",
            group=CheckGroup.ERROR_HANDLING,
            kind=CheckKind.REJECTS_INVALID_QUERY,
            datasource="Prometheus",
            expression="invalid!!!query",
        ),
        CheckSpec(
            name="Unknown datasource rejected",
            group=CheckGroup.ERROR_HANDLING,
            kind=CheckKind.REJECTS_UNKNOWN_DATASOURCE,
            datasource="NonExistentDataSource",
        ),
    ]
)
