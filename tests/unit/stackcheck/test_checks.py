"""Tests for the check catalog models and YAML loader."""

from __future__ import annotations

import textwrap

import pytest
import yaml
from pydantic import ValidationError

from stackcheck.checks import (
    DEFAULT_CATALOG,
    CatalogLoader,
    CheckCatalog,
    CheckGroup,
    CheckKind,
    CheckSpec,
)

VALID_YAML = textwrap.dedent(
    """\
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
      - name: "Platform health"
        group: availability
        kind: platform_health
    """
)


class TestDefaultCatalog:
    def test_names_unique(self):
        names = [c.name for c in DEFAULT_CATALOG.checks]
        assert len(names) == len(set(names))

    def test_optional_checks_declared(self):
        optional = {c.name for c in DEFAULT_CATALOG.optional_checks()}
        assert optional == {"Cluster: Total CPU Cores", "Cluster: Total Memory", "Top pods by CPU"}

    def test_every_group_present_in_order(self):
        assert [g for g, _ in DEFAULT_CATALOG.groups()] == list(CheckGroup)

    def test_datasource_names_skip_unknown_probe(self):
        assert DEFAULT_CATALOG.datasource_names() == ["Prometheus", "Loki", "Alertmanager"]

    def test_get(self):
        assert DEFAULT_CATALOG.get("Invalid query rejected").expression == "invalid!!!query"
        with pytest.raises(KeyError):
            DEFAULT_CATALOG.get("No such check")


class TestCheckSpecValidation:
    def test_query_requires_datasource(self):
        with pytest.raises(ValidationError, match="requires 'datasource'"):
            CheckSpec(name="q", group=CheckGroup.METRICS, kind=CheckKind.INSTANT_QUERY, expression="up")

    def test_query_requires_expression(self):
        with pytest.raises(ValidationError, match="requires 'expression'"):
            CheckSpec(name="q", group=CheckGroup.METRICS, kind=CheckKind.INSTANT_QUERY, datasource="Prometheus")

    def test_distinct_count_requires_label(self):
        with pytest.raises(ValidationError, match="requires 'label'"):
            CheckSpec(
                name="ns",
                group=CheckGroup.NAMESPACES,
                kind=CheckKind.INSTANT_QUERY,
                datasource="Prometheus",
                expression="count by (namespace) (kube_pod_info)",
                fact="distinct_label_count",
            )

    def test_unknown_field_forbidden(self):
        with pytest.raises(ValidationError):
            CheckSpec(name="h", group=CheckGroup.AVAILABILITY, kind=CheckKind.PLATFORM_HEALTH, mandatory=True)

    def test_negative_min_count(self):
        with pytest.raises(ValidationError):
            CheckSpec(name="h", group=CheckGroup.AVAILABILITY, kind=CheckKind.PLATFORM_HEALTH, min_count=-1)

    def test_duplicate_names_rejected(self):
        spec = CheckSpec(name="h", group=CheckGroup.AVAILABILITY, kind=CheckKind.PLATFORM_HEALTH)
        with pytest.raises(ValidationError, match="duplicate check name"):
            CheckCatalog(checks=[spec, spec])


class TestCatalogLoader:
    def test_load_from_string(self):
        catalog = CatalogLoader().load_from_string(VALID_YAML)
        assert len(catalog.checks) == 3
        assert [c.name for c in catalog.optional_checks()] == ["Cluster: CPU cores"]
        assert [g for g, _ in catalog.groups()] == [CheckGroup.METRICS, CheckGroup.CLUSTER, CheckGroup.AVAILABILITY]

    def test_load_file_is_cached(self, tmp_path):
        path = tmp_path / "checks.yaml"
        path.write_text(VALID_YAML)
        loader = CatalogLoader()

        first = loader.load(path)
        path.write_text("checks: []")
        second = loader.load(path)
        assert first is second

        CatalogLoader.clear_cache()
        assert loader.load(path).checks == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CatalogLoader().load(tmp_path / "absent.yaml")

    def test_root_must_be_mapping(self):
        with pytest.raises(TypeError, match="Expected YAML mapping"):
            CatalogLoader().load_from_string("- just\n- a list\n")

    def test_invalid_yaml(self):
        with pytest.raises(yaml.YAMLError):
            CatalogLoader().load_from_string("checks: [unclosed")

    def test_schema_violation(self):
        with pytest.raises(ValidationError):
            CatalogLoader().load_from_string("checks:\n  - name: x\n    group: nowhere\n    kind: session\n")
