"""
Pytest configuration and fixtures for stackcheck tests.

``FakeGrafana`` serves the gateway HTTP surface through ``httpx.MockTransport``
so every component can be exercised without a running stack.
"""

from __future__ import annotations

import json
import os
from typing import Callable, Dict, Generator, List, Optional, Tuple

import httpx
import pytest

from stackcheck.checks import CatalogLoader
from stackcheck.config import StackCheckConfig, reset_config
from stackcheck.gateway import GatewayClient
from stackcheck.models import Session

BASE_URL = "http://grafana.test"
PROXY = "/api/datasources/proxy/uid/"


def _vector(*series: Tuple[Dict[str, str], str]) -> List[dict]:
    return [{"metric": labels, "value": [1700000000.0, value]} for labels, value in series]


DEFAULT_METRICS: Dict[str, List[dict]] = {
    "count(kube_pod_info)": _vector(({}, "42")),
    "count(kube_node_info)": _vector(({}, "3")),
    "count(kube_namespace_info)": _vector(({}, "7")),
    "count(kube_deployment_info)": _vector(({}, "12")),
    "up": _vector(
        ({"job": "prometheus", "instance": "prometheus:9090"}, "1"),
        ({"job": "kubelet", "instance": "node-1:10250"}, "1"),
        ({"job": "loki", "instance": "loki:3100"}, "1"),
    ),
    "count by (namespace) (kube_pod_info)": _vector(
        ({"namespace": "kube-system"}, "9"),
        ({"namespace": "monitoring"}, "6"),
        ({"namespace": "default"}, "2"),
    ),
    "count(kube_pod_info) by (namespace)": _vector(
        ({"namespace": "kube-system"}, "9"),
        ({"namespace": "monitoring"}, "6"),
    ),
    "topk(5, sum by (pod_name) (rate(container_cpu_usage_seconds_total[5m])))": _vector(
        ({"pod_name": "prometheus-0"}, "0.31"),
        ({"pod_name": "loki-0"}, "0.12"),
    ),
}

DEFAULT_DASHBOARDS = [
    {"uid": "k8s-cluster", "title": "Kubernetes / Compute Resources / Cluster", "folderTitle": "Kubernetes"},
    {"uid": "k8s-pods", "title": "Kubernetes / Pods", "folderTitle": "Kubernetes"},
    {"uid": "am-overview", "title": "Alertmanager / Overview", "tags": ["alertmanager"]},
    {"uid": "etcd", "title": "etcd"},
    {"uid": "coredns", "title": "CoreDNS"},
]


class FakeGrafana:
    """In-memory Grafana gateway fronting Prometheus, Loki and Alertmanager."""

    def __init__(self, username: str = "admin", password: str = "secret"):
        self.username = username
        self.password = password
        self.token = "glsa_fake_token_0123456789"
        self.datasources = [
            {"name": "Prometheus", "uid": "prom-uid", "type": "prometheus",
             "url": "http://prometheus:9090", "isDefault": True},
            {"name": "Loki", "uid": "loki-uid", "type": "loki",
             "url": "http://loki:3100", "isDefault": False},
            {"name": "Alertmanager", "uid": "am-uid", "type": "alertmanager",
             "url": "http://alertmanager:9093", "isDefault": False},
        ]
        self.metrics: Dict[str, List[dict]] = dict(DEFAULT_METRICS)
        self.dashboards: List[dict] = [dict(d) for d in DEFAULT_DASHBOARDS]
        self.rule_groups = [
            {"name": "kubernetes-apps", "file": "k8s.yaml", "rules": [
                {"name": "KubePodCrashLooping", "type": "alerting", "state": "inactive"},
                {"name": "KubePodNotReady", "type": "alerting", "state": "inactive"},
            ]},
            {"name": "node-exporter", "rules": [{"name": "NodeFilesystemFull"}]},
        ]
        # Expressions answered with (status, body) instead of a result
        self.query_errors: Dict[str, Tuple[int, dict]] = {}
        # Expressions whose request times out
        self.query_timeouts: set = set()
        # Exact path -> handler overriding the default route
        self.overrides: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    # -- recording -----------------------------------------------------------

    @property
    def calls(self) -> List[Tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]

    def count(self, path: str) -> int:
        return sum(1 for _, p in self.calls if p == path)

    # -- clients -------------------------------------------------------------

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def gateway(self, **kwargs) -> GatewayClient:
        kwargs.setdefault("max_retries", 0)
        return GatewayClient(BASE_URL, http_client=self.client(), **kwargs)

    def session(self) -> Session:
        return Session(token=self.token, username=self.username)

    # -- routing -------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/auth/login" and request.method == "POST":
            return self._login(request)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"message": "Unauthorized"})
        if path in self.overrides:
            return self.overrides[path](request)

        if path == "/api/health":
            return httpx.Response(200, json={"database": "ok", "version": "10.4.1", "commit": "abc123"})
        if path == "/api/user":
            return httpx.Response(200, json={"login": self.username, "email": "admin@localhost",
                                             "isGrafanaAdmin": True})
        if path == "/api/datasources":
            return httpx.Response(200, json=self.datasources)
        if path.startswith("/api/datasources/name/"):
            return self._datasource_by_name(path[len("/api/datasources/name/"):])
        if path.startswith(PROXY):
            return self._proxy(request, path[len(PROXY):])
        if path == "/api/search":
            return httpx.Response(200, json=self.dashboards)
        if path.startswith("/api/dashboards/uid/"):
            return self._dashboard(path[len("/api/dashboards/uid/"):])
        return httpx.Response(404, json={"message": "Not found"})

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body.get("user") == self.username and body.get("password") == self.password:
            return httpx.Response(200, json={"message": "Logged in", "token": self.token})
        return httpx.Response(401, json={"message": "Invalid username or password"})

    def _datasource_by_name(self, rest: str) -> httpx.Response:
        name, _, tail = rest.partition("/")
        record = next((d for d in self.datasources if d["name"] == name), None)
        if record is None:
            return httpx.Response(404, json={"message": "Data source not found"})
        if tail == "health":
            return httpx.Response(200, json={"status": "OK", "message": "Data source is working"})
        return httpx.Response(200, json=record)

    def _proxy(self, request: httpx.Request, rest: str) -> httpx.Response:
        uid, _, api = rest.partition("/")
        if not any(d["uid"] == uid for d in self.datasources):
            return httpx.Response(404, json={"message": "Data source not found"})

        params = request.url.params
        if api == "api/v1/query":
            expression = params["query"]
            if expression in self.query_timeouts:
                raise httpx.ReadTimeout("read timed out", request=request)
            if expression in self.query_errors:
                status, body = self.query_errors[expression]
                return httpx.Response(status, json=body)
            if "!!!" in expression:
                return httpx.Response(400, json={
                    "status": "error",
                    "errorType": "bad_data",
                    "error": "1:8: parse error: unexpected character: '!'",
                })
            return httpx.Response(200, json={
                "status": "success",
                "data": {"resultType": "vector", "result": self.metrics.get(expression, [])},
            })
        if api == "loki/api/v1/query_range":
            start, end = int(params["start"]), int(params["end"])
            return httpx.Response(200, json={
                "status": "success",
                "data": {"resultType": "streams", "result": [{
                    "stream": {"query": params["query"]},
                    "values": [[str(end - 1_000_000_000), "level=info msg=ready"],
                               [str(start + 1_000_000_000), "level=info msg=started"]],
                }]},
            })
        if api == "api/v1/rules":
            return httpx.Response(200, json={"status": "success", "data": {"groups": self.rule_groups}})
        return httpx.Response(404, json={"message": "Not found"})

    def _dashboard(self, uid: str) -> httpx.Response:
        hit = next((d for d in self.dashboards if d["uid"] == uid), None)
        if hit is None:
            return httpx.Response(404, json={"message": "Dashboard not found"})
        panels = [{"id": i, "title": f"Panel {i}"} for i in range(1, 5)]
        return httpx.Response(200, json={
            "meta": {"folderTitle": hit.get("folderTitle", "General")},
            "dashboard": {"uid": uid, "title": hit["title"], "panels": panels},
        })


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_state(monkeypatch) -> Generator[None, None, None]:
    """Isolate each test from STACKCHECK_* env vars and module caches."""
    for key in list(os.environ):
        if key.startswith("STACKCHECK_"):
            monkeypatch.delenv(key)
    reset_config()
    CatalogLoader.clear_cache()
    yield
    reset_config()
    CatalogLoader.clear_cache()


@pytest.fixture
def fake_grafana() -> FakeGrafana:
    return FakeGrafana()


@pytest.fixture
def config() -> StackCheckConfig:
    return StackCheckConfig(
        grafana_url=BASE_URL,
        username="admin",
        password="secret",
        max_retries=0,
        max_concurrency=4,
    )


@pytest.fixture
def error_response() -> Callable[[int, Optional[dict]], Callable[[httpx.Request], httpx.Response]]:
    """Build an override handler that always answers with ``status``."""

    def factory(status: int, body: Optional[dict] = None):
        return lambda request: httpx.Response(status, json=body or {"message": f"status {status}"})

    return factory
