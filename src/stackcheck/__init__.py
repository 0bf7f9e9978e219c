"""
stackcheck - Verification harness for an observability stack behind Grafana.

Authenticates against the Grafana gateway, discovers the datasources it
fronts (Prometheus, Loki, Alertmanager), runs proxied queries against each,
and checks that dashboards, alert rules and per-namespace metrics exist and
respond. Each check yields pass, fail or skip; the run exits non-zero when
any mandatory check fails.

Example usage:
    from stackcheck import VerificationSuite, get_config

    report = VerificationSuite().run_sync(get_config())
    for outcome in report.outcomes:
        print(outcome.name, outcome.status.value, outcome.detail)
"""

__version__ = "0.1.0"
__all__ = [
    "VerificationSuite",
    "DEFAULT_CATALOG",
    "get_config",
    "__version__",
]


# Lazy imports keep `stackcheck --version` light
def __getattr__(name: str):
    if name == "VerificationSuite":
        from stackcheck.suite import VerificationSuite
        return VerificationSuite
    if name == "DEFAULT_CATALOG":
        from stackcheck.checks import DEFAULT_CATALOG
        return DEFAULT_CATALOG
    if name == "get_config":
        from stackcheck.config import get_config
        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
