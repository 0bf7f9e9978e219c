"""
stackcheck CLI - Verify a Grafana / Prometheus / Loki observability stack.

Commands:
    stackcheck run      Authenticate, discover datasources and run every check
    stackcheck checks   List the check catalog with mandatory/optional flags

Exit codes (``run``):
    0  every mandatory check passed
    1  at least one mandatory check failed
    2  authentication failed; no check ran
    3  configuration or catalog error
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import click
import yaml
from pydantic import ValidationError

from stackcheck import __version__
from stackcheck.checks import DEFAULT_CATALOG, CatalogLoader, CheckCatalog
from stackcheck.config import StackCheckConfig, get_config
from stackcheck.errors import AuthError
from stackcheck.log import configure_logging
from stackcheck.report import (
    EXIT_AUTH_FAILED,
    EXIT_CONFIG_ERROR,
    RENDERERS,
    render_aborted_report,
)
from stackcheck.suite import VerificationSuite


def _load_catalog(path: Optional[str]) -> CheckCatalog:
    if not path:
        return DEFAULT_CATALOG
    try:
        return CatalogLoader().load(Path(path))
    except (FileNotFoundError, TypeError, yaml.YAMLError, ValidationError) as e:
        click.echo(click.style(f"Invalid check catalog {path}: {e}", fg="red"), err=True)
        raise SystemExit(EXIT_CONFIG_ERROR)


def _build_config(**overrides) -> StackCheckConfig:
    try:
        return get_config(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        click.echo(click.style(f"Invalid configuration: {e}", fg="red"), err=True)
        raise SystemExit(EXIT_CONFIG_ERROR)


@click.group()
@click.version_option(version=__version__, prog_name="stackcheck")
def main():
    """stackcheck - Verify an observability stack through its Grafana gateway."""
    pass


@main.command("run")
@click.option("--url", "grafana_url", default=None, help="Gateway URL (STACKCHECK_GRAFANA_URL)")
@click.option("--user", "username", default=None, help="Login (STACKCHECK_USERNAME)")
@click.option("--password", default=None, help="Password (prefer STACKCHECK_PASSWORD)")
@click.option("--catalog", "catalog_path", type=click.Path(), default=None, help="YAML check catalog")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "markdown", "json"]), default="text")
@click.option("--output", "-o", type=click.Path(), help="Write report to file")
@click.option("--max-concurrency", type=int, default=None, help="Cap on outstanding requests")
@click.option("--timeout", "request_timeout_s", type=float, default=None, help="Per-request timeout (s)")
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]), default=None)
def run_cmd(
    grafana_url: Optional[str],
    username: Optional[str],
    password: Optional[str],
    catalog_path: Optional[str],
    output_format: str,
    output: Optional[str],
    max_concurrency: Optional[int],
    request_timeout_s: Optional[float],
    log_level: Optional[str],
):
    """Run the verification suite against a gateway.

    Examples:
        stackcheck run --url http://localhost:3000 --user admin
        STACKCHECK_PASSWORD=... stackcheck run --format json -o report.json
        stackcheck run --catalog checks.yaml --max-concurrency 4
    """
    config = _build_config(
        grafana_url=grafana_url,
        username=username,
        password=password,
        catalog_path=catalog_path,
        max_concurrency=max_concurrency,
        request_timeout_s=request_timeout_s,
        log_level=log_level,
    )
    configure_logging(config.log_level, config.log_format)
    catalog_file = config.get_catalog_path()
    catalog = _load_catalog(str(catalog_file) if catalog_file else None)

    try:
        report = VerificationSuite(catalog).run_sync(config)
    except AuthError as e:
        click.echo(click.style(f"✗ Authentication failed: {e.diagnostic}", fg="red"), err=True)
        if output:
            aborted = render_aborted_report(
                config.grafana_url, f"authentication failed: {e.diagnostic}", output_format
            )
            Path(output).write_text(aborted, encoding="utf-8")
        raise SystemExit(EXIT_AUTH_FAILED)

    report_text = RENDERERS[output_format](report)
    if output:
        Path(output).write_text(report_text, encoding="utf-8")
        click.echo(f"✓ Report written to {output}")
    else:
        click.echo(report_text)

    raise SystemExit(report.exit_code)


@main.command("checks")
@click.option("--catalog", "catalog_path", type=click.Path(), default=None, help="YAML check catalog")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]), default="text")
def checks_cmd(catalog_path: Optional[str], output_format: str):
    """List checks, their group, and whether they are mandatory or optional."""
    catalog = _load_catalog(catalog_path)

    if output_format == "json":
        data = [
            {
                "name": spec.name,
                "group": spec.group.value,
                "kind": spec.kind.value,
                "optional": spec.optional,
                "datasource": spec.datasource,
            }
            for spec in catalog.checks
        ]
        click.echo(json.dumps(data, indent=2))
        return

    lines: List[str] = []
    for group, specs in catalog.groups():
        lines.append(f"{group.value}:")
        for spec in specs:
            flag = "optional " if spec.optional else "mandatory"
            lines.append(f"  [{flag}] {spec.name}")
    lines.append("")
    lines.append(
        f"{len(catalog.mandatory_checks())} mandatory, {len(catalog.optional_checks())} optional"
    )
    click.echo("\n".join(lines))


if __name__ == "__main__":
    main()
