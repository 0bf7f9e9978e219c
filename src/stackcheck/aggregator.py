"""
Pure reductions from fetched payloads to the scalar facts checks assert on.

Nothing here performs I/O; every function is deterministic given its input.
Checks name the fact they expect (see ``QUERY_FACTS``) rather than computing it.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from stackcheck.models import (
    AlertGroup,
    Dashboard,
    DashboardSummary,
    LogEntry,
    LogResult,
    QueryResult,
    Sample,
)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def series_count(result: QueryResult) -> int:
    return len(result.series)


def label_values(result: QueryResult, label: str) -> list[str]:
    """Distinct values of ``label`` across all series, in first-seen order."""
    seen: dict[str, None] = {}
    for s in result.series:
        value = s.labels.get(label)
        if value is not None:
            seen.setdefault(value, None)
    return list(seen)


def distinct_label_count(result: QueryResult, label: str) -> int:
    return len(label_values(result, label))


def _numeric(sample: Optional[Sample]) -> Optional[float]:
    """Sample value as a float; None for absent or non-numeric (string) samples."""
    if sample is None:
        return None
    try:
        return sample.as_float()
    except ValueError:
        return None


def first_value(result: QueryResult) -> Optional[float]:
    """Numeric value of the first series' instant sample, if there is one."""
    for s in result.series:
        value = _numeric(s.value)
        if value is not None:
            return value
    return None


def top_series(result: QueryResult, label: str, limit: int = 5) -> list[tuple[str, float]]:
    """``(label value, sample)`` pairs sorted by sample, largest first."""
    pairs = []
    for s in result.series:
        value = _numeric(s.value)
        if value is not None:
            pairs.append((s.labels.get(label, "unknown"), value))
    return sorted(pairs, key=lambda p: p[1], reverse=True)[:limit]


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


def stream_count(result: LogResult) -> int:
    return len(result.streams)


def total_log_entries(result: LogResult) -> int:
    return sum(len(stream.entries) for stream in result.streams)


def entries_outside(result: LogResult, start: int, end: int) -> list[LogEntry]:
    """Entries whose timestamp falls outside ``[start, end]``."""
    return [
        entry
        for stream in result.streams
        for entry in stream.entries
        if not start <= entry.timestamp_ns <= end
    ]


# ---------------------------------------------------------------------------
# Alert rules
# ---------------------------------------------------------------------------


def total_rule_count(groups: Iterable[AlertGroup]) -> int:
    return sum(len(g.rules) for g in groups)


def rules_by_group(groups: Iterable[AlertGroup]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for g in groups:
        counts[g.name] = counts.get(g.name, 0) + len(g.rules)
    return counts


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------


def dashboards_matching(
    dashboards: Iterable[DashboardSummary],
    needle: Optional[str],
    case_sensitive: bool = False,
) -> list[DashboardSummary]:
    """Dashboards whose title contains ``needle`` (all of them when None)."""
    if not needle:
        return list(dashboards)
    if case_sensitive:
        return [d for d in dashboards if needle in d.title]
    lowered = needle.lower()
    return [d for d in dashboards if lowered in d.title.lower()]


def panel_count(dashboard: Dashboard) -> int:
    return dashboard.panel_count


# Countable facts an instant-query check may assert on. Each takes the
# result and an optional label name.
QUERY_FACTS: dict[str, Callable[[QueryResult, Optional[str]], int]] = {
    "series_count": lambda result, label=None: series_count(result),
    "distinct_label_count": lambda result, label=None: distinct_label_count(result, label or ""),
}
