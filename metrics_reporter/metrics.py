"""Metric identifier resolution.

Strings only become ``MetricIdentifier`` values here, at the boundary (CLI
options, threshold files, suppression entries). Everything downstream works
with the enum.

Usage:
    resolve_metric("Coupling")                       # -> ROSLYN_CLASS_COUPLING
    resolve_metric("fanout", {"RoslynClassCoupling": ["fanout"]})
"""

from metrics_reporter.errors import ValidationError
from metrics_reporter.models import MetricIdentifier

M = MetricIdentifier

BUILTIN_ALIASES: dict[str, MetricIdentifier] = {
    "complexity": M.ROSLYN_CYCLOMATIC_COMPLEXITY,
    "cyclomaticcomplexity": M.ROSLYN_CYCLOMATIC_COMPLEXITY,
    "altcovercomplexity": M.ALTCOVER_CYCLOMATIC_COMPLEXITY,
    "maintainability": M.ROSLYN_MAINTAINABILITY_INDEX,
    "maintainabilityindex": M.ROSLYN_MAINTAINABILITY_INDEX,
    "coupling": M.ROSLYN_CLASS_COUPLING,
    "classcoupling": M.ROSLYN_CLASS_COUPLING,
    "inheritance": M.ROSLYN_DEPTH_OF_INHERITANCE,
    "depthofinheritance": M.ROSLYN_DEPTH_OF_INHERITANCE,
    "coverage": M.ALTCOVER_SEQUENCE_COVERAGE,
    "sequencecoverage": M.ALTCOVER_SEQUENCE_COVERAGE,
    "branchcoverage": M.ALTCOVER_BRANCH_COVERAGE,
    "npath": M.ALTCOVER_NPATH_COMPLEXITY,
    "sourcelines": M.ROSLYN_SOURCE_LINES,
    "executablelines": M.ROSLYN_EXECUTABLE_LINES,
    "caviolations": M.SARIF_CA_RULE_VIOLATIONS,
    "ideviolations": M.SARIF_IDE_RULE_VIOLATIONS,
}

_BY_NAME = {m.value.lower(): m for m in MetricIdentifier}


def try_resolve_metric(
    text: str | None,
    aliases: dict[str, list[str]] | None = None,
) -> MetricIdentifier | None:
    """Resolve *text* to a metric, or return None when it is unknown."""
    if not text or not text.strip():
        return None
    key = text.strip().lower()
    if key in _BY_NAME:
        return _BY_NAME[key]
    if key in BUILTIN_ALIASES:
        return BUILTIN_ALIASES[key]
    for metric_name, names in (aliases or {}).items():
        if key in (n.lower() for n in names):
            return _BY_NAME.get(metric_name.lower())
    return None


def resolve_metric(
    text: str | None,
    aliases: dict[str, list[str]] | None = None,
) -> MetricIdentifier:
    """Resolve *text* to a metric.

    Raises:
        ValidationError: if the name is neither a metric nor a known alias.
    """
    metric = try_resolve_metric(text, aliases)
    if metric is None:
        known = ", ".join(m.value for m in MetricIdentifier)
        raise ValidationError(f"Unknown metric '{text}'. Known metrics: {known}")
    return metric


def parse_metric_aliases(raw) -> dict[str, list[str]]:
    """Validate a ``{metric: [alias, ...]}`` mapping from configuration.

    Raises:
        ValidationError: on a wrong shape, empty aliases or unknown metric names.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("metric_aliases must be a mapping of metric name to alias list.")

    result: dict[str, list[str]] = {}
    for name, values in raw.items():
        metric = _BY_NAME.get(str(name).lower())
        if metric is None:
            raise ValidationError(f"metric_aliases.{name}: unknown metric.")
        if not isinstance(values, list) or not values:
            raise ValidationError(f"metric_aliases.{name} must be a non-empty list of strings.")
        aliases: list[str] = []
        for value in values:
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"metric_aliases.{name} must contain only non-empty strings.")
            aliases.append(value.strip())
        result[metric.value] = aliases
    return result


def describe_metrics() -> dict[MetricIdentifier, str]:
    """Unit of every metric, stored in report metadata."""
    return {m: m.unit for m in MetricIdentifier}
