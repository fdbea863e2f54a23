"""Threshold configuration and status evaluation.

Usage:
    table = load_thresholds("thresholds.json")           # defaults + overrides
    apply_thresholds(report, table)                       # sets MetricValue.status
    evaluate(Decimal("12"), table[metric].for_level(CodeElementKind.TYPE))

Thresholds JSON:

    {"metrics": [
        {"name": "RoslynCyclomaticComplexity",
         "description": "Cyclomatic complexity",
         "higherIsBetter": false,
         "symbolThresholds": {"Type": {"warning": 10, "error": 20},
                              "Member": {"warning": 8, "error": 15}}}
    ]}

Single quotes are accepted in place of double quotes. Levels not listed keep
their default values; every level of every metric is always present.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

from metrics_reporter.errors import ReportIoError, ValidationError
from metrics_reporter.metrics import try_resolve_metric
from metrics_reporter.models import (
    SYMBOL_LEVELS,
    CodeElementKind,
    MetricIdentifier,
    MetricsReport,
    MetricThreshold,
    MetricThresholdDefinition,
    ThresholdStatus,
    ThresholdTable,
)

logger = logging.getLogger(__name__)

M = MetricIdentifier

# metric: (warning, error, higher_is_better, positive_delta_neutral)
DEFAULTS: dict[MetricIdentifier, tuple[int | None, int | None, bool, bool]] = {
    M.ALTCOVER_SEQUENCE_COVERAGE: (75, 60, True, False),
    M.ALTCOVER_BRANCH_COVERAGE: (70, 55, True, False),
    M.ALTCOVER_CYCLOMATIC_COMPLEXITY: (15, 30, False, False),
    M.ALTCOVER_NPATH_COMPLEXITY: (200, 400, False, False),
    M.ROSLYN_MAINTAINABILITY_INDEX: (65, 40, True, False),
    M.ROSLYN_CYCLOMATIC_COMPLEXITY: (12, 25, False, False),
    M.ROSLYN_CLASS_COUPLING: (50, 80, False, False),
    M.ROSLYN_DEPTH_OF_INHERITANCE: (5, 8, False, False),
    M.ROSLYN_SOURCE_LINES: (None, None, False, True),
    M.ROSLYN_EXECUTABLE_LINES: (None, None, False, True),
    M.SARIF_CA_RULE_VIOLATIONS: (5, 10, False, False),
    M.SARIF_IDE_RULE_VIOLATIONS: (10, 20, False, False),
}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _past(value: Decimal, limit: Decimal, higher_is_better: bool) -> bool:
    return value < limit if higher_is_better else value > limit


def evaluate(value: Decimal | None, threshold: MetricThreshold | None) -> ThresholdStatus:
    """Classify *value* against *threshold*.

    The error limit is checked before the warning limit. A value equal to a
    limit is not past it.
    """
    if value is None:
        return ThresholdStatus.NOT_APPLICABLE
    if threshold is None:
        return ThresholdStatus.SUCCESS
    if threshold.error is not None and _past(value, threshold.error, threshold.higher_is_better):
        return ThresholdStatus.ERROR
    if threshold.warning is not None and _past(value, threshold.warning, threshold.higher_is_better):
        return ThresholdStatus.WARNING
    return ThresholdStatus.SUCCESS


def threshold_for(table: ThresholdTable, metric: MetricIdentifier,
                  level: CodeElementKind) -> MetricThreshold | None:
    definition = table.get(metric)
    return definition.for_level(level) if definition is not None else None


def apply_thresholds(report: MetricsReport, table: ThresholdTable) -> None:
    """Recompute the status of every metric on every node of *report*."""
    for node in report.iter_nodes():
        for metric, value in node.metrics.items():
            value.status = evaluate(value.value, threshold_for(table, metric, node.kind))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _uniform(warning, error, higher_is_better: bool, positive_delta_neutral: bool) -> dict:
    return {
        level: MetricThreshold(
            warning=Decimal(warning) if warning is not None else None,
            error=Decimal(error) if error is not None else None,
            higher_is_better=higher_is_better,
            positive_delta_neutral=positive_delta_neutral,
        )
        for level in SYMBOL_LEVELS
    }


def default_thresholds() -> ThresholdTable:
    return {
        metric: MetricThresholdDefinition(levels=_uniform(*limits))
        for metric, limits in DEFAULTS.items()
    }


def _limit(raw: dict, key: str, where: str) -> Decimal | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"{where}: '{key}' must be a number, got {value!r}.")
    return Decimal(str(value))


def _parse_level(name: str) -> CodeElementKind | None:
    for level in SYMBOL_LEVELS:
        if level.value.lower() == name.lower():
            return level
    return None


def _apply_entry(entry: Any, table: ThresholdTable, aliases: dict[str, list[str]] | None) -> None:
    if not isinstance(entry, dict):
        raise ValidationError(f"Each thresholds entry must be an object, got {entry!r}.")
    name = entry.get("name")
    metric = try_resolve_metric(name, aliases) if isinstance(name, str) else None
    if metric is None:
        raise ValidationError(f"Unknown metric '{name}' in thresholds.")

    existing = table.get(metric) or MetricThresholdDefinition(levels=_uniform(None, None, True, False))
    sample = next(iter(existing.levels.values()), MetricThreshold())
    higher_is_better = entry.get("higherIsBetter", sample.higher_is_better)
    positive_delta_neutral = entry.get("positiveDeltaNeutral", sample.positive_delta_neutral)
    if not isinstance(higher_is_better, bool) or not isinstance(positive_delta_neutral, bool):
        raise ValidationError(f"'{metric.value}': higherIsBetter/positiveDeltaNeutral must be booleans.")

    limits = {level: (t.warning, t.error) for level, t in existing.levels.items()}
    symbol_thresholds = entry.get("symbolThresholds") or {}
    if not isinstance(symbol_thresholds, dict):
        raise ValidationError(f"'{metric.value}': symbolThresholds must be an object.")
    for level_name, raw in symbol_thresholds.items():
        level = _parse_level(level_name)
        if level is None:
            raise ValidationError(f"'{metric.value}': unknown symbol level '{level_name}'.")
        if not isinstance(raw, dict):
            raise ValidationError(f"'{metric.value}.{level_name}' must be an object.")
        where = f"{metric.value}.{level.value}"
        limits[level] = (_limit(raw, "warning", where), _limit(raw, "error", where))

    description = entry.get("description")
    table[metric] = MetricThresholdDefinition(
        description=description if isinstance(description, str) and description.strip()
        else existing.description,
        levels={
            level: MetricThreshold(
                warning=limits.get(level, (None, None))[0],
                error=limits.get(level, (None, None))[1],
                higher_is_better=higher_is_better,
                positive_delta_neutral=positive_delta_neutral,
            )
            for level in SYMBOL_LEVELS
        },
    )


def parse_thresholds(payload: str | dict | None,
                     aliases: dict[str, list[str]] | None = None,
                     base: ThresholdTable | None = None) -> ThresholdTable:
    """Overlay *payload* on *base* (the default thresholds when omitted).

    Raises:
        ValidationError: if the payload is not valid JSON, has the wrong
                         shape, or names an unknown metric or level.
    """
    table = dict(base) if base is not None else default_thresholds()
    if payload is None or (isinstance(payload, str) and not payload.strip()):
        return table

    if isinstance(payload, str):
        try:
            payload = json.loads(payload.replace("'", '"'), parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Failed to parse metrics thresholds JSON: {exc}") from exc

    metrics = payload.get("metrics") if isinstance(payload, dict) else None
    if not isinstance(metrics, list):
        raise ValidationError(
            "Invalid thresholds JSON format. Expected object with 'metrics' array property."
        )
    for entry in metrics:
        _apply_entry(entry, table, aliases)
    return table


def load_thresholds(path: str | None = None, inline: str | dict | None = None,
                    aliases: dict[str, list[str]] | None = None) -> ThresholdTable:
    """Build the threshold table from a file, an inline payload, or defaults.

    When both are given the inline payload is applied on top of the file.

    Raises:
        ReportIoError:   if *path* cannot be read.
        ValidationError: if either payload is invalid.
    """
    table = default_thresholds()
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise ReportIoError(f"Cannot read thresholds file '{path}': {exc}") from exc
        table = parse_thresholds(text, aliases, base=table)
        logger.debug("Loaded thresholds from '%s'", path)
    if inline:
        table = parse_thresholds(inline, aliases, base=table)
    return table
