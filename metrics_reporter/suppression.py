"""Suppressed symbols: loading, metric binding and lookup.

The suppression file is produced by a source scanner that collects
``[SuppressMessage]`` attributes::

    {"suppressedSymbols": [
        {"filePath": "src/Foo.cs",
         "fullyQualifiedName": "MyApp.Foo.Bar(...)",
         "ruleId": "CA1506:AvoidExcessiveClassCoupling",
         "justification": "Composition root"}
    ]}

Each entry is bound to the metric its rule measures, so a suppressed CA1506
hides ``RoslynClassCoupling`` violations of that symbol.
"""

import json
import logging
from pathlib import Path

from metrics_reporter.errors import ParsingError, ReportIoError
from metrics_reporter.metrics import try_resolve_metric
from metrics_reporter.models import MetricIdentifier, SuppressedSymbolInfo
from metrics_reporter.normalizer import normalize
from metrics_reporter.parsers.sarif import metric_for_rule

logger = logging.getLogger(__name__)

#: Analyzer rules that measure a structural metric directly.
RULE_METRICS: dict[str, MetricIdentifier] = {
    "CA1505": MetricIdentifier.ROSLYN_MAINTAINABILITY_INDEX,
    "CA1502": MetricIdentifier.ROSLYN_CYCLOMATIC_COMPLEXITY,
    "CA1506": MetricIdentifier.ROSLYN_CLASS_COUPLING,
    "CA1501": MetricIdentifier.ROSLYN_DEPTH_OF_INHERITANCE,
}


def clean_rule_id(rule_id: str | None) -> str:
    """``'ca1506:AvoidExcessiveClassCoupling'`` -> ``'CA1506'``."""
    return (rule_id or "").split(":", 1)[0].strip().upper()


def metric_for_suppression(rule_id: str) -> MetricIdentifier | None:
    return RULE_METRICS.get(rule_id) or metric_for_rule(rule_id)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_suppressed_symbols(path: str | None) -> list[SuppressedSymbolInfo]:
    """Read and bind the suppression file. No path means no suppressions.

    Raises:
        ReportIoError: if the file cannot be read.
        ParsingError:  if it is not valid JSON of the expected shape.
    """
    if not path:
        return []
    try:
        text = Path(path).read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ReportIoError(f"Cannot read suppressed symbols file '{path}': {exc}") from exc
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParsingError(f"Malformed suppressed symbols JSON in '{path}': {exc}") from exc

    entries = raw.get("suppressedSymbols") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise ParsingError(f"'{path}' must contain a 'suppressedSymbols' array.")

    symbols: list[SuppressedSymbolInfo] = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("fullyQualifiedName") or not entry.get("ruleId"):
            logger.warning("Skipping incomplete suppression entry %r", entry)
            continue
        symbols.append(SuppressedSymbolInfo(
            file_path=entry.get("filePath") or "",
            fully_qualified_name=entry["fullyQualifiedName"],
            rule_id=entry["ruleId"],
            metric=entry.get("metric"),
            justification=entry.get("justification"),
        ))
    logger.debug("Loaded %d suppressed symbols from '%s'", len(symbols), path)
    return bind_metrics(symbols)


def bind_metrics(entries: list[SuppressedSymbolInfo]) -> list[SuppressedSymbolInfo]:
    """Normalize rule ids and fill in the metric each entry suppresses.

    An explicit metric is kept when it resolves; otherwise the rule decides.
    """
    bound: list[SuppressedSymbolInfo] = []
    for entry in entries:
        rule_id = clean_rule_id(entry.rule_id)
        metric = try_resolve_metric(entry.metric) or metric_for_suppression(rule_id)
        bound.append(SuppressedSymbolInfo(
            file_path=entry.file_path,
            fully_qualified_name=entry.fully_qualified_name,
            rule_id=rule_id,
            metric=metric.value if metric is not None else entry.metric,
            justification=entry.justification,
        ))
    return bound


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

class SuppressedSymbolIndex:
    """Answers "is this (symbol, metric[, rule]) suppressed?" in O(1)."""

    def __init__(self, entries: list[SuppressedSymbolInfo]) -> None:
        self._by_metric: set[tuple[str, MetricIdentifier]] = set()
        self._by_rule: set[tuple[str, str]] = set()
        for entry in entries:
            fqn = normalize(entry.fully_qualified_name)
            metric = try_resolve_metric(entry.metric)
            if metric is not None:
                self._by_metric.add((fqn, metric))
            rule_id = clean_rule_id(entry.rule_id)
            if rule_id:
                self._by_rule.add((fqn, rule_id))

    def __len__(self) -> int:
        return len(self._by_metric) + len(self._by_rule)

    def is_suppressed(self, fqn: str, metric: MetricIdentifier, rule_id: str | None = None) -> bool:
        key = normalize(fqn)
        if rule_id is not None:
            return (key, clean_rule_id(rule_id)) in self._by_rule
        return (key, metric) in self._by_metric
