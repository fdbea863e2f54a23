"""Report JSON reader and writer.

Usage:
    write_report(report, "build/metrics-report.json")
    report = load_report("build/metrics-report.json")
    text = dumps(payload, pretty=True)

Keys are camelCase, enums are written by value, and null fields are left out.
Children are written as ordered lists under ``assemblies``, ``namespaces``,
``types`` and ``members``. Metric values are written with their exact decimal digits
and read back as ``Decimal``, so no value is routed through float.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from metrics_reporter.errors import ParsingError, ReportIoError
from metrics_reporter.models import (
    CHILD_KEYS,
    CodeElementKind,
    MemberKind,
    MetricIdentifier,
    MetricsNode,
    MetricsReport,
    MetricThreshold,
    MetricThresholdDefinition,
    MetricValue,
    ReportMetadata,
    ReportPaths,
    RuleDescription,
    SarifRuleBreakdownEntry,
    SarifRuleViolationDetail,
    SourceLocation,
    SuppressedSymbolInfo,
    ThresholdStatus,
    ThresholdTable,
)

logger = logging.getLogger(__name__)

_NEXT_KIND = {
    CodeElementKind.SOLUTION: CodeElementKind.ASSEMBLY,
    CodeElementKind.ASSEMBLY: CodeElementKind.NAMESPACE,
    CodeElementKind.NAMESPACE: CodeElementKind.TYPE,
    CodeElementKind.TYPE: CodeElementKind.MEMBER,
}


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def number(value: Decimal | None) -> int | Decimal | None:
    """JSON-friendly rendering of a Decimal: int when integral, else the Decimal.

    Non-integral values stay Decimal so ``dumps`` can write their exact digits.
    """
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return value


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ParsingError(f"Expected a number, got {value!r}.")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise ParsingError(f"Expected a number, got {value!r}.") from exc
    raise ParsingError(f"Expected a number, got {value!r}.")


def _compact(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


def _decimal_text(value: Decimal) -> str:
    text = str(value)
    if "." in text and "E" not in text:
        text = text.rstrip("0").rstrip(".")
    return text


class _ExactNumber(float):
    """A float that is written as the exact text of the Decimal it came from."""

    def __new__(cls, value: Decimal) -> "_ExactNumber":
        obj = super().__new__(cls, value)
        obj.text = _decimal_text(value)
        return obj


class ReportEncoder(json.JSONEncoder):
    """JSON encoder that writes Decimal values as numbers without going through float."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            if not o.is_finite():
                raise ValueError(f"Cannot write non-finite number {o!r} to JSON.")
            value = number(o)
            return value if isinstance(value, int) else _ExactNumber(value)
        return super().default(o)

    def iterencode(self, o: Any, _one_shot: bool = False):
        markers = {} if self.check_circular else None
        encoder = (json.encoder.encode_basestring_ascii if self.ensure_ascii
                   else json.encoder.encode_basestring)

        def floatstr(value: float) -> str:
            if isinstance(value, _ExactNumber):
                return value.text
            if value != value or value in (float("inf"), float("-inf")):
                raise ValueError(f"Out of range float values are not JSON compliant: {value!r}")
            return float.__repr__(value)

        return json.encoder._make_iterencode(
            markers, self.default, encoder, self.indent, floatstr,
            self.key_separator, self.item_separator, self.sort_keys,
            self.skipkeys, _one_shot,
        )(o, 0)


def dumps(data: Any, pretty: bool = False) -> str:
    """Serialize a payload (report dict or query result) to JSON text."""
    return json.dumps(data, indent=2 if pretty else None, ensure_ascii=False, cls=ReportEncoder)


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

def _source_to_dict(source: SourceLocation | None) -> dict | None:
    if source is None:
        return None
    return _compact({"path": source.path, "startLine": source.start_line, "endLine": source.end_line})


def _breakdown_to_dict(breakdown: dict[str, SarifRuleBreakdownEntry] | None) -> dict | None:
    if not breakdown:
        return None
    return {
        rule_id: {
            "count": entry.count,
            "violations": [
                _compact({
                    "message": v.message,
                    "uri": v.uri,
                    "startLine": v.start_line,
                    "endLine": v.end_line,
                })
                for v in entry.violations
            ],
        }
        for rule_id, entry in breakdown.items()
    }


def _metric_to_dict(value: MetricValue) -> dict:
    return _compact({
        "value": number(value.value),
        "delta": number(value.delta),
        "status": value.status.value,
        "breakdown": _breakdown_to_dict(value.breakdown),
    })


def node_to_dict(node: MetricsNode) -> dict:
    data = _compact({
        "name": node.name,
        "fullyQualifiedName": node.fully_qualified_name,
        "memberKind": node.member_kind.value if node.member_kind is not None else None,
        "source": _source_to_dict(node.source),
        "isNew": True if node.is_new else None,
    })
    data["metrics"] = {metric.value: _metric_to_dict(v) for metric, v in node.metrics.items()}
    child_key = CHILD_KEYS.get(node.kind)
    if child_key is not None:
        data[child_key] = [node_to_dict(child) for child in node.children.values()]
    return data


def thresholds_to_dict(table: ThresholdTable) -> dict:
    return {
        metric.value: _compact({
            "description": definition.description,
            "symbolThresholds": {
                level.value: _compact({
                    "warning": number(threshold.warning),
                    "error": number(threshold.error),
                    "higherIsBetter": threshold.higher_is_better,
                    "positiveDeltaNeutral": threshold.positive_delta_neutral,
                })
                for level, threshold in definition.levels.items()
            },
        })
        for metric, definition in table.items()
    }


def _metadata_to_dict(metadata: ReportMetadata) -> dict:
    paths = metadata.paths
    return _compact({
        "generatedAtUtc": metadata.generated_at_utc,
        "baselineReference": metadata.baseline_reference,
        "paths": _compact({
            "report": paths.report,
            "baseline": paths.baseline,
            "thresholds": paths.thresholds,
            "suppressedSymbols": paths.suppressed_symbols,
        }),
        "thresholds": thresholds_to_dict(metadata.thresholds),
        "metricDescriptors": {m.value: unit for m, unit in metadata.metric_descriptors.items()},
        "ruleDescriptions": {
            rule_id: _compact({
                "shortDescription": d.short_description,
                "fullDescription": d.full_description,
                "helpUri": d.help_uri,
                "category": d.category,
            })
            for rule_id, d in metadata.rule_descriptions.items()
        },
        "excludedAssemblyNames": metadata.excluded_assembly_names,
        "excludedTypeNamePatterns": metadata.excluded_type_name_patterns,
        "excludedMemberNamePatterns": metadata.excluded_member_name_patterns,
        "suppressedSymbols": [
            _compact({
                "filePath": s.file_path,
                "fullyQualifiedName": s.fully_qualified_name,
                "ruleId": s.rule_id,
                "metric": s.metric,
                "justification": s.justification,
            })
            for s in metadata.suppressed_symbols
        ],
        "metricAliases": {name: list(aliases) for name, aliases in metadata.metric_aliases.items()},
    })


def report_to_dict(report: MetricsReport) -> dict:
    return {
        "metadata": _metadata_to_dict(report.metadata),
        "solution": node_to_dict(report.solution),
    }


def write_report(report: MetricsReport, path: str, pretty: bool = True) -> None:
    """Write *report* to *path*, creating parent directories.

    Raises:
        ReportIoError: if the file cannot be written.
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(dumps(report_to_dict(report), pretty=pretty), encoding="utf-8")
    except OSError as exc:
        raise ReportIoError(f"Cannot write report to '{path}': {exc}") from exc
    logger.info("Report written to '%s'", path)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

def _metric_key(name: str) -> MetricIdentifier | None:
    try:
        return MetricIdentifier(name)
    except ValueError:
        logger.warning("Ignoring unknown metric '%s' in report", name)
        return None


def _source_from_dict(data: dict | None) -> SourceLocation | None:
    if not data:
        return None
    return SourceLocation(path=data["path"], start_line=data.get("startLine"), end_line=data.get("endLine"))


def _breakdown_from_dict(data: dict | None) -> dict[str, SarifRuleBreakdownEntry] | None:
    if not data:
        return None
    return {
        rule_id: SarifRuleBreakdownEntry(
            count=int(entry.get("count", 0)),
            violations=[
                SarifRuleViolationDetail(
                    message=v.get("message"),
                    uri=v.get("uri"),
                    start_line=v.get("startLine"),
                    end_line=v.get("endLine"),
                )
                for v in entry.get("violations") or []
            ],
        )
        for rule_id, entry in data.items()
    }


def _metrics_from_dict(data: dict) -> dict[MetricIdentifier, MetricValue]:
    metrics: dict[MetricIdentifier, MetricValue] = {}
    for name, raw in (data or {}).items():
        metric = _metric_key(name)
        if metric is None:
            continue
        metrics[metric] = MetricValue(
            value=to_decimal(raw.get("value")),
            delta=to_decimal(raw.get("delta")),
            status=ThresholdStatus(raw.get("status", ThresholdStatus.NOT_APPLICABLE.value)),
            breakdown=_breakdown_from_dict(raw.get("breakdown")),
        )
    return metrics


def node_from_dict(data: dict, kind: CodeElementKind = CodeElementKind.SOLUTION) -> MetricsNode:
    member_kind = data.get("memberKind")
    node = MetricsNode(
        kind=kind,
        name=data["name"],
        fully_qualified_name=data["fullyQualifiedName"],
        source=_source_from_dict(data.get("source")),
        metrics=_metrics_from_dict(data.get("metrics")),
        is_new=bool(data.get("isNew", False)),
        member_kind=MemberKind(member_kind) if member_kind is not None else None,
    )
    child_key = CHILD_KEYS.get(kind)
    if child_key is not None:
        for child in data.get(child_key) or []:
            node.add_child(node_from_dict(child, _NEXT_KIND[kind]))
    return node


def thresholds_from_dict(data: dict | None) -> ThresholdTable:
    table: ThresholdTable = {}
    for name, raw in (data or {}).items():
        metric = _metric_key(name)
        if metric is None:
            continue
        table[metric] = MetricThresholdDefinition(
            description=raw.get("description"),
            levels={
                CodeElementKind(level): MetricThreshold(
                    warning=to_decimal(t.get("warning")),
                    error=to_decimal(t.get("error")),
                    higher_is_better=bool(t.get("higherIsBetter", True)),
                    positive_delta_neutral=bool(t.get("positiveDeltaNeutral", False)),
                )
                for level, t in (raw.get("symbolThresholds") or {}).items()
            },
        )
    return table


def _metadata_from_dict(data: dict) -> ReportMetadata:
    paths = data.get("paths") or {}
    return ReportMetadata(
        generated_at_utc=data["generatedAtUtc"],
        baseline_reference=data.get("baselineReference"),
        paths=ReportPaths(
            report=paths.get("report"),
            baseline=paths.get("baseline"),
            thresholds=paths.get("thresholds"),
            suppressed_symbols=paths.get("suppressedSymbols"),
        ),
        thresholds=thresholds_from_dict(data.get("thresholds")),
        metric_descriptors={
            metric: unit
            for metric, unit in (
                (_metric_key(name), unit) for name, unit in (data.get("metricDescriptors") or {}).items()
            )
            if metric is not None
        },
        rule_descriptions={
            rule_id: RuleDescription(
                short_description=d.get("shortDescription"),
                full_description=d.get("fullDescription"),
                help_uri=d.get("helpUri"),
                category=d.get("category"),
            )
            for rule_id, d in (data.get("ruleDescriptions") or {}).items()
        },
        excluded_assembly_names=data.get("excludedAssemblyNames"),
        excluded_type_name_patterns=data.get("excludedTypeNamePatterns"),
        excluded_member_name_patterns=data.get("excludedMemberNamePatterns"),
        suppressed_symbols=[
            SuppressedSymbolInfo(
                file_path=s["filePath"],
                fully_qualified_name=s["fullyQualifiedName"],
                rule_id=s["ruleId"],
                metric=s.get("metric"),
                justification=s.get("justification"),
            )
            for s in data.get("suppressedSymbols") or []
        ],
        metric_aliases={name: list(aliases) for name, aliases in (data.get("metricAliases") or {}).items()},
    )


def report_from_dict(data: dict) -> MetricsReport:
    """Rebuild a report from its JSON form.

    Raises:
        ParsingError: if required fields are missing or have the wrong type.
    """
    if not isinstance(data, dict):
        raise ParsingError("Report JSON must be an object at the top level.")
    try:
        return MetricsReport(
            metadata=_metadata_from_dict(data["metadata"]),
            solution=node_from_dict(data["solution"]),
        )
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise ParsingError(f"Malformed report structure: {exc!r}") from exc


def parse_report_text(text: str, origin: str) -> MetricsReport:
    try:
        data = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise ParsingError(f"Malformed report JSON in '{origin}': {exc}") from exc
    return report_from_dict(data)


def load_report(path: str) -> MetricsReport:
    """Read a report written by ``write_report``.

    Raises:
        ReportIoError: if the file is missing or unreadable.
        ParsingError:  if the content is not a valid report.
    """
    try:
        text = Path(path).read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise ReportIoError(f"Report not found: '{path}'") from exc
    except OSError as exc:
        raise ReportIoError(f"Cannot read report '{path}': {exc}") from exc
    return parse_report_text(text, path)
