"""Query engine over a generated metrics report.

Functions:
    MetricsReader(report).read_any(namespace, metric, ...)      -> QueryResult
    MetricsReader(report).read_sarif(namespace, metric, ...)    -> QueryResult
    MetricsReader(report).test(symbol, metric, ...)             -> dict

All queries are read-only. A query that matches nothing is not an error: it
returns ``QueryResult(found=False)`` with a "no violations" payload.

Violation ordering (``read_any``):
    1. types before members
    2. Error before Warning
    3. larger |delta| first
    4. fully qualified name (ordinal)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from metrics_reporter.errors import ValidationError
from metrics_reporter.metrics import resolve_metric
from metrics_reporter.models import (
    CodeElementKind,
    MetricIdentifier,
    MetricsNode,
    MetricsReport,
    MetricThreshold,
    MetricValue,
    SuppressedSymbolInfo,
    ThresholdStatus,
    ThresholdTable,
)
from metrics_reporter.normalizer import GLOBAL_NAMESPACE, namespace_of_type, normalize, split_member_fqn
from metrics_reporter.suppression import SuppressedSymbolIndex
from metrics_reporter.thresholds import default_thresholds, evaluate, threshold_for

_VIOLATIONS = (ThresholdStatus.ERROR, ThresholdStatus.WARNING)
_NAMESPACE_BOUNDARIES = (".", "+", ":")


class SymbolKind(str, Enum):
    ANY = "Any"
    TYPE = "Type"
    MEMBER = "Member"

    @classmethod
    def parse(cls, text: str | None) -> "SymbolKind":
        for kind in cls:
            if kind.value.lower() == (text or "any").strip().lower():
                return kind
        raise ValidationError(f"Unknown symbol kind '{text}'. Use Any, Type or Member.")

    @property
    def kinds(self) -> tuple[CodeElementKind, ...]:
        if self is SymbolKind.TYPE:
            return (CodeElementKind.TYPE,)
        if self is SymbolKind.MEMBER:
            return (CodeElementKind.MEMBER,)
        return CodeElementKind.TYPE, CodeElementKind.MEMBER


class GroupBy(str, Enum):
    METRIC = "metric"
    NAMESPACE = "namespace"
    TYPE = "type"
    METHOD = "method"
    RULE_ID = "ruleId"

    @classmethod
    def parse(cls, text: str | None) -> "GroupBy | None":
        if text is None or not text.strip() or text.strip().lower() == "none":
            return None
        for option in cls:
            if option.value.lower() == text.strip().lower():
                return option
        raise ValidationError(
            f"Unknown group-by '{text}'. Use metric, namespace, type, method or ruleId."
        )


# ---------------------------------------------------------------------------
# Symbol helpers
# ---------------------------------------------------------------------------

def matches_namespace(fqn: str, namespace: str | None) -> bool:
    """True when *fqn* lives in *namespace* (prefix on a '.', '+' or ':' boundary)."""
    if not namespace or not namespace.strip():
        return True
    namespace = namespace.strip()
    if fqn == namespace:
        return True
    return fqn.startswith(namespace) and fqn[len(namespace)] in _NAMESPACE_BOUNDARIES


@dataclass
class SymbolMetadata:
    symbol: str
    namespace: str | None
    type_name: str | None
    method_name: str | None


def parse_symbol(symbol: str, kind: CodeElementKind) -> SymbolMetadata:
    """Split a type or member FQN into its namespace, type and method parts."""
    if kind is CodeElementKind.MEMBER or "(" in symbol:
        type_fqn, _ = split_member_fqn(symbol)
        method = symbol
    else:
        type_fqn, method = symbol, None
    namespace = namespace_of_type(type_fqn) if type_fqn else None
    return SymbolMetadata(symbol=symbol, namespace=namespace or GLOBAL_NAMESPACE,
                          type_name=type_fqn or None, method_name=method)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass
class SymbolSnapshot:
    """One metric of one symbol, evaluated against its threshold."""

    symbol: str
    kind: CodeElementKind
    file_path: str | None
    metric: MetricIdentifier
    value: MetricValue
    threshold: MetricThreshold | None
    status: ThresholdStatus
    is_suppressed: bool = False

    @property
    def is_violation(self) -> bool:
        return self.status in _VIOLATIONS

    @property
    def threshold_kind(self) -> str:
        if self.status is ThresholdStatus.ERROR:
            return "Error"
        if self.status is ThresholdStatus.WARNING:
            return "Warning"
        return "None"

    @property
    def threshold_value(self) -> Decimal | None:
        if self.threshold is None:
            return None
        if self.status is ThresholdStatus.ERROR:
            return self.threshold.error
        if self.status is ThresholdStatus.WARNING:
            return self.threshold.warning
        return None

    def sort_key(self) -> tuple:
        kind_rank = 0 if self.kind is CodeElementKind.TYPE else 1
        severity = 0 if self.status is ThresholdStatus.ERROR else 1
        delta = abs(self.value.delta) if self.value.delta is not None else Decimal(0)
        return kind_rank, severity, -delta, self.symbol

    def to_dict(self) -> dict[str, Any]:
        data = {
            "symbolFqn":     self.symbol,
            "symbolType":    self.kind.value,
            "metric":        self.metric.value,
            "value":         self.value.value,
            "threshold":     self.threshold_value,
            "thresholdKind": self.threshold_kind,
            "delta":         self.value.delta,
            "filePath":      self.file_path,
            "status":        self.status.value,
            "isSuppressed":  self.is_suppressed,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class QueryResult:
    found: bool
    payload: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class MetricsReader:
    """Read-only queries over one report.

    Thresholds and suppressions default to those recorded in the report
    metadata; callers may pass their own to re-evaluate an older report.
    """

    def __init__(
        self,
        report: MetricsReport,
        thresholds: ThresholdTable | None = None,
        suppressed_symbols: list[SuppressedSymbolInfo] | None = None,
    ) -> None:
        self.report = report
        metadata = report.metadata
        self._thresholds = thresholds or metadata.thresholds or default_thresholds()
        self._aliases = metadata.metric_aliases
        self._suppressions = SuppressedSymbolIndex(
            suppressed_symbols if suppressed_symbols is not None else metadata.suppressed_symbols
        )
        self._by_fqn: dict[str, MetricsNode] = {}
        for node in report.iter_nodes(CodeElementKind.TYPE, CodeElementKind.MEMBER):
            self._by_fqn.setdefault(node.fully_qualified_name, node)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def resolve_metric(self, text: str | MetricIdentifier) -> MetricIdentifier:
        if isinstance(text, MetricIdentifier):
            return text
        return resolve_metric(text, self._aliases)

    def snapshot(self, node: MetricsNode, metric: MetricIdentifier) -> SymbolSnapshot | None:
        value = node.metrics.get(metric)
        if value is None:
            return None
        threshold = threshold_for(self._thresholds, metric, node.kind)
        return SymbolSnapshot(
            symbol=node.fully_qualified_name,
            kind=node.kind,
            file_path=node.source.path if node.source is not None else None,
            metric=metric,
            value=value,
            threshold=threshold,
            status=evaluate(value.value, threshold),
            is_suppressed=self._suppressions.is_suppressed(node.fully_qualified_name, metric),
        )

    def read_any(
        self,
        namespace: str,
        metric: str | MetricIdentifier,
        symbol_kind: SymbolKind = SymbolKind.ANY,
        all: bool = False,
        group_by: GroupBy | None = None,
        include_suppressed: bool = False,
    ) -> QueryResult:
        """Threshold violations of *metric* under *namespace*.

        Raises:
            ValidationError: for an unknown metric or ``group_by=ruleId``.
        """
        if group_by is GroupBy.RULE_ID:
            raise ValidationError("--group-by ruleId is only supported by the readsarif command.")
        identifier = self.resolve_metric(metric)

        violations = sorted(
            (s for s in self._snapshots(namespace, identifier, symbol_kind)
             if s.is_violation and (include_suppressed or not s.is_suppressed)),
            key=SymbolSnapshot.sort_key,
        )
        header = {
            "metric":     identifier.value,
            "namespace":  (namespace or "").strip(),
            "symbolKind": symbol_kind.value,
        }
        if not violations:
            return QueryResult(found=False, payload={
                **header,
                "message": f"No violations were found for metric '{identifier.value}' "
                           f"in namespace '{header['namespace']}'.",
            })

        if group_by is not None:
            groups = self._group_snapshots(violations, group_by)
            return QueryResult(found=True, payload={
                **header,
                "includeSuppressed":    include_suppressed,
                "groupBy":              group_by.value,
                "violationsGroupsCount": len(groups),
                "violationsGroups":     groups if all else groups[:1],
            })
        if all:
            return QueryResult(found=True, payload={
                **header,
                "includeSuppressed": include_suppressed,
                "violationsCount":   len(violations),
                "violations":        [v.to_dict() for v in violations],
            })
        return QueryResult(found=True, payload=violations[0].to_dict())

    def read_sarif(
        self,
        namespace: str,
        metric: str | MetricIdentifier = MetricIdentifier.SARIF_CA_RULE_VIOLATIONS,
        rule_id: str | None = None,
        symbol_kind: SymbolKind = SymbolKind.ANY,
        all: bool = False,
        group_by: GroupBy | None = GroupBy.RULE_ID,
        include_suppressed: bool = False,
    ) -> QueryResult:
        """Analyzer findings of a SARIF metric under *namespace*, grouped.

        Raises:
            ValidationError: if *metric* is not a SARIF metric.
        """
        identifier = self.resolve_metric(metric)
        if not identifier.is_sarif:
            raise ValidationError(
                f"Metric '{identifier.value}' does not expose SARIF rule breakdown data. "
                "Use SarifCaRuleViolations or SarifIdeRuleViolations."
            )
        group_by = group_by or GroupBy.RULE_ID
        wanted_rule = rule_id.strip().upper() if rule_id and rule_id.strip() else None

        buckets: dict[str, dict[str, Any]] = {}
        for node in self._nodes(namespace, symbol_kind):
            value = node.metrics.get(identifier)
            if value is None or not value.breakdown:
                continue
            meta = parse_symbol(node.fully_qualified_name, node.kind)
            for rule, entry in value.breakdown.items():
                if wanted_rule is not None and rule.upper() != wanted_rule:
                    continue
                if not include_suppressed and self._suppressions.is_suppressed(
                        node.fully_qualified_name, identifier, rule):
                    continue
                key = self._sarif_key(group_by, identifier, rule, meta)
                bucket = buckets.setdefault(key, self._new_sarif_group(group_by, key, rule, identifier))
                bucket["violationsCount"] += entry.count
                bucket["violations"].extend(
                    {k: v for k, v in {
                        "symbol":    node.fully_qualified_name,
                        "message":   detail.message,
                        "uri":       detail.uri,
                        "startLine": detail.start_line,
                        "endLine":   detail.end_line,
                    }.items() if v is not None}
                    for detail in entry.violations
                )

        header = {
            "metric":     identifier.value,
            "namespace":  (namespace or "").strip(),
            "symbolKind": symbol_kind.value,
        }
        if wanted_rule is not None:
            header["ruleId"] = wanted_rule
        if not buckets:
            scope = f"metric '{identifier.value}'"
            if wanted_rule is not None:
                scope += f" and rule '{wanted_rule}'"
            return QueryResult(found=False, payload={
                **header,
                "message": f"No SARIF violations for {scope} were found within namespace "
                           f"'{header['namespace']}'.",
            })

        groups = sorted(buckets.items(), key=lambda kv: (-kv[1]["violationsCount"], kv[0].lower()))
        groups = [g for _, g in groups]
        return QueryResult(found=True, payload={
            **header,
            "includeSuppressed":    include_suppressed,
            "groupBy":              group_by.value,
            "violationsGroupsCount": len(groups),
            "violationsGroups":     groups if all else groups[:1],
        })

    def test(
        self,
        symbol: str,
        metric: str | MetricIdentifier,
        include_suppressed: bool = False,
    ) -> dict[str, Any]:
        """Pass/fail check of one symbol for one metric (exact FQN match)."""
        identifier = self.resolve_metric(metric)
        node = self._by_fqn.get(symbol.strip()) or self._by_fqn.get(normalize(symbol))
        if node is None:
            return {"isOk": True, "message": "Symbol not present in the current metrics report."}
        snapshot = self.snapshot(node, identifier)
        if snapshot is None:
            return {"isOk": True, "message": f"Metric '{identifier.value}' is not reported for this symbol."}
        is_ok = not snapshot.is_violation or (snapshot.is_suppressed and not include_suppressed)
        return {"isOk": is_ok, "details": snapshot.to_dict()}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _nodes(self, namespace: str, symbol_kind: SymbolKind):
        for node in self.report.iter_nodes(*symbol_kind.kinds):
            if matches_namespace(node.fully_qualified_name, namespace):
                yield node

    def _snapshots(self, namespace: str, metric: MetricIdentifier, symbol_kind: SymbolKind):
        for node in self._nodes(namespace, symbol_kind):
            snapshot = self.snapshot(node, metric)
            if snapshot is not None:
                yield snapshot

    @staticmethod
    def _group_key(snapshot: SymbolSnapshot, group_by: GroupBy) -> str | None:
        if group_by is GroupBy.METRIC:
            return snapshot.metric.value
        meta = parse_symbol(snapshot.symbol, snapshot.kind)
        if group_by is GroupBy.NAMESPACE:
            return meta.namespace
        if group_by is GroupBy.TYPE:
            return meta.type_name
        return meta.method_name or meta.type_name

    def _group_snapshots(self, violations: list[SymbolSnapshot], group_by: GroupBy) -> list[dict]:
        # groups keep the rank of their first (most severe) violation
        groups: dict[str, dict[str, Any]] = {}
        for snapshot in violations:
            key = self._group_key(snapshot, group_by)
            if not key:
                continue
            group = groups.setdefault(key, {group_by.value: key, "violationsCount": 0, "violations": []})
            group["violationsCount"] += 1
            group["violations"].append(snapshot.to_dict())
        return list(groups.values())

    @staticmethod
    def _sarif_key(group_by: GroupBy, metric: MetricIdentifier, rule: str, meta: SymbolMetadata) -> str:
        if group_by is GroupBy.RULE_ID:
            return rule
        if group_by is GroupBy.METRIC:
            return metric.value
        if group_by is GroupBy.NAMESPACE:
            return meta.namespace or GLOBAL_NAMESPACE
        if group_by is GroupBy.TYPE:
            return meta.type_name or meta.symbol
        return meta.method_name or meta.type_name or meta.symbol

    def _new_sarif_group(self, group_by: GroupBy, key: str, rule: str,
                         metric: MetricIdentifier) -> dict[str, Any]:
        group: dict[str, Any] = {group_by.value: key}
        if group_by is GroupBy.RULE_ID:
            description = self.report.metadata.rule_descriptions.get(rule)
            if description is not None and description.short_description:
                group["shortDescription"] = description.short_description
            group["metric"] = metric.value
        group["violationsCount"] = 0
        group["violations"] = []
        return group
