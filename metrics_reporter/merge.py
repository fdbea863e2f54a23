"""Tree builder: merges parsed documents into one MetricsReport.

Usage:
    builder = ReportBuilder("MySolution", filters)
    report = builder.build(documents)

Structural documents (coverage, Roslyn) create the Solution -> Assembly ->
Namespace -> Type -> Member chain, synthesizing any missing container. SARIF
documents are attached afterwards by FQN or by file/line lookup. Values are
taken as reported by each tool; nothing is rolled up to parent levels. The
one exception is coverage recorded on an async or iterator state machine,
which is moved onto the method that declared it.
"""

import copy
import logging
from datetime import datetime, timezone

from metrics_reporter.errors import DuplicateCoverageError
from metrics_reporter.filters import ElementFilters
from metrics_reporter.line_index import LineIndex, backfill_type_sources, path_key
from metrics_reporter.models import (
    CodeElementKind,
    MemberKind,
    MetricIdentifier,
    MetricsNode,
    MetricsReport,
    MetricValue,
    ParsedCodeElement,
    ParsedMetricsDocument,
    ReportMetadata,
    RuleDescription,
    SourceFormat,
    SourceLocation,
)
from metrics_reporter.normalizer import (
    GLOBAL_NAMESPACE,
    extract_method_name,
    iterator_state_machine,
    namespace_of_type,
    split_member_fqn,
)

logger = logging.getLogger(__name__)

DEFAULT_SOLUTION_NAME = "Solution"

Kind = CodeElementKind


# ---------------------------------------------------------------------------
# Merge primitives
# ---------------------------------------------------------------------------

def merge_metrics(target: dict[MetricIdentifier, MetricValue],
                  incoming: dict[MetricIdentifier, MetricValue]) -> None:
    """Merge *incoming* metric values into *target* in place.

    SARIF counts are summed and their rule breakdowns combined. Any other
    metric keeps the first real value seen.
    """
    for metric, value in incoming.items():
        existing = target.get(metric)
        if existing is None:
            target[metric] = copy.deepcopy(value)
        elif metric.is_sarif:
            if value.value is not None:
                existing.value = (existing.value or 0) + value.value
            _merge_breakdown(existing, value)
        elif existing.value is None and value.value is not None:
            target[metric] = copy.deepcopy(value)


def _merge_breakdown(existing: MetricValue, incoming: MetricValue) -> None:
    if not incoming.breakdown:
        return
    if existing.breakdown is None:
        existing.breakdown = {}
    for rule_id, entry in incoming.breakdown.items():
        current = existing.breakdown.get(rule_id)
        if current is None:
            existing.breakdown[rule_id] = copy.deepcopy(entry)
        else:
            current.count += entry.count
            current.violations.extend(copy.deepcopy(entry.violations))


def _source_key(source: SourceLocation) -> tuple:
    width = source.end_line - source.start_line if source.is_complete else -1
    return (
        source.start_line is not None,
        source.is_complete,
        width,
        source.path or "",
        -(source.start_line or 0),
        source.end_line or 0,
    )


def merge_source(node: MetricsNode, source: SourceLocation | None) -> None:
    """Keep the best source seen for *node*, whatever order the inputs come in.

    A located span beats an unlocated one and a complete span beats a single
    line. Among complete spans the widest wins, so a coverage method span
    (first to last sequence point) outranks the declaration line Roslyn reports.
    """
    if source is None:
        return
    existing = node.source
    if existing is None or _source_key(source) > _source_key(existing):
        node.source = copy.copy(source)


# ---------------------------------------------------------------------------
# Async and iterator state machines
# ---------------------------------------------------------------------------

_COVERAGE_METRICS = (MetricIdentifier.ALTCOVER_SEQUENCE_COVERAGE, MetricIdentifier.ALTCOVER_BRANCH_COVERAGE)


def _has_coverage(metrics: dict[MetricIdentifier, MetricValue]) -> bool:
    for metric in _COVERAGE_METRICS:
        value = metrics.get(metric)
        if value is not None and value.value is not None and value.value != 0:
            return True
    return False


def _state_machine_metrics(node: MetricsNode) -> dict[MetricIdentifier, MetricValue]:
    """Coverage of a state machine class: its summary, else its MoveNext method."""
    if any(metric in node.metrics for metric in _COVERAGE_METRICS):
        return node.metrics
    for member in node.children.values():
        if extract_method_name(member.fully_qualified_name) == "MoveNext":
            return member.metrics
    return node.metrics


def _copy_unless_covered(source: dict[MetricIdentifier, MetricValue],
                         target: dict[MetricIdentifier, MetricValue],
                         metric: MetricIdentifier) -> None:
    value = source.get(metric)
    if value is None or value.value is None:
        return
    existing = target.get(metric)
    if existing is not None and existing.value is not None and existing.value != 0:
        return
    target[metric] = MetricValue(value=value.value, delta=value.delta, status=value.status)


def reconcile_iterator_coverage(types: dict[str, MetricsNode]) -> list[str]:
    """Move coverage of ``Outer+<Method>d__N`` classes onto ``Outer.Method(...)``.

    Coverage tools attribute the body of async and iterator methods to the
    compiler-generated state machine, leaving the declared method with stub
    coverage. When only the state machine is covered its figures replace the
    method's missing or zero ones; branch coverage moves only onto a method
    that reports branches of its own. When both are covered nothing changes.

    Returns the state machine type FQNs to drop: those whose coverage moved
    and those where neither side has any.
    """
    dropped: list[str] = []
    for type_fqn, node in list(types.items()):
        info = iterator_state_machine(type_fqn)
        if info is None:
            continue
        outer_fqn, method_name = info
        outer = types.get(outer_fqn)
        if outer is None:
            continue
        target = next(
            (m for m in outer.children.values()
             if extract_method_name(m.fully_qualified_name) == method_name),
            None,
        )
        if target is None:
            continue

        source = _state_machine_metrics(node)
        method_covered = _has_coverage(target.metrics)
        iterator_covered = _has_coverage(source)
        if method_covered and iterator_covered:
            continue
        if iterator_covered:
            _copy_unless_covered(source, target.metrics, MetricIdentifier.ALTCOVER_SEQUENCE_COVERAGE)
            if MetricIdentifier.ALTCOVER_BRANCH_COVERAGE in target.metrics:
                _copy_unless_covered(source, target.metrics, MetricIdentifier.ALTCOVER_BRANCH_COVERAGE)
            _copy_unless_covered(source, target.metrics, MetricIdentifier.ALTCOVER_CYCLOMATIC_COMPLEXITY)
            _copy_unless_covered(source, target.metrics, MetricIdentifier.ALTCOVER_NPATH_COMPLEXITY)
            logger.debug("Coverage of '%s' moved onto '%s'", type_fqn, target.fully_qualified_name)
        dropped.append(type_fqn)
    return dropped


# ---------------------------------------------------------------------------
# Duplicate coverage detection
# ---------------------------------------------------------------------------

def validate_coverage_duplicates(documents: list[ParsedMetricsDocument], include=None) -> None:
    """Fail when one Type or Member FQN appears in two coverage documents.

    Repeats inside a single document are allowed; ``merge_metrics`` keeps the
    first value seen.
    *include* optionally restricts the check to elements it accepts.

    Raises:
        DuplicateCoverageError: on the first conflict found.
    """
    first_seen: dict[tuple[CodeElementKind, str], str] = {}
    for document in documents:
        if document.source_format is not SourceFormat.ALTCOVER:
            continue
        for element in document.elements:
            if element.kind not in (Kind.TYPE, Kind.MEMBER) or not element.fully_qualified_name:
                continue
            if include is not None and not include(element):
                continue
            key = (element.kind, element.fully_qualified_name)
            seen_in = first_seen.setdefault(key, document.source_path)
            if seen_in.lower() != document.source_path.lower():
                label = "member" if element.kind is Kind.MEMBER else "type"
                message = (
                    f"Duplicate AltCover {label} '{element.fully_qualified_name}' detected in "
                    f"'{seen_in}' and '{document.source_path}'. "
                    "Ensure coverage XML inputs do not overlap."
                )
                logger.error(message)
                raise DuplicateCoverageError(message)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class ReportBuilder:
    """Owns node construction for one report. Not reusable across builds."""

    def __init__(self, solution_name: str | None = None, filters: ElementFilters | None = None) -> None:
        self._solution_name = solution_name
        self._filters = filters or ElementFilters()
        self.solution = MetricsNode(Kind.SOLUTION, "", "")
        self._assemblies: dict[str, MetricsNode] = {}
        self._namespaces: dict[str, MetricsNode] = {}
        self._types: dict[str, MetricsNode] = {}
        self._members: dict[str, MetricsNode] = {}
        self._namespace_assemblies: dict[str, str] = {}
        self._excluded_files: set[str] = set()
        self._sarif_members: set[str] = set()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def build(self, documents: list[ParsedMetricsDocument],
              rule_descriptions: dict[str, RuleDescription] | None = None) -> MetricsReport:
        name = self._solution_name or next(
            (d.solution_name for d in documents if d.solution_name), DEFAULT_SOLUTION_NAME
        )
        self.solution.name = self.solution.fully_qualified_name = name

        structural = [d for d in documents if d.source_format is not SourceFormat.SARIF]
        validate_coverage_duplicates(structural, include=lambda e: not self._is_excluded(e))

        elements = [e for d in structural for e in d.elements]
        # Containers first so types find their namespace regardless of input order
        for kind in (Kind.ASSEMBLY, Kind.NAMESPACE, Kind.TYPE, Kind.MEMBER):
            for element in elements:
                if element.kind is kind:
                    self._place(element)
        for type_fqn in reconcile_iterator_coverage(self._types):
            self._remove_type(type_fqn)

        backfill_type_sources(self.solution)
        index = LineIndex(self.solution)
        rule_descriptions = dict(rule_descriptions or {})
        for document in documents:
            rule_descriptions.update(document.rule_descriptions)
            if document.source_format is SourceFormat.SARIF:
                for element in document.elements:
                    self._attach_sarif(element, index)

        self._prune_member_kinds()
        metadata = ReportMetadata(
            generated_at_utc=datetime.now(timezone.utc).isoformat(),
            rule_descriptions=rule_descriptions,
        )
        return MetricsReport(metadata=metadata, solution=self.solution)

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def _is_excluded(self, element: ParsedCodeElement) -> bool:
        filters = self._filters
        if filters.assemblies.should_exclude(element.containing_assembly_name):
            return True
        if element.kind is Kind.ASSEMBLY:
            return filters.assemblies.should_exclude(element.name)
        if element.kind is Kind.TYPE:
            return filters.types.should_exclude(element.fully_qualified_name)
        if element.kind is Kind.MEMBER:
            fqn = element.fully_qualified_name or ""
            type_fqn = element.parent_fully_qualified_name or split_member_fqn(fqn)[0]
            if type_fqn and filters.types.should_exclude(type_fqn):
                return True
            return filters.members.should_exclude(fqn)
        return False

    # ------------------------------------------------------------------
    # Structural placement
    # ------------------------------------------------------------------

    def _place(self, element: ParsedCodeElement) -> None:
        if self._is_excluded(element):
            if element.source is not None and element.source.path:
                self._excluded_files.add(path_key(element.source.path))
            return

        if element.kind is Kind.ASSEMBLY:
            node = self._ensure_assembly(element.name)
        elif element.kind is Kind.NAMESPACE:
            assembly = self._ensure_assembly(element.containing_assembly_name
                                             or element.parent_fully_qualified_name)
            node = self._ensure_namespace(assembly, element.name)
        elif element.kind is Kind.TYPE:
            if not element.fully_qualified_name:
                return
            node = self._ensure_type(element.fully_qualified_name,
                                     element.containing_assembly_name,
                                     element.parent_fully_qualified_name)
        else:
            node = self._place_member(element)
            if node is None:
                return

        merge_metrics(node.metrics, element.metrics)
        merge_source(node, element.source)

    def _place_member(self, element: ParsedCodeElement) -> MetricsNode | None:
        fqn = element.fully_qualified_name
        if not fqn:
            return None
        type_fqn = element.parent_fully_qualified_name or split_member_fqn(fqn)[0]
        if not type_fqn:
            logger.warning("Cannot place member '%s': no containing type", fqn)
            return None
        node = self._members.get(fqn)
        if node is None:
            type_node = self._ensure_type(type_fqn, element.containing_assembly_name)
            node = type_node.add_child(MetricsNode(
                Kind.MEMBER,
                name=fqn[len(type_fqn) + 1:] if fqn.startswith(type_fqn + ".") else fqn,
                fully_qualified_name=fqn,
            ))
            self._members[fqn] = node
        if node.member_kind in (None, MemberKind.UNKNOWN) and element.member_kind is not None:
            node.member_kind = element.member_kind
        return node

    def _remove_type(self, type_fqn: str) -> None:
        node = self._types.pop(type_fqn)
        for member_fqn in node.children:
            self._members.pop(member_fqn, None)
        for namespace in self._namespaces.values():
            namespace.children.pop(type_fqn, None)

    def _resolve_assembly_name(self, hint: str | None) -> str:
        if hint:
            return hint
        if self._assemblies:
            return next(iter(self._assemblies.values())).name
        return self.solution.name

    def _ensure_assembly(self, name: str | None) -> MetricsNode:
        name = self._resolve_assembly_name(name)
        key = name.lower()
        node = self._assemblies.get(key)
        if node is None:
            node = self.solution.add_child(MetricsNode(Kind.ASSEMBLY, name, name))
            self._assemblies[key] = node
        return node

    def _ensure_namespace(self, assembly: MetricsNode, namespace: str | None) -> MetricsNode:
        namespace = namespace or GLOBAL_NAMESPACE
        key = f"{assembly.name.lower()}::{namespace}"
        node = self._namespaces.get(key)
        if node is None:
            node = assembly.add_child(MetricsNode(Kind.NAMESPACE, namespace, namespace))
            self._namespaces[key] = node
            self._namespace_assemblies.setdefault(namespace, assembly.name)
        return node

    def _namespace_for(self, type_fqn: str) -> str:
        derived = namespace_of_type(type_fqn)
        if derived in self._namespace_assemblies:
            return derived
        known = [ns for ns in self._namespace_assemblies if type_fqn.startswith(ns + ".")]
        return max(known, key=len) if known else derived

    def _ensure_type(self, type_fqn: str, assembly_hint: str | None = None,
                     namespace_hint: str | None = None) -> MetricsNode:
        node = self._types.get(type_fqn)
        if node is not None:
            return node
        namespace = namespace_hint or self._namespace_for(type_fqn)
        assembly = self._ensure_assembly(assembly_hint or self._namespace_assemblies.get(namespace))
        namespace_node = self._ensure_namespace(assembly, namespace)
        prefix = "" if namespace == GLOBAL_NAMESPACE else namespace + "."
        name = type_fqn[len(prefix):] if prefix and type_fqn.startswith(prefix) else type_fqn
        node = namespace_node.add_child(MetricsNode(Kind.TYPE, name, type_fqn))
        self._types[type_fqn] = node
        return node

    # ------------------------------------------------------------------
    # SARIF attachment
    # ------------------------------------------------------------------

    def _attach_sarif(self, element: ParsedCodeElement, index: LineIndex) -> None:
        fqn = element.fully_qualified_name
        node = (self._members.get(fqn) or self._types.get(fqn)) if fqn else None

        source = element.source
        if node is None and source is not None:
            node = index.resolve(source.path, source.start_line)
            if node is None:
                if path_key(source.path) in self._excluded_files:
                    return
                node = index.assembly_for(source.path)

        if node is None:
            node = self.solution
        merge_metrics(node.metrics, element.metrics)
        if node.kind is Kind.MEMBER:
            self._sarif_members.add(node.fully_qualified_name)

    # ------------------------------------------------------------------
    # Member kind pruning
    # ------------------------------------------------------------------

    def _prune_member_kinds(self) -> None:
        kinds = self._filters.member_kinds
        if not kinds.active:
            return
        for type_node in self._types.values():
            for fqn in list(type_node.children):
                member = type_node.children[fqn]
                if kinds.should_exclude(member.member_kind, fqn in self._sarif_members):
                    del type_node.children[fqn]
                    self._members.pop(fqn, None)
