"""Data model for metrics reports.

Contains the enums and dataclasses shared by parsers, the tree builder and the
query engine:
    - MetricIdentifier, CodeElementKind, ThresholdStatus, MemberKind
    - MetricValue, MetricThreshold, MetricThresholdDefinition
    - ParsedCodeElement, ParsedMetricsDocument   (parser output)
    - MetricsNode, ReportMetadata, MetricsReport (report tree)

All metric values are ``decimal.Decimal`` so score metrics and deltas never go
through binary floating point.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class MetricIdentifier(str, Enum):
    ALTCOVER_SEQUENCE_COVERAGE = "AltCoverSequenceCoverage"
    ALTCOVER_BRANCH_COVERAGE = "AltCoverBranchCoverage"
    ALTCOVER_CYCLOMATIC_COMPLEXITY = "AltCoverCyclomaticComplexity"
    ALTCOVER_NPATH_COMPLEXITY = "AltCoverNPathComplexity"
    ROSLYN_MAINTAINABILITY_INDEX = "RoslynMaintainabilityIndex"
    ROSLYN_CYCLOMATIC_COMPLEXITY = "RoslynCyclomaticComplexity"
    ROSLYN_CLASS_COUPLING = "RoslynClassCoupling"
    ROSLYN_DEPTH_OF_INHERITANCE = "RoslynDepthOfInheritance"
    ROSLYN_SOURCE_LINES = "RoslynSourceLines"
    ROSLYN_EXECUTABLE_LINES = "RoslynExecutableLines"
    SARIF_CA_RULE_VIOLATIONS = "SarifCaRuleViolations"
    SARIF_IDE_RULE_VIOLATIONS = "SarifIdeRuleViolations"

    @property
    def is_sarif(self) -> bool:
        return self in SARIF_METRICS

    @property
    def unit(self) -> str:
        if self in (MetricIdentifier.ALTCOVER_SEQUENCE_COVERAGE,
                    MetricIdentifier.ALTCOVER_BRANCH_COVERAGE):
            return "percent"
        if self is MetricIdentifier.ROSLYN_MAINTAINABILITY_INDEX:
            return "score"
        return "count"


SARIF_METRICS = frozenset({
    MetricIdentifier.SARIF_CA_RULE_VIOLATIONS,
    MetricIdentifier.SARIF_IDE_RULE_VIOLATIONS,
})


class CodeElementKind(str, Enum):
    SOLUTION = "Solution"
    ASSEMBLY = "Assembly"
    NAMESPACE = "Namespace"
    TYPE = "Type"
    MEMBER = "Member"


#: Levels in tree order, used for threshold tables and child lookups.
SYMBOL_LEVELS: tuple[CodeElementKind, ...] = tuple(CodeElementKind)


class ThresholdStatus(str, Enum):
    NOT_APPLICABLE = "NotApplicable"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"


class MemberKind(str, Enum):
    UNKNOWN = "Unknown"
    METHOD = "Method"
    PROPERTY = "Property"
    FIELD = "Field"
    EVENT = "Event"


class SourceFormat(str, Enum):
    ALTCOVER = "AltCover"
    ROSLYN = "Roslyn"
    SARIF = "Sarif"


# ---------------------------------------------------------------------------
# Metric values and thresholds
# ---------------------------------------------------------------------------

@dataclass
class SourceLocation:
    path: str
    start_line: int | None = None
    end_line: int | None = None

    @property
    def is_complete(self) -> bool:
        return self.start_line is not None and self.end_line is not None


@dataclass
class SarifRuleViolationDetail:
    message: str | None = None
    uri: str | None = None
    start_line: int | None = None
    end_line: int | None = None


@dataclass
class SarifRuleBreakdownEntry:
    count: int = 0
    violations: list[SarifRuleViolationDetail] = field(default_factory=list)


@dataclass
class MetricValue:
    value: Decimal | None = None
    delta: Decimal | None = None
    status: ThresholdStatus = ThresholdStatus.NOT_APPLICABLE
    breakdown: dict[str, SarifRuleBreakdownEntry] | None = None


@dataclass
class MetricThreshold:
    warning: Decimal | None = None
    error: Decimal | None = None
    higher_is_better: bool = True
    positive_delta_neutral: bool = False


@dataclass
class MetricThresholdDefinition:
    levels: dict[CodeElementKind, MetricThreshold] = field(default_factory=dict)
    description: str | None = None

    def for_level(self, level: CodeElementKind) -> MetricThreshold | None:
        return self.levels.get(level)


ThresholdTable = dict[MetricIdentifier, MetricThresholdDefinition]


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

@dataclass
class ParsedCodeElement:
    """One flat row produced by a parser, consumed by the tree builder."""

    kind: CodeElementKind
    name: str
    fully_qualified_name: str | None = None
    parent_fully_qualified_name: str | None = None
    containing_assembly_name: str | None = None
    source: SourceLocation | None = None
    metrics: dict[MetricIdentifier, MetricValue] = field(default_factory=dict)
    member_kind: MemberKind | None = None
    rule_id: str | None = None


@dataclass
class RuleDescription:
    short_description: str | None = None
    full_description: str | None = None
    help_uri: str | None = None
    category: str | None = None


@dataclass
class ParsedMetricsDocument:
    source_format: SourceFormat
    source_path: str
    solution_name: str | None = None
    elements: list[ParsedCodeElement] = field(default_factory=list)
    rule_descriptions: dict[str, RuleDescription] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Report tree
# ---------------------------------------------------------------------------

#: JSON key holding the children of each node kind.
CHILD_KEYS: dict[CodeElementKind, str] = {
    CodeElementKind.SOLUTION: "assemblies",
    CodeElementKind.ASSEMBLY: "namespaces",
    CodeElementKind.NAMESPACE: "types",
    CodeElementKind.TYPE: "members",
}


@dataclass
class MetricsNode:
    """A node of the report tree, tagged by ``kind``.

    Children are keyed by fully qualified name and keep insertion order, so
    the serialized report is deterministic for a given input order.
    """

    kind: CodeElementKind
    name: str
    fully_qualified_name: str
    source: SourceLocation | None = None
    metrics: dict[MetricIdentifier, MetricValue] = field(default_factory=dict)
    children: dict[str, "MetricsNode"] = field(default_factory=dict)
    is_new: bool = False
    member_kind: MemberKind | None = None

    def add_child(self, node: "MetricsNode") -> "MetricsNode":
        self.children[node.fully_qualified_name] = node
        return node

    def walk(self) -> Iterator["MetricsNode"]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children.values():
            yield from child.walk()


@dataclass
class SuppressedSymbolInfo:
    file_path: str
    fully_qualified_name: str
    rule_id: str
    metric: str | None = None
    justification: str | None = None


@dataclass
class ReportPaths:
    report: str | None = None
    baseline: str | None = None
    thresholds: str | None = None
    suppressed_symbols: str | None = None


@dataclass
class ReportMetadata:
    generated_at_utc: str
    baseline_reference: str | None = None
    paths: ReportPaths = field(default_factory=ReportPaths)
    thresholds: ThresholdTable = field(default_factory=dict)
    metric_descriptors: dict[MetricIdentifier, str] = field(default_factory=dict)
    rule_descriptions: dict[str, RuleDescription] = field(default_factory=dict)
    excluded_assembly_names: str | None = None
    excluded_type_name_patterns: str | None = None
    excluded_member_name_patterns: str | None = None
    suppressed_symbols: list[SuppressedSymbolInfo] = field(default_factory=list)
    metric_aliases: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class MetricsReport:
    metadata: ReportMetadata
    solution: MetricsNode

    def iter_nodes(self, *kinds: CodeElementKind) -> Iterator[MetricsNode]:
        """Yield every node of the given kinds (all kinds when none given)."""
        for node in self.solution.walk():
            if not kinds or node.kind in kinds:
                yield node
