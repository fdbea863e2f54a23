"""Tests for metrics_reporter/merge.py"""

import shutil
from decimal import Decimal

import pytest

from metrics_reporter.errors import DuplicateCoverageError, ValidationError
from metrics_reporter.filters import ElementFilters, MemberKindFilter
from metrics_reporter.merge import (
    ReportBuilder,
    merge_metrics,
    merge_source,
    reconcile_iterator_coverage,
    validate_coverage_duplicates,
)
from metrics_reporter.models import (
    CodeElementKind,
    MemberKind,
    MetricIdentifier,
    MetricValue,
    MetricsNode,
    ParsedCodeElement,
    ParsedMetricsDocument,
    SarifRuleBreakdownEntry,
    SourceFormat,
    SourceLocation,
)
from metrics_reporter.parsers import OpenCoverParser, RoslynParser, SarifParser
from metrics_reporter.serialization import node_to_dict

from conftest import STATE_MACHINE_XML, sarif_log, sarif_result, write_json, write_text

M = MetricIdentifier
CALCULATOR = "MyApp.Core.Calculator"
ADD = "MyApp.Core.Calculator.Add(...)"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def documents(coverage_file, roslyn_file, sarif_file):
    return [
        OpenCoverParser().parse(str(coverage_file)),
        RoslynParser().parse(str(roslyn_file)),
        SarifParser().parse(str(sarif_file)),
    ]


def calculator(report):
    return report.solution.children["MyApp.Core"].children["MyApp.Core"].children[CALCULATOR]


def sarif_value(count: int, rule: str = "CA1506") -> MetricValue:
    return MetricValue(
        value=Decimal(count),
        breakdown={rule: SarifRuleBreakdownEntry(count=count)},
    )


def sorted_tree(data):
    """Sort every child list by FQN so trees compare without regard to insertion order."""
    if isinstance(data, dict):
        return {key: sorted_tree(value) for key, value in data.items()}
    if isinstance(data, list) and all(isinstance(item, dict) and "fullyQualifiedName" in item for item in data):
        return sorted((sorted_tree(item) for item in data), key=lambda item: item["fullyQualifiedName"])
    if isinstance(data, list):
        return [sorted_tree(item) for item in data]
    return data


# ---------------------------------------------------------------------------
# merge_metrics()
# ---------------------------------------------------------------------------

def test_merge_metrics_first_value_wins():
    target = {M.ROSLYN_CYCLOMATIC_COMPLEXITY: MetricValue(value=Decimal(3))}
    merge_metrics(target, {M.ROSLYN_CYCLOMATIC_COMPLEXITY: MetricValue(value=Decimal(9))})
    assert target[M.ROSLYN_CYCLOMATIC_COMPLEXITY].value == Decimal(3)


def test_merge_metrics_fills_missing_value():
    target = {M.ROSLYN_CYCLOMATIC_COMPLEXITY: MetricValue()}
    merge_metrics(target, {M.ROSLYN_CYCLOMATIC_COMPLEXITY: MetricValue(value=Decimal(9))})
    assert target[M.ROSLYN_CYCLOMATIC_COMPLEXITY].value == Decimal(9)


def test_merge_metrics_sums_sarif_counts():
    target = {}
    merge_metrics(target, {M.SARIF_CA_RULE_VIOLATIONS: sarif_value(1)})
    merge_metrics(target, {M.SARIF_CA_RULE_VIOLATIONS: sarif_value(2)})
    merge_metrics(target, {M.SARIF_CA_RULE_VIOLATIONS: sarif_value(1, "CA1502")})
    value = target[M.SARIF_CA_RULE_VIOLATIONS]
    assert value.value == Decimal(4)
    assert value.breakdown["CA1506"].count == 3
    assert value.breakdown["CA1502"].count == 1


def test_merge_metrics_copies_incoming_values():
    incoming = {M.SARIF_CA_RULE_VIOLATIONS: sarif_value(1)}
    target = {}
    merge_metrics(target, incoming)
    merge_metrics(target, {M.SARIF_CA_RULE_VIOLATIONS: sarif_value(1)})
    assert incoming[M.SARIF_CA_RULE_VIOLATIONS].value == Decimal(1)


class TestMergeSource:
    @pytest.mark.parametrize("first, second", [
        (SourceLocation("Calc.cs", 10, 10), SourceLocation("Calc.cs", 10, 14)),
        (SourceLocation("Calc.cs", 10, 14), SourceLocation("Calc.cs", 10, 10)),
    ])
    def test_widest_span_wins_in_either_order(self, first, second):
        node = MetricsNode(CodeElementKind.MEMBER, "Add(...)", ADD)
        merge_source(node, first)
        merge_source(node, second)
        assert (node.source.start_line, node.source.end_line) == (10, 14)

    def test_located_span_beats_path_only(self):
        node = MetricsNode(CodeElementKind.MEMBER, "Add(...)", ADD)
        merge_source(node, SourceLocation("Calc.cs", 7))
        merge_source(node, SourceLocation("Calc.cs"))
        assert node.source.start_line == 7

    def test_source_is_copied(self):
        node = MetricsNode(CodeElementKind.MEMBER, "Add(...)", ADD)
        source = SourceLocation("Calc.cs", 10, 14)
        merge_source(node, source)
        source.end_line = 99
        assert node.source.end_line == 14


# ---------------------------------------------------------------------------
# Tree construction
# ---------------------------------------------------------------------------

class TestReportBuilder:
    def test_solution_name_from_roslyn_target(self, documents):
        report = ReportBuilder().build(documents)
        assert report.solution.name == "MySolution"
        assert report.solution.kind is CodeElementKind.SOLUTION

    def test_explicit_solution_name_wins(self, documents):
        assert ReportBuilder("Shop").build(documents).solution.name == "Shop"

    def test_default_solution_name(self, coverage_file):
        report = ReportBuilder().build([OpenCoverParser().parse(str(coverage_file))])
        assert report.solution.name == "Solution"

    def test_hierarchy(self, documents):
        report = ReportBuilder().build(documents)
        assert list(report.solution.children) == ["MyApp.Core"]
        namespaces = report.solution.children["MyApp.Core"].children
        assert list(namespaces) == ["MyApp.Core"]
        type_node = calculator(report)
        assert type_node.name == "Calculator"
        assert set(type_node.children) == {
            ADD,
            "MyApp.Core.Calculator.get_Total(...)",
            "MyApp.Core.Calculator..ctor(...)",
        }

    def test_coverage_and_roslyn_join_on_one_member(self, documents):
        add = calculator(ReportBuilder().build(documents)).children[ADD]
        assert add.metrics[M.ALTCOVER_SEQUENCE_COVERAGE].value == Decimal("72.5")
        assert add.metrics[M.ROSLYN_CYCLOMATIC_COMPLEXITY].value == Decimal("12")
        assert add.metrics[M.ROSLYN_MAINTAINABILITY_INDEX].value == Decimal("70")
        assert add.member_kind is MemberKind.METHOD
        assert (add.source.start_line, add.source.end_line) == (10, 14)

    def test_values_are_not_rolled_up(self, coverage_file):
        report = ReportBuilder().build([OpenCoverParser().parse(str(coverage_file))])
        namespace = report.solution.children["MyApp.Core"].children["MyApp.Core"]
        assert namespace.metrics == {}
        assert report.solution.metrics == {}

    def test_coverage_only_synthesizes_namespace(self, coverage_file):
        report = ReportBuilder().build([OpenCoverParser().parse(str(coverage_file))])
        assert calculator(report).fully_qualified_name == CALCULATOR

    def test_metadata(self, documents):
        report = ReportBuilder().build(documents)
        assert report.metadata.generated_at_utc
        assert "CA1506" in report.metadata.rule_descriptions

    @pytest.mark.parametrize("order", [(0, 1, 2), (2, 1, 0), (1, 0, 2)])
    def test_tree_does_not_depend_on_input_order(self, documents, order):
        expected = sorted_tree(node_to_dict(ReportBuilder().build(documents).solution))
        reordered = [documents[i] for i in order]
        actual = sorted_tree(node_to_dict(ReportBuilder().build(reordered).solution))
        assert actual == expected


# ---------------------------------------------------------------------------
# SARIF attachment
# ---------------------------------------------------------------------------

class TestSarifAttachment:
    def test_results_counted_on_containing_member(self, documents):
        add = calculator(ReportBuilder().build(documents)).children[ADD]
        value = add.metrics[M.SARIF_CA_RULE_VIOLATIONS]
        assert value.value == Decimal(2)
        assert value.breakdown["CA1506"].count == 2
        assert [v.start_line for v in value.breakdown["CA1506"].violations] == [11, 12]

    def test_ide_result_on_exact_line(self, documents):
        getter = calculator(ReportBuilder().build(documents)).children["MyApp.Core.Calculator.get_Total(...)"]
        assert getter.metrics[M.SARIF_IDE_RULE_VIOLATIONS].value == Decimal(1)

    def test_unmatched_file_goes_to_solution(self, coverage_file, tmp_path):
        sarif = write_json(tmp_path / "other.sarif", sarif_log(
            sarif_result("CA2000", 3, uri="file:///C:/elsewhere/Program.cs"),
        ))
        report = ReportBuilder().build([
            OpenCoverParser().parse(str(coverage_file)),
            SarifParser().parse(str(sarif)),
        ])
        assert report.solution.metrics[M.SARIF_CA_RULE_VIOLATIONS].value == Decimal(1)

    def test_known_file_without_symbol_goes_to_assembly(self, coverage_file, tmp_path):
        sarif = write_json(tmp_path / "x.sarif", sarif_log(sarif_result("CA2000", 1)))
        report = ReportBuilder().build([
            OpenCoverParser().parse(str(coverage_file)),
            SarifParser().parse(str(sarif)),
        ])
        assembly = report.solution.children["MyApp.Core"]
        assert assembly.metrics[M.SARIF_CA_RULE_VIOLATIONS].value == Decimal(1)

    def test_results_in_excluded_files_are_dropped(self, documents):
        filters = ElementFilters.from_patterns(excluded_types="Calculator")
        report = ReportBuilder(filters=filters).build(documents)
        assert not any(M.SARIF_CA_RULE_VIOLATIONS in n.metrics for n in report.iter_nodes())
        assert list(report.iter_nodes(CodeElementKind.TYPE)) == []


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class TestFiltering:
    def test_excluded_assembly(self, documents):
        filters = ElementFilters.from_patterns(excluded_assemblies="core")
        report = ReportBuilder(filters=filters).build(documents)
        assert list(report.iter_nodes(CodeElementKind.ASSEMBLY)) == []

    def test_excluded_member_pattern(self, documents):
        filters = ElementFilters.from_patterns(excluded_members="get_*")
        type_node = calculator(ReportBuilder(filters=filters).build(documents))
        assert "MyApp.Core.Calculator.get_Total(...)" not in type_node.children

    def test_member_kind_prune_keeps_members_with_findings(self, documents):
        filters = ElementFilters.from_patterns(member_kinds=MemberKindFilter(exclude_methods=True))
        type_node = calculator(ReportBuilder(filters=filters).build(documents))
        assert ADD in type_node.children
        assert "MyApp.Core.Calculator..ctor(...)" not in type_node.children

    def test_member_kind_prune_properties(self, coverage_file):
        filters = ElementFilters.from_patterns(member_kinds=MemberKindFilter(exclude_properties=True))
        report = ReportBuilder(filters=filters).build([OpenCoverParser().parse(str(coverage_file))])
        assert list(calculator(report).children) == [ADD]


# ---------------------------------------------------------------------------
# Duplicate coverage
# ---------------------------------------------------------------------------

class TestDuplicateCoverage:
    def test_same_symbol_in_two_files_raises(self, coverage_file, tmp_path):
        copy = tmp_path / "coverage-copy.xml"
        shutil.copyfile(coverage_file, copy)
        documents = [OpenCoverParser().parse(str(coverage_file)), OpenCoverParser().parse(str(copy))]
        with pytest.raises(DuplicateCoverageError, match="Duplicate AltCover type 'MyApp.Core.Calculator'"):
            ReportBuilder().build(documents)

    def test_duplicate_is_a_validation_error(self):
        assert issubclass(DuplicateCoverageError, ValidationError)

    def test_same_file_twice_is_allowed(self, coverage_file):
        document = OpenCoverParser().parse(str(coverage_file))
        validate_coverage_duplicates([document, document])

    def test_roslyn_overlap_is_not_a_duplicate(self, documents):
        validate_coverage_duplicates(documents)

    def test_excluded_duplicates_are_ignored(self, coverage_file, tmp_path):
        copy = tmp_path / "coverage-copy.xml"
        shutil.copyfile(coverage_file, copy)
        documents = [OpenCoverParser().parse(str(coverage_file)), OpenCoverParser().parse(str(copy))]
        filters = ElementFilters.from_patterns(excluded_assemblies="MyApp")
        ReportBuilder(filters=filters).build(documents)

    def test_member_duplicate_message(self):
        member = ParsedCodeElement(CodeElementKind.MEMBER, "Run", "App.Job.Run(...)")
        documents = [
            ParsedMetricsDocument(SourceFormat.ALTCOVER, "a.xml", elements=[member]),
            ParsedMetricsDocument(SourceFormat.ALTCOVER, "b.xml", elements=[member]),
        ]
        with pytest.raises(DuplicateCoverageError, match="member 'App.Job.Run\\(...\\)' detected in 'a.xml' and 'b.xml'"):
            validate_coverage_duplicates(documents)


# ---------------------------------------------------------------------------
# Async and iterator state machines
# ---------------------------------------------------------------------------

SVC = "MyApp.Svc"
RUN = "MyApp.Svc.RunAsync(...)"
STATE_MACHINE = "MyApp.Svc+<RunAsync>d__3"


def metric_values(**values) -> dict:
    return {M[name.upper()]: MetricValue(value=Decimal(v)) for name, v in values.items()}


def state_machine_types(method: dict, move_next: dict, summary: dict | None = None) -> dict:
    svc = MetricsNode(CodeElementKind.TYPE, "Svc", SVC)
    svc.add_child(MetricsNode(CodeElementKind.MEMBER, "RunAsync(...)", RUN, metrics=method))
    machine = MetricsNode(CodeElementKind.TYPE, "Svc+<RunAsync>d__3", STATE_MACHINE, metrics=summary or {})
    machine.add_child(MetricsNode(CodeElementKind.MEMBER, "MoveNext(...)", STATE_MACHINE + ".MoveNext(...)",
                                  metrics=move_next))
    return {SVC: svc, STATE_MACHINE: machine}


def run_metrics(types: dict) -> dict:
    return {metric: value.value for metric, value in types[SVC].children[RUN].metrics.items()}


class TestIteratorCoverage:
    def test_coverage_moves_onto_declared_method(self):
        types = state_machine_types(
            metric_values(altcover_sequence_coverage=0, altcover_branch_coverage=0,
                          altcover_cyclomatic_complexity=1),
            metric_values(altcover_sequence_coverage=100, altcover_branch_coverage=50,
                          altcover_cyclomatic_complexity=4, altcover_npath_complexity=8),
        )
        assert reconcile_iterator_coverage(types) == [STATE_MACHINE]
        assert run_metrics(types) == {
            M.ALTCOVER_SEQUENCE_COVERAGE: Decimal(100),
            M.ALTCOVER_BRANCH_COVERAGE: Decimal(50),
            M.ALTCOVER_CYCLOMATIC_COMPLEXITY: Decimal(1),
            M.ALTCOVER_NPATH_COMPLEXITY: Decimal(8),
        }

    def test_branch_coverage_needs_a_branch_metric_on_the_method(self):
        types = state_machine_types(
            metric_values(altcover_sequence_coverage=0),
            metric_values(altcover_sequence_coverage=80, altcover_branch_coverage=50),
        )
        reconcile_iterator_coverage(types)
        assert run_metrics(types) == {M.ALTCOVER_SEQUENCE_COVERAGE: Decimal(80)}

    def test_both_covered_keeps_both(self):
        types = state_machine_types(
            metric_values(altcover_sequence_coverage=40),
            metric_values(altcover_sequence_coverage=90),
        )
        assert reconcile_iterator_coverage(types) == []
        assert run_metrics(types) == {M.ALTCOVER_SEQUENCE_COVERAGE: Decimal(40)}

    def test_neither_covered_drops_state_machine(self):
        types = state_machine_types(
            metric_values(altcover_sequence_coverage=0),
            metric_values(altcover_sequence_coverage=0),
        )
        assert reconcile_iterator_coverage(types) == [STATE_MACHINE]
        assert run_metrics(types) == {M.ALTCOVER_SEQUENCE_COVERAGE: Decimal(0)}

    def test_type_summary_is_preferred_over_move_next(self):
        types = state_machine_types(
            metric_values(altcover_sequence_coverage=0),
            metric_values(altcover_sequence_coverage=10),
            summary=metric_values(altcover_sequence_coverage=75),
        )
        reconcile_iterator_coverage(types)
        assert run_metrics(types) == {M.ALTCOVER_SEQUENCE_COVERAGE: Decimal(75)}

    def test_state_machine_without_declared_method_is_kept(self):
        types = state_machine_types({}, metric_values(altcover_sequence_coverage=100))
        del types[SVC]
        assert reconcile_iterator_coverage(types) == []

    def test_builder_reports_async_method_coverage(self, tmp_path):
        path = write_text(tmp_path / "cov.xml", STATE_MACHINE_XML)
        report = ReportBuilder().build([OpenCoverParser().parse(str(path))])
        namespace = report.solution.children["MyApp"].children["MyApp"]
        assert list(namespace.children) == [SVC]
        run = namespace.children[SVC].children[RUN]
        assert run.metrics[M.ALTCOVER_SEQUENCE_COVERAGE].value == Decimal(100)
        assert run.metrics[M.ALTCOVER_CYCLOMATIC_COMPLEXITY].value == Decimal(1)
        assert STATE_MACHINE + ".MoveNext(...)" not in {n.fully_qualified_name for n in report.iter_nodes()}
