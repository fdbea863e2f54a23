"""Tests for metrics_reporter/thresholds.py"""

import textwrap
from decimal import Decimal

import pytest

from metrics_reporter.errors import ReportIoError, ValidationError
from metrics_reporter.models import (
    SYMBOL_LEVELS,
    CodeElementKind,
    MetricIdentifier,
    MetricsNode,
    MetricsReport,
    MetricThreshold,
    MetricValue,
    ReportMetadata,
    ThresholdStatus,
)
from metrics_reporter.thresholds import (
    apply_thresholds,
    default_thresholds,
    evaluate,
    load_thresholds,
    parse_thresholds,
    threshold_for,
)

K = CodeElementKind
M = MetricIdentifier
S = ThresholdStatus

LOWER_IS_BETTER = MetricThreshold(Decimal(10), Decimal(20), higher_is_better=False)
HIGHER_IS_BETTER = MetricThreshold(Decimal(75), Decimal(60), higher_is_better=True)


# ---------------------------------------------------------------------------
# evaluate()
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    ("5", S.SUCCESS),
    ("10", S.SUCCESS),
    ("12", S.WARNING),
    ("20", S.WARNING),
    ("21", S.ERROR),
])
def test_evaluate_lower_is_better(value, expected):
    assert evaluate(Decimal(value), LOWER_IS_BETTER) is expected


@pytest.mark.parametrize("value, expected", [
    ("80", S.SUCCESS),
    ("75", S.SUCCESS),
    ("72.5", S.WARNING),
    ("59.9", S.ERROR),
])
def test_evaluate_higher_is_better(value, expected):
    assert evaluate(Decimal(value), HIGHER_IS_BETTER) is expected


def test_evaluate_without_value_or_threshold():
    assert evaluate(None, LOWER_IS_BETTER) is S.NOT_APPLICABLE
    assert evaluate(Decimal(3), None) is S.SUCCESS
    assert evaluate(Decimal(3), MetricThreshold()) is S.SUCCESS


def test_evaluate_is_monotonic():
    ranks = {S.SUCCESS: 0, S.WARNING: 1, S.ERROR: 2}
    statuses = [ranks[evaluate(Decimal(v), LOWER_IS_BETTER)] for v in range(0, 40)]
    assert statuses == sorted(statuses)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def test_defaults_cover_every_metric_and_level():
    table = default_thresholds()
    assert set(table) == set(MetricIdentifier)
    for definition in table.values():
        assert set(definition.levels) == set(SYMBOL_LEVELS)


def test_default_direction():
    table = default_thresholds()
    assert threshold_for(table, M.ALTCOVER_SEQUENCE_COVERAGE, K.MEMBER).higher_is_better
    assert not threshold_for(table, M.ROSLYN_CYCLOMATIC_COMPLEXITY, K.MEMBER).higher_is_better


# ---------------------------------------------------------------------------
# parse_thresholds()
# ---------------------------------------------------------------------------

def test_parse_overrides_one_level():
    table = parse_thresholds("""
        {"metrics": [{"name": "RoslynCyclomaticComplexity",
                      "symbolThresholds": {"Member": {"warning": 10, "error": 20}}}]}
    """)
    member = threshold_for(table, M.ROSLYN_CYCLOMATIC_COMPLEXITY, K.MEMBER)
    assert (member.warning, member.error) == (Decimal(10), Decimal(20))
    assert not member.higher_is_better
    # other levels keep their defaults
    assert threshold_for(table, M.ROSLYN_CYCLOMATIC_COMPLEXITY, K.TYPE).warning == Decimal(12)


def test_parse_accepts_single_quotes_and_aliases():
    table = parse_thresholds(
        "{'metrics': [{'name': 'Complexity', 'symbolThresholds': {'type': {'warning': 7.5}}}]}"
    )
    assert threshold_for(table, M.ROSLYN_CYCLOMATIC_COMPLEXITY, K.TYPE).warning == Decimal("7.5")


def test_parse_custom_alias():
    table = parse_thresholds(
        {"metrics": [{"name": "fanout", "symbolThresholds": {"Type": {"error": 40}}}]},
        aliases={"RoslynClassCoupling": ["fanout"]},
    )
    assert threshold_for(table, M.ROSLYN_CLASS_COUPLING, K.TYPE).error == Decimal(40)


def test_parse_description_and_direction():
    table = parse_thresholds({"metrics": [{
        "name": "RoslynSourceLines",
        "description": "Lines of source",
        "higherIsBetter": True,
    }]})
    assert table[M.ROSLYN_SOURCE_LINES].description == "Lines of source"
    assert threshold_for(table, M.ROSLYN_SOURCE_LINES, K.MEMBER).higher_is_better


def test_parse_empty_payload_returns_defaults():
    assert parse_thresholds("  ") == default_thresholds()


def test_parse_unknown_metric_raises():
    with pytest.raises(ValidationError, match="Unknown metric 'Bogus'"):
        parse_thresholds({"metrics": [{"name": "Bogus"}]})


def test_parse_unknown_level_raises():
    with pytest.raises(ValidationError, match="unknown symbol level 'Method'"):
        parse_thresholds({"metrics": [{"name": "Complexity", "symbolThresholds": {"Method": {}}}]})


def test_parse_non_numeric_limit_raises():
    with pytest.raises(ValidationError, match="must be a number"):
        parse_thresholds({"metrics": [{"name": "Complexity",
                                       "symbolThresholds": {"Type": {"warning": "high"}}}]})


def test_parse_missing_metrics_array_raises():
    with pytest.raises(ValidationError, match="Expected object with 'metrics' array"):
        parse_thresholds('{"thresholds": []}')


def test_parse_invalid_json_raises():
    with pytest.raises(ValidationError, match="Failed to parse metrics thresholds JSON"):
        parse_thresholds("{metrics: [")


# ---------------------------------------------------------------------------
# load_thresholds()
# ---------------------------------------------------------------------------

def test_load_file_then_inline(tmp_path):
    path = tmp_path / "thresholds.json"
    path.write_text(textwrap.dedent("""\
        {"metrics": [
          {"name": "RoslynClassCoupling", "symbolThresholds": {"Type": {"warning": 30, "error": 60}}},
          {"name": "RoslynDepthOfInheritance", "symbolThresholds": {"Type": {"warning": 3}}}
        ]}
        """), encoding="utf-8")
    inline = "{'metrics': [{'name': 'RoslynClassCoupling', 'symbolThresholds': {'Type': {'warning': 40}}}]}"
    table = load_thresholds(str(path), inline)
    coupling = threshold_for(table, M.ROSLYN_CLASS_COUPLING, K.TYPE)
    assert coupling.warning == Decimal(40)
    assert coupling.error is None
    assert threshold_for(table, M.ROSLYN_DEPTH_OF_INHERITANCE, K.TYPE).warning == Decimal(3)


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(ReportIoError, match="Cannot read thresholds file"):
        load_thresholds(str(tmp_path / "missing.json"))


def test_load_without_sources_returns_defaults():
    assert load_thresholds() == default_thresholds()


# ---------------------------------------------------------------------------
# apply_thresholds()
# ---------------------------------------------------------------------------

def test_apply_thresholds_sets_status_per_level():
    solution = MetricsNode(K.SOLUTION, "Shop", "Shop")
    member = MetricsNode(K.MEMBER, "Run(...)", "Shop.Job.Run(...)", metrics={
        M.ROSLYN_CYCLOMATIC_COMPLEXITY: MetricValue(value=Decimal(12)),
        M.ALTCOVER_SEQUENCE_COVERAGE: MetricValue(value=Decimal("72.5")),
        M.ALTCOVER_BRANCH_COVERAGE: MetricValue(value=None),
    })
    solution.add_child(member)
    report = MetricsReport(ReportMetadata(generated_at_utc="now"), solution)
    table = parse_thresholds({"metrics": [{"name": "RoslynCyclomaticComplexity",
                                           "symbolThresholds": {"Member": {"warning": 10, "error": 20}}}]})

    apply_thresholds(report, table)

    assert member.metrics[M.ROSLYN_CYCLOMATIC_COMPLEXITY].status is S.WARNING
    assert member.metrics[M.ALTCOVER_SEQUENCE_COVERAGE].status is S.WARNING
    assert member.metrics[M.ALTCOVER_BRANCH_COVERAGE].status is S.NOT_APPLICABLE
