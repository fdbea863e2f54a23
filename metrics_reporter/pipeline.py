"""The ``generate`` pipeline: inputs in, metrics report out.

Usage:
    result = generate(config, token)
    run_query_scripts(config, config.scripts.read, "Complexity")   # before read

Stages run strictly in order; parsing fans out to a thread pool and is fully
joined before the tree is built. Cancellation is checked between stages.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from metrics_reporter.baseline import BaselineLifecycle, compute_deltas, load_baseline
from metrics_reporter.cancellation import NEVER, CancellationToken
from metrics_reporter.client import ArtifactClient
from metrics_reporter.config import Config, QueryScriptsConfig, validate_for_generate
from metrics_reporter.errors import ReportIoError
from metrics_reporter.filters import ElementFilters, MemberKindFilter
from metrics_reporter.merge import ReportBuilder
from metrics_reporter.metrics import describe_metrics, try_resolve_metric
from metrics_reporter.models import (
    CodeElementKind,
    MetricsReport,
    ParsedMetricsDocument,
    ReportPaths,
    SourceFormat,
)
from metrics_reporter.parsers import parser_for
from metrics_reporter.processes import ProcessRunner, ProcessRunRequest
from metrics_reporter.serialization import write_report
from metrics_reporter.suppression import load_suppressed_symbols
from metrics_reporter.thresholds import apply_thresholds, load_thresholds

logger = logging.getLogger(__name__)

MAX_PARSE_WORKERS = 8


@dataclass
class GenerateResult:
    report_path: str
    assemblies: int
    types: int
    members: int
    sarif_results: int
    baseline_loaded: bool
    baseline_replaced: bool

    def to_dict(self) -> dict:
        return {
            "reportPath":       self.report_path,
            "assemblies":       self.assemblies,
            "types":            self.types,
            "members":          self.members,
            "sarifResults":     self.sarif_results,
            "baselineLoaded":   self.baseline_loaded,
            "baselineReplaced": self.baseline_replaced,
        }


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def run_commands(commands: list[list[str]], timeout_seconds: int, runner: ProcessRunner,
                 token: CancellationToken) -> None:
    """Run *commands* in order, stopping at the first failure.

    Raises:
        ReportIoError: if a command times out or exits non-zero.
    """
    for command in commands:
        token.raise_if_cancelled()
        result = runner.run(ProcessRunRequest(command[0], command[1:], timeout=timeout_seconds), token)
        token.raise_if_cancelled()
        if result.timed_out:
            raise ReportIoError(f"Script '{' '.join(command)}' timed out after {timeout_seconds}s.")
        if result.exit_code != 0:
            raise ReportIoError(
                f"Script '{' '.join(command)}' failed with exit code {result.exit_code}: "
                f"{result.stderr.strip()[:500]}"
            )


def run_scripts(config: Config, runner: ProcessRunner, token: CancellationToken) -> None:
    """Run the configured pre-generate commands."""
    run_commands(config.scripts.commands(), config.scripts.timeout_seconds, runner, token)


def run_query_scripts(
    config: Config,
    scripts: QueryScriptsConfig,
    metric_name: str,
    runner: ProcessRunner | None = None,
    token: CancellationToken = NEVER,
) -> int:
    """Run the commands configured for a query on *metric_name*.

    The ``any`` commands always run; ``by_metric`` commands run when the name
    resolves to their metric. Returns the number of commands run.
    """
    metric = try_resolve_metric(metric_name, config.metric_aliases)
    commands = scripts.commands(metric)
    run_commands(commands, config.scripts.timeout_seconds, runner or ProcessRunner(), token)
    return len(commands)


def parse_inputs(config: Config, token: CancellationToken) -> list[ParsedMetricsDocument]:
    """Parse every input concurrently; results keep configuration order."""
    jobs = [
        (SourceFormat.ALTCOVER, path) for path in config.inputs.altcover
    ] + [
        (SourceFormat.ROSLYN, path) for path in config.inputs.roslyn
    ] + [
        (SourceFormat.SARIF, path) for path in config.inputs.sarif
    ]
    documents: list[ParsedMetricsDocument | None] = [None] * len(jobs)

    with ThreadPoolExecutor(max_workers=min(MAX_PARSE_WORKERS, max(len(jobs), 1))) as executor:
        futures = {
            executor.submit(parser_for(fmt).parse, path, token): index
            for index, (fmt, path) in enumerate(jobs)
        }
        for future in as_completed(futures):
            documents[futures[future]] = future.result()

    logger.info("Parsed %d input files", len(jobs))
    return [d for d in documents if d is not None]


def _filters(config: Config) -> ElementFilters:
    f = config.filters
    return ElementFilters.from_patterns(
        excluded_assemblies=f.excluded_assemblies,
        excluded_types=f.excluded_types,
        excluded_members=f.excluded_members,
        member_kinds=MemberKindFilter(
            exclude_methods=f.exclude_methods,
            exclude_properties=f.exclude_properties,
            exclude_fields=f.exclude_fields,
            exclude_events=f.exclude_events,
        ),
    )


def _count(report: MetricsReport, kind: CodeElementKind) -> int:
    return sum(1 for _ in report.iter_nodes(kind))


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def generate(
    config: Config,
    token: CancellationToken = NEVER,
    runner: ProcessRunner | None = None,
    client: ArtifactClient | None = None,
) -> GenerateResult:
    """Build the report described by *config* and write it to ``config.report``.

    Raises:
        ConfigError:             invalid configuration (nothing is parsed)
        ParsingError:            an input file is malformed
        ValidationError:         duplicate coverage symbols, bad thresholds
        ReportIoError:           report, baseline or script failures
        OperationCancelledError: *token* was cancelled
    """
    validate_for_generate(config)
    thresholds = load_thresholds(config.thresholds.file, config.thresholds.inline, config.metric_aliases)
    suppressed = load_suppressed_symbols(config.suppressed_symbols)
    token.raise_if_cancelled()

    run_scripts(config, runner or ProcessRunner(), token)

    lifecycle = BaselineLifecycle(config.report, config.baseline.path,
                                  config.baseline.storage, config.baseline.replace)
    lifecycle.capture()
    lifecycle.initialize()
    if client is None and config.baseline.token:
        client = ArtifactClient(token=config.baseline.token)
    baseline = load_baseline(config.baseline.path, client)
    token.raise_if_cancelled()

    documents = parse_inputs(config, token)
    token.raise_if_cancelled()

    filters = _filters(config)
    report = ReportBuilder(config.solution_name, filters).build(documents)
    token.raise_if_cancelled()

    compute_deltas(report, baseline)
    apply_thresholds(report, thresholds)

    metadata = report.metadata
    metadata.baseline_reference = config.baseline.reference
    metadata.paths = ReportPaths(
        report=config.report,
        baseline=config.baseline.path,
        thresholds=config.thresholds.file,
        suppressed_symbols=config.suppressed_symbols,
    )
    metadata.thresholds = thresholds
    metadata.metric_descriptors = describe_metrics()
    metadata.excluded_assembly_names = config.filters.excluded_assemblies
    metadata.excluded_type_name_patterns = config.filters.excluded_types
    metadata.excluded_member_name_patterns = config.filters.excluded_members
    metadata.suppressed_symbols = suppressed
    metadata.metric_aliases = config.metric_aliases
    token.raise_if_cancelled()

    write_report(report, config.report)
    replaced = lifecycle.replace()

    return GenerateResult(
        report_path=config.report,
        assemblies=_count(report, CodeElementKind.ASSEMBLY),
        types=_count(report, CodeElementKind.TYPE),
        members=_count(report, CodeElementKind.MEMBER),
        sarif_results=sum(
            len(d.elements) for d in documents if d.source_format is SourceFormat.SARIF
        ),
        baseline_loaded=baseline is not None,
        baseline_replaced=replaced,
    )
