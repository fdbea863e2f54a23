"""CLI entry point: command definitions using Click.

Commands:
    init          Generate a template config file
    generate      Parse inputs and write the metrics report
    read          Threshold violations for a metric under a namespace
    readsarif     Analyzer (SARIF) findings under a namespace, grouped
    test          Pass/fail check of one symbol for one metric

Exit codes: 0 success (including "no violations"), 1 parsing error,
2 I/O error, 3 validation error.
"""

import functools
import logging
import signal
import sys
from typing import Any

import click
from click.core import ParameterSource

from metrics_reporter import __version__

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Helpers shared by all commands
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool, log_file: str | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def _load_config(ctx: click.Context):
    """Load config (file + environment). Only an explicit --config must exist."""
    from metrics_reporter.config import load

    obj = ctx.obj
    config = load(obj["config_path"], required=obj["config_explicit"])
    if obj["verbose"]:
        click.echo(f"[verbose] Configuration loaded from '{obj['config_path']}'", err=True)
    return config


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    from metrics_reporter.serialization import dumps

    obj = ctx.obj
    text = dumps(data, pretty=obj["pretty"])

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _handle_errors(func):
    """Decorator that maps metrics-reporter exceptions to exit codes."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from metrics_reporter.client import ArtifactClientError
        from metrics_reporter.config import ConfigError
        from metrics_reporter.errors import (
            MetricsReporterError,
            OperationCancelledError,
            ParsingError,
            ReportIoError,
            ValidationError,
        )

        try:
            return func(*args, **kwargs)
        except ConfigError as exc:
            click.echo(f"Configuration error: {exc}", err=True)
            sys.exit(exc.exit_code)
        except ValidationError as exc:
            click.echo(f"Validation error: {exc}", err=True)
            sys.exit(exc.exit_code)
        except ParsingError as exc:
            click.echo(f"Parsing error: {exc}", err=True)
            sys.exit(exc.exit_code)
        except OperationCancelledError as exc:
            click.echo(f"Cancelled: {exc}", err=True)
            sys.exit(exc.exit_code)
        except ArtifactClientError as exc:
            click.echo(f"Baseline download error: {exc}", err=True)
            sys.exit(exc.exit_code)
        except ReportIoError as exc:
            click.echo(f"I/O error: {exc}", err=True)
            sys.exit(exc.exit_code)
        except MetricsReporterError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(exc.exit_code)

    return wrapper


def _prepare_query(ctx: click.Context, report_path: str | None, section: str, metric: str,
                   run_scripts: bool) -> str:
    """Run the read or test scripts configured for *metric*; return the report to open."""
    from metrics_reporter.pipeline import run_query_scripts

    config = _load_config(ctx)
    if not run_scripts:
        if ctx.obj["verbose"]:
            click.echo(f"[verbose] Scripts disabled; skipping {section} scripts", err=True)
    else:
        count = run_query_scripts(config, getattr(config.scripts, section), metric)
        if count and ctx.obj["verbose"]:
            click.echo(f"[verbose] Ran {count} {section} script(s)", err=True)
    return report_path or config.report


def _open_reader(ctx: click.Context, report_path: str, thresholds_file: str | None):
    from metrics_reporter.reader import MetricsReader
    from metrics_reporter.serialization import load_report
    from metrics_reporter.thresholds import load_thresholds

    if ctx.obj["verbose"]:
        click.echo(f"[verbose] Reading report '{report_path}'", err=True)
    report = load_report(report_path)
    thresholds = (
        load_thresholds(thresholds_file, aliases=report.metadata.metric_aliases)
        if thresholds_file else None
    )
    return MetricsReader(report, thresholds=thresholds)


_report_option = click.option(
    "--report", "report_path", default=None,
    help="Report to query (defaults to 'report' from the config).")
_namespace_option = click.option(
    "--namespace", default="", show_default=True,
    help="Namespace prefix to search; empty means the whole solution.")
_symbol_kind_option = click.option(
    "--symbol-kind", default="Any", show_default=True,
    type=click.Choice(["Any", "Type", "Member"], case_sensitive=False),
    help="Restrict results to types or members.")
_all_option = click.option(
    "--all", "show_all", is_flag=True, default=False,
    help="Return every match instead of only the most severe one.")
_include_suppressed_option = click.option(
    "--include-suppressed", is_flag=True, default=False,
    help="Report suppressed symbols as violations too.")
_run_scripts_option = click.option(
    "--run-scripts/--no-run-scripts", default=True, show_default=True,
    help="Run the scripts configured for this command and metric first.")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="metrics-reporter.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.option("--log-file", default=None,
              help="Also write log records to this file.")
@click.version_option(__version__, prog_name="metrics-reporter")
@click.pass_context
def cli(ctx: click.Context, config_path: str, output_path: str | None,
        pretty: bool, verbose: bool, log_file: str | None) -> None:
    """Code-quality metrics for .NET solutions: coverage, Roslyn metrics and SARIF."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["config_explicit"] = ctx.get_parameter_source("config_path") is not ParameterSource.DEFAULT
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose, log_file)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="metrics-reporter.yaml", show_default=True,
              help="Path where the template config file will be written.")
@_handle_errors
def init_command(output_path: str) -> None:
    """Generate a template metrics-reporter.yaml file."""
    from metrics_reporter.config import generate_template

    generate_template(output_path)
    click.echo(f"Template written to '{output_path}'.")
    click.echo("Edit it with your input files, baseline and threshold settings.")


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------

@cli.command("generate")
@click.option("--solution-name", default=None, help="Solution name shown at the report root.")
@click.option("--altcover", multiple=True, help="AltCover/OpenCover coverage XML (repeatable).")
@click.option("--roslyn", multiple=True, help="Roslyn code-metrics XML (repeatable).")
@click.option("--sarif", multiple=True, help="SARIF analyzer log (repeatable).")
@click.option("--report", default=None, help="Where to write the report JSON.")
@click.option("--baseline", default=None, help="Baseline report path or http(s) URL.")
@click.option("--baseline-reference", default=None, help="Label of the baseline (branch, build).")
@click.option("--baseline-storage", default=None, help="Directory receiving archived baselines.")
@click.option("--replace-baseline", is_flag=True, default=None,
              help="Promote the new report to baseline after writing it.")
@click.option("--thresholds-file", default=None, help="Thresholds JSON file.")
@click.option("--thresholds", default=None, help="Inline thresholds JSON.")
@click.option("--suppressed-symbols", default=None, help="Suppressed symbols JSON file.")
@click.option("--excluded-assemblies", default=None, help="Assembly name fragments, ';' separated.")
@click.option("--excluded-types", default=None, help="Type name patterns, ';' separated.")
@click.option("--excluded-members", default=None, help="Member name patterns, ';' separated.")
@click.option("--exclude-methods", is_flag=True, default=None, help="Drop methods from the report.")
@click.option("--exclude-properties", is_flag=True, default=None, help="Drop properties from the report.")
@click.option("--exclude-fields", is_flag=True, default=None, help="Drop fields from the report.")
@click.option("--exclude-events", is_flag=True, default=None, help="Drop events from the report.")
@click.pass_context
@_handle_errors
def generate_command(ctx: click.Context, **options: Any) -> None:
    """Parse inputs, compare with the baseline and write the metrics report."""
    from metrics_reporter.cancellation import CancellationToken
    from metrics_reporter.pipeline import generate

    # an unset flag must not override a value from the file or environment
    overrides = {name: None if value is False else value for name, value in options.items()}
    config = _load_config(ctx).apply_overrides(**overrides)
    token = CancellationToken()

    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        if ctx.obj["verbose"]:
            click.echo(f"[verbose] Generating '{config.report}'", err=True)
        result = generate(config, token)
    finally:
        signal.signal(signal.SIGINT, previous)

    _emit_json(result.to_dict(), ctx)


# ---------------------------------------------------------------------------
# read
# ---------------------------------------------------------------------------

@cli.command("read")
@_report_option
@_namespace_option
@click.option("--metric", required=True, help="Metric name or alias, e.g. Complexity.")
@_symbol_kind_option
@_all_option
@click.option("--group-by", default=None,
              help="Group violations by metric, namespace, type or method.")
@_include_suppressed_option
@click.option("--thresholds-file", default=None,
              help="Re-evaluate with these thresholds instead of the report's.")
@_run_scripts_option
@click.pass_context
@_handle_errors
def read_command(ctx: click.Context, report_path: str | None, namespace: str, metric: str,
                 symbol_kind: str, show_all: bool, group_by: str | None,
                 include_suppressed: bool, thresholds_file: str | None,
                 run_scripts: bool) -> None:
    """Most severe (or all) threshold violations of METRIC under NAMESPACE."""
    from metrics_reporter.reader import GroupBy, SymbolKind

    report_path = _prepare_query(ctx, report_path, "read", metric, run_scripts)
    reader = _open_reader(ctx, report_path, thresholds_file)
    result = reader.read_any(
        namespace,
        metric,
        symbol_kind=SymbolKind.parse(symbol_kind),
        all=show_all,
        group_by=GroupBy.parse(group_by),
        include_suppressed=include_suppressed,
    )
    _emit_json(result.payload, ctx)


# ---------------------------------------------------------------------------
# readsarif
# ---------------------------------------------------------------------------

@cli.command("readsarif")
@_report_option
@_namespace_option
@click.option("--metric", default="SarifCaRuleViolations", show_default=True,
              help="SarifCaRuleViolations or SarifIdeRuleViolations (or an alias).")
@click.option("--rule-id", default=None, help="Only this rule, e.g. CA1506.")
@_symbol_kind_option
@_all_option
@click.option("--group-by", default="ruleId", show_default=True,
              help="Group findings by ruleId, metric, namespace, type or method.")
@_include_suppressed_option
@_run_scripts_option
@click.pass_context
@_handle_errors
def readsarif_command(ctx: click.Context, report_path: str | None, namespace: str, metric: str,
                      rule_id: str | None, symbol_kind: str, show_all: bool, group_by: str,
                      include_suppressed: bool, run_scripts: bool) -> None:
    """Analyzer findings under NAMESPACE, grouped (by rule by default)."""
    from metrics_reporter.reader import GroupBy, SymbolKind

    report_path = _prepare_query(ctx, report_path, "read", metric, run_scripts)
    reader = _open_reader(ctx, report_path, None)
    result = reader.read_sarif(
        namespace,
        metric,
        rule_id=rule_id,
        symbol_kind=SymbolKind.parse(symbol_kind),
        all=show_all,
        group_by=GroupBy.parse(group_by),
        include_suppressed=include_suppressed,
    )
    _emit_json(result.payload, ctx)


# ---------------------------------------------------------------------------
# test
# ---------------------------------------------------------------------------

@cli.command("test")
@_report_option
@click.option("--symbol", required=True, help="Fully qualified type or member name.")
@click.option("--metric", required=True, help="Metric name or alias.")
@_include_suppressed_option
@_run_scripts_option
@click.pass_context
@_handle_errors
def test_command(ctx: click.Context, report_path: str | None, symbol: str, metric: str,
                 include_suppressed: bool, run_scripts: bool) -> None:
    """Check whether SYMBOL passes the thresholds for METRIC."""
    report_path = _prepare_query(ctx, report_path, "test", metric, run_scripts)
    reader = _open_reader(ctx, report_path, None)
    _emit_json(reader.test(symbol, metric, include_suppressed=include_suppressed), ctx)
