"""Configuration loading and validation.

Usage:
    config = load("metrics-reporter.yaml")           # file + METRICS_REPORTER_* env
    config = config.apply_overrides(report="out.json", sarif=["build.sarif"])
    validate_for_generate(config)                    # raises ConfigError
    generate_template("metrics-reporter.yaml")       # writes example file to disk

Precedence, highest first: command-line options, environment variables, the
YAML file, built-in defaults. List-valued environment variables are separated
by ';'.
"""

import os
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from metrics_reporter.errors import ValidationError
from metrics_reporter.metrics import parse_metric_aliases, try_resolve_metric
from metrics_reporter.models import MetricIdentifier

DEFAULT_CONFIG_PATH = "metrics-reporter.yaml"
DEFAULT_REPORT_PATH = "metrics-report.json"
ENV_PREFIX = "METRICS_REPORTER_"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(ValidationError):
    """Raised when the configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class InputsConfig:
    altcover: list[str] = field(default_factory=list)
    roslyn: list[str] = field(default_factory=list)
    sarif: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.altcover or self.roslyn or self.sarif)


@dataclass
class BaselineConfig:
    path: str | None = None
    reference: str | None = None
    storage: str | None = None
    replace: bool = False
    token: str | None = None


@dataclass
class ThresholdsConfig:
    file: str | None = None
    # JSON text, or the same structure written as a YAML mapping
    inline: str | dict | None = None


@dataclass
class FiltersConfig:
    excluded_assemblies: str | None = None
    excluded_types: str | None = None
    excluded_members: str | None = None
    exclude_methods: bool = False
    exclude_properties: bool = False
    exclude_fields: bool = False
    exclude_events: bool = False


def _split_commands(lines: list[str]) -> list[list[str]]:
    return [shlex.split(line) for line in lines if line.strip()]


@dataclass
class QueryScriptsConfig:
    """Commands run before a query: ``any`` always, ``by_metric`` for the queried metric."""
    any: list[str] = field(default_factory=list)
    by_metric: dict[MetricIdentifier, list[str]] = field(default_factory=dict)

    def commands(self, metric: MetricIdentifier | None) -> list[list[str]]:
        lines = self.any + (self.by_metric.get(metric, []) if metric is not None else [])
        return _split_commands(lines)


@dataclass
class ScriptsConfig:
    generate: list[str] = field(default_factory=list)
    read: QueryScriptsConfig = field(default_factory=QueryScriptsConfig)
    test: QueryScriptsConfig = field(default_factory=QueryScriptsConfig)
    timeout_seconds: int = 600

    def commands(self) -> list[list[str]]:
        return _split_commands(self.generate)


@dataclass
class Config:
    solution_name: str | None = None
    inputs: InputsConfig = field(default_factory=InputsConfig)
    report: str = DEFAULT_REPORT_PATH
    baseline: BaselineConfig = field(default_factory=BaselineConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    suppressed_symbols: str | None = None
    filters: FiltersConfig = field(default_factory=FiltersConfig)
    metric_aliases: dict[str, list[str]] = field(default_factory=dict)
    scripts: ScriptsConfig = field(default_factory=ScriptsConfig)

    def apply_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with the given flat settings replaced.

        Keys are the names in ``OVERRIDABLE`` (the same names the
        environment variables use). ``None`` values are ignored so callers can
        pass unset CLI options straight through.
        """
        config = self
        for name, value in overrides.items():
            if value is None or (isinstance(value, (list, tuple)) and not value):
                continue
            if name not in OVERRIDABLE:
                raise ConfigError(f"Unknown configuration override '{name}'.")
            section, attr = OVERRIDABLE[name]
            if isinstance(value, tuple):
                value = list(value)
            if section is None:
                config = replace(config, **{attr: value})
            else:
                updated = replace(getattr(config, section), **{attr: value})
                config = replace(config, **{section: updated})
        return config


#: flat name -> (section, attribute); env var is METRICS_REPORTER_<NAME>
OVERRIDABLE: dict[str, tuple[str | None, str]] = {
    "solution_name":       (None, "solution_name"),
    "altcover":            ("inputs", "altcover"),
    "roslyn":              ("inputs", "roslyn"),
    "sarif":               ("inputs", "sarif"),
    "report":              (None, "report"),
    "baseline":            ("baseline", "path"),
    "baseline_reference":  ("baseline", "reference"),
    "baseline_storage":    ("baseline", "storage"),
    "replace_baseline":    ("baseline", "replace"),
    "baseline_token":      ("baseline", "token"),
    "thresholds_file":     ("thresholds", "file"),
    "thresholds":          ("thresholds", "inline"),
    "suppressed_symbols":  (None, "suppressed_symbols"),
    "excluded_assemblies": ("filters", "excluded_assemblies"),
    "excluded_types":      ("filters", "excluded_types"),
    "excluded_members":    ("filters", "excluded_members"),
    "exclude_methods":     ("filters", "exclude_methods"),
    "exclude_properties":  ("filters", "exclude_properties"),
    "exclude_fields":      ("filters", "exclude_fields"),
    "exclude_events":      ("filters", "exclude_events"),
}

_LIST_SETTINGS = {"altcover", "roslyn", "sarif"}
_BOOL_SETTINGS = {"replace_baseline", "exclude_methods", "exclude_properties",
                  "exclude_fields", "exclude_events"}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _as_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{where}' must be a path or a list of paths.")


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    raise ConfigError(f"'{where}' must be true or false, got {value!r}.")


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"'{where}' must be an integer, got {value!r}.")
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"'{where}' must be an integer, got {value!r}.") from exc


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping.")
    return value


def _query_scripts(scripts: dict, name: str, aliases: dict[str, list[str]]) -> QueryScriptsConfig:
    section = _section(scripts, name)
    by_metric_raw = section.get("by_metric") or {}
    if not isinstance(by_metric_raw, dict):
        raise ConfigError(f"'scripts.{name}.by_metric' must be a mapping of metric name to commands.")
    by_metric: dict[MetricIdentifier, list[str]] = {}
    for key, value in by_metric_raw.items():
        metric = try_resolve_metric(str(key), aliases)
        if metric is None:
            raise ConfigError(f"'scripts.{name}.by_metric': unknown metric '{key}'.")
        by_metric.setdefault(metric, []).extend(_as_list(value, f"scripts.{name}.by_metric.{key}"))
    return QueryScriptsConfig(any=_as_list(section.get("any"), f"scripts.{name}.any"), by_metric=by_metric)


def _from_mapping(raw: dict) -> Config:
    inputs = _section(raw, "inputs")
    baseline = _section(raw, "baseline")
    thresholds = _section(raw, "thresholds")
    filters = _section(raw, "filters")
    scripts = _section(raw, "scripts")

    try:
        aliases = parse_metric_aliases(raw.get("metric_aliases"))
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    return Config(
        solution_name=raw.get("solution_name"),
        inputs=InputsConfig(
            altcover=_as_list(inputs.get("altcover"), "inputs.altcover"),
            roslyn=_as_list(inputs.get("roslyn"), "inputs.roslyn"),
            sarif=_as_list(inputs.get("sarif"), "inputs.sarif"),
        ),
        report=raw.get("report") or DEFAULT_REPORT_PATH,
        baseline=BaselineConfig(
            path=baseline.get("path"),
            reference=baseline.get("reference"),
            storage=baseline.get("storage"),
            replace=_as_bool(baseline.get("replace", False), "baseline.replace"),
            token=baseline.get("token"),
        ),
        thresholds=ThresholdsConfig(file=thresholds.get("file"), inline=thresholds.get("inline")),
        suppressed_symbols=raw.get("suppressed_symbols"),
        filters=FiltersConfig(
            excluded_assemblies=filters.get("excluded_assemblies"),
            excluded_types=filters.get("excluded_types"),
            excluded_members=filters.get("excluded_members"),
            **{
                flag: _as_bool(filters.get(flag, False), f"filters.{flag}")
                for flag in ("exclude_methods", "exclude_properties", "exclude_fields", "exclude_events")
            },
        ),
        metric_aliases=aliases,
        scripts=ScriptsConfig(
            generate=_as_list(scripts.get("generate"), "scripts.generate"),
            read=_query_scripts(scripts, "read", aliases),
            test=_query_scripts(scripts, "test", aliases),
            timeout_seconds=_as_int(scripts.get("timeout_seconds", 600), "scripts.timeout_seconds"),
        ),
    )


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect METRICS_REPORTER_* variables as flat overrides."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in OVERRIDABLE:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is None:
            continue
        if name in _LIST_SETTINGS:
            overrides[name] = [p.strip() for p in value.split(";") if p.strip()]
        elif name in _BOOL_SETTINGS:
            overrides[name] = _as_bool(value, ENV_PREFIX + name.upper())
        else:
            overrides[name] = value
    return overrides


def load(config_path: str = DEFAULT_CONFIG_PATH, required: bool = False) -> Config:
    """Load configuration from a YAML file and the environment.

    A missing file is only an error when *required* is set (an explicit
    ``--config``); otherwise defaults plus environment apply.

    Raises:
        ConfigError: if the file is required but missing, or malformed.
    """
    path = Path(config_path)

    if not path.exists():
        if required:
            raise ConfigError(
                f"Config file not found: '{config_path}'\n"
                "Run `metrics-reporter init` to generate a template."
            )
        raw: Any = {}
    else:
        try:
            with path.open(encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    return _from_mapping(raw).apply_overrides(**env_overrides())


def _is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def validate_for_generate(config: Config) -> None:
    """Raise ConfigError listing every problem that would stop ``generate``."""
    errors: list[str] = []

    if config.inputs.empty:
        errors.append(
            "  - no inputs configured: set at least one of 'inputs.altcover', "
            "'inputs.roslyn' or 'inputs.sarif'"
        )
    for kind in ("altcover", "roslyn", "sarif"):
        for input_path in getattr(config.inputs, kind):
            if not Path(input_path).is_file():
                errors.append(f"  - inputs.{kind}: file not found: '{input_path}'")
    if not config.report:
        errors.append("  - 'report' output path is missing")
    if config.thresholds.file and not Path(config.thresholds.file).is_file():
        errors.append(f"  - thresholds.file: file not found: '{config.thresholds.file}'")
    if config.suppressed_symbols and not Path(config.suppressed_symbols).is_file():
        errors.append(f"  - suppressed_symbols: file not found: '{config.suppressed_symbols}'")
    if config.baseline.replace:
        if not config.baseline.path:
            errors.append("  - baseline.replace is set but 'baseline.path' is missing")
        elif _is_url(config.baseline.path):
            errors.append("  - baseline.replace cannot be used with a remote baseline URL")
    if config.scripts.timeout_seconds <= 0:
        errors.append("  - scripts.timeout_seconds must be positive")

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
solution_name: "MySolution"

inputs:
  altcover:
    - "build/coverage/MyApp.Tests.xml"
  roslyn:
    - "build/metrics/MySolution.Metrics.xml"
  sarif:
    - "build/sarif/MyApp.sarif"

report: "build/metrics-report.json"

baseline:
  path: "build/metrics-baseline.json"   # or an https:// URL
  reference: "main"
  storage: "build/baselines"            # previous baselines are archived here
  replace: false
  # token: "xxxx"                       # bearer token for a remote baseline

thresholds:
  file: "metrics-thresholds.json"
  # inline: "{'metrics': [{'name': 'Complexity', 'symbolThresholds': {'Member': {'warning': 10, 'error': 20}}}]}"

suppressed_symbols: "build/suppressed-symbols.json"

filters:
  excluded_assemblies: "Tests;Benchmarks"
  excluded_types: "*Generated*"
  excluded_members: ""
  exclude_fields: false

metric_aliases:
  RoslynClassCoupling: ["fanout"]

scripts:
  generate: []
  read:
    any: []
    by_metric:
      RoslynCyclomaticComplexity: []
  test:
    any: []
  timeout_seconds: 600
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template metrics-reporter.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists.
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
