"""Baseline comparison and baseline file lifecycle.

Usage:
    baseline = load_baseline("build/metrics-baseline.json")
    compute_deltas(report, baseline)          # fills MetricValue.delta in place

    lifecycle = BaselineLifecycle(report_path, baseline_path, storage_path, replace=True)
    lifecycle.capture()                       # before the report is written
    lifecycle.initialize()
    ...                                       # write the new report
    lifecycle.replace()
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path

from metrics_reporter.client import ArtifactClient
from metrics_reporter.errors import ReportIoError
from metrics_reporter.models import CodeElementKind, MetricsNode, MetricsReport
from metrics_reporter.serialization import load_report, report_from_dict

logger = logging.getLogger(__name__)

_ARCHIVE_TIMESTAMP = "%Y%m%d-%H%M%S"


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------

def _node_key(node: MetricsNode, assembly: str | None) -> tuple:
    if node.kind is CodeElementKind.SOLUTION:
        return (node.kind,)
    if node.kind is CodeElementKind.NAMESPACE:
        return node.kind, (assembly or "").lower(), node.fully_qualified_name
    return node.kind, node.fully_qualified_name


def _index(solution: MetricsNode) -> dict[tuple, MetricsNode]:
    index: dict[tuple, MetricsNode] = {}

    def visit(node: MetricsNode, assembly: str | None) -> None:
        if node.kind is CodeElementKind.ASSEMBLY:
            assembly = node.fully_qualified_name
        index.setdefault(_node_key(node, assembly), node)
        for child in node.children.values():
            visit(child, assembly)

    visit(solution, None)
    return index


def compute_deltas(current: MetricsReport, baseline: MetricsReport | None) -> None:
    """Fill ``delta`` and ``is_new`` on every node of *current*.

    Nodes are matched by level and fully qualified name only. A metric gets
    a delta when both sides have a value (zero deltas are kept). Nodes that
    disappeared since the baseline are not reported.
    """
    if baseline is None:
        return
    previous = _index(baseline.solution)

    def visit(node: MetricsNode, assembly: str | None) -> None:
        if node.kind is CodeElementKind.ASSEMBLY:
            assembly = node.fully_qualified_name
        match = previous.get(_node_key(node, assembly))
        node.is_new = match is None
        for metric, value in node.metrics.items():
            old = match.metrics.get(metric) if match is not None else None
            if old is None or old.value is None or value.value is None:
                value.delta = None
            else:
                value.delta = value.value - old.value
        for child in node.children.values():
            visit(child, assembly)

    visit(current.solution, None)


def load_baseline(location: str | None, client: ArtifactClient | None = None) -> MetricsReport | None:
    """Load a baseline report from a local path or an http(s) URL.

    A local file that does not exist yet means "no baseline" and returns None.

    Raises:
        ReportIoError: if a remote baseline cannot be fetched or a local one
                       cannot be read.
        ParsingError:  if the baseline content is not a valid report.
    """
    if not location:
        return None
    if location.startswith(("http://", "https://")):
        client = client or ArtifactClient()
        logger.info("Fetching baseline from '%s'", location)
        return report_from_dict(client.get_json(location))
    if not Path(location).exists():
        logger.info("No baseline found at '%s'; deltas will be empty", location)
        return None
    return load_report(location)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class BaselineLifecycle:
    """Keeps the baseline file in step with successive reports.

    ``capture`` must run before the new report overwrites the old one, since
    the decisions of ``initialize`` and ``replace`` depend on what existed at
    the start of the run.
    """

    def __init__(self, report_path: str, baseline_path: str | None,
                 storage_path: str | None = None, replace: bool = False) -> None:
        self.report_path = Path(report_path)
        self.baseline_path = Path(baseline_path) if baseline_path else None
        self.storage_path = Path(storage_path) if storage_path else None
        self.replace_enabled = replace
        self.had_report_at_start = False
        self.had_baseline_at_start = False

    def capture(self) -> None:
        self.had_report_at_start = self.report_path.exists()
        self.had_baseline_at_start = self.baseline_path is not None and self.baseline_path.exists()

    def initialize(self) -> bool:
        """Seed a missing baseline from the previous report. Returns True if seeded."""
        if not self.replace_enabled or self.baseline_path is None:
            return False
        if self.baseline_path.exists() or not self.report_path.exists():
            return False
        self._copy(self.report_path, self.baseline_path)
        logger.info("Baseline initialized from previous report '%s'", self.report_path)
        return True

    def replace(self) -> bool:
        """Archive the current baseline and promote the new report. Returns True if replaced."""
        if not self.replace_enabled or self.baseline_path is None:
            return False
        if not (self.had_report_at_start or self.had_baseline_at_start):
            return False
        if not self.report_path.exists():
            logger.warning("Report '%s' missing; baseline left unchanged", self.report_path)
            return False
        if self.baseline_path.exists():
            self.archive()
        self._copy(self.report_path, self.baseline_path)
        logger.info("Baseline '%s' replaced with '%s'", self.baseline_path, self.report_path)
        return True

    def archive(self, now: datetime | None = None) -> Path | None:
        """Move the baseline into storage as ``name-YYYYmmdd-HHMMSS.ext``."""
        if self.baseline_path is None or not self.baseline_path.exists():
            return None
        if self.storage_path is None:
            logger.info("No baseline storage path configured; previous baseline is not archived")
            return None
        stamp = (now or datetime.now()).strftime(_ARCHIVE_TIMESTAMP)
        target = self.storage_path / f"{self.baseline_path.stem}-{stamp}{self.baseline_path.suffix}"
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            shutil.move(str(self.baseline_path), str(target))
        except OSError as exc:
            raise ReportIoError(f"Cannot archive baseline to '{target}': {exc}") from exc
        logger.info("Previous baseline archived to '%s'", target)
        return target

    @staticmethod
    def _copy(source: Path, target: Path) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise ReportIoError(f"Cannot copy '{source}' to '{target}': {exc}") from exc
