"""AltCover / OpenCover coverage XML parser.

Produces one Assembly element per module, one Type element per class and one
Member element per method. Coverage percentages and complexity figures are
read as reported; nothing is recomputed.

Expected shape (tag and attribute case is ignored)::

    <CoverageSession>
      <Modules>
        <Module>
          <Summary sequenceCoverage="80" branchCoverage="50" numBranchPoints="4" .../>
          <ModuleName>MyApp.Core</ModuleName>
          <Files><File uid="1" fullPath="C:\\src\\Calc.cs"/></Files>
          <Classes>
            <Class>
              <Summary .../>
              <FullName>MyApp.Core.Calculator</FullName>
              <Methods>
                <Method sequenceCoverage="100" cyclomaticComplexity="3" ...>
                  <Name>System.Int32 MyApp.Core.Calculator::Add(System.Int32,System.Int32)</Name>
                  <FileRef uid="1"/>
                  <SequencePoints><SequencePoint sl="10" el="12"/></SequencePoints>
                  <BranchPoints/>
                </Method>
"""

import logging
import xml.etree.ElementTree as ET
from decimal import Decimal

from metrics_reporter.cancellation import NEVER, CancellationToken
from metrics_reporter.errors import ParsingError
from metrics_reporter.models import (
    CodeElementKind,
    MemberKind,
    MetricIdentifier,
    MetricValue,
    ParsedCodeElement,
    ParsedMetricsDocument,
    SourceFormat,
    SourceLocation,
)
from metrics_reporter.normalizer import (
    extract_method_name,
    is_compiler_generated,
    iterator_state_machine,
    normalize,
    normalize_type_name,
)
from metrics_reporter.parsers import _xml

logger = logging.getLogger(__name__)

_ROOT_NAMES = ("coveragesession", "coverage")


# ---------------------------------------------------------------------------
# Metric extraction
# ---------------------------------------------------------------------------

def _metrics(pairs: dict[MetricIdentifier, Decimal | None]) -> dict[MetricIdentifier, MetricValue]:
    return {metric: MetricValue(value=value) for metric, value in pairs.items() if value is not None}


def _summary_metrics(summary: ET.Element | None) -> dict[MetricIdentifier, MetricValue]:
    if summary is None:
        return {}
    branch_points = _xml.attr_int(summary, "numBranchPoints") or 0
    return _metrics({
        MetricIdentifier.ALTCOVER_SEQUENCE_COVERAGE: _xml.attr_decimal(summary, "sequenceCoverage"),
        MetricIdentifier.ALTCOVER_BRANCH_COVERAGE:
            _xml.attr_decimal(summary, "branchCoverage") if branch_points > 0 else None,
        MetricIdentifier.ALTCOVER_CYCLOMATIC_COMPLEXITY: _xml.attr_decimal(summary, "maxCyclomaticComplexity"),
        MetricIdentifier.ALTCOVER_NPATH_COMPLEXITY: _xml.attr_decimal(summary, "maxNPathComplexity"),
    })


def _method_metrics(method: ET.Element) -> dict[MetricIdentifier, MetricValue]:
    has_branches = bool(_xml.grandchildren(method, "BranchPoints", "BranchPoint"))
    return _metrics({
        MetricIdentifier.ALTCOVER_SEQUENCE_COVERAGE: _xml.attr_decimal(method, "sequenceCoverage"),
        MetricIdentifier.ALTCOVER_BRANCH_COVERAGE:
            _xml.attr_decimal(method, "branchCoverage") if has_branches else None,
        MetricIdentifier.ALTCOVER_CYCLOMATIC_COMPLEXITY: _xml.attr_decimal(method, "cyclomaticComplexity"),
        MetricIdentifier.ALTCOVER_NPATH_COMPLEXITY: _xml.attr_decimal(method, "nPathComplexity"),
    })


def _method_source(method: ET.Element, files: dict[str, str]) -> SourceLocation | None:
    file_ref = _xml.child(method, "FileRef")
    path = files.get(_xml.attr(file_ref, "uid") or "")
    if not path:
        return None
    starts: list[int] = []
    ends: list[int] = []
    for point in _xml.grandchildren(method, "SequencePoints", "SequencePoint"):
        start = _xml.attr_int(point, "sl")
        end = _xml.attr_int(point, "el")
        if start is not None:
            starts.append(start)
        if end is not None:
            ends.append(end)
    return SourceLocation(
        path=path,
        start_line=min(starts) if starts else None,
        end_line=max(ends) if ends else None,
    )


def build_method_fqn(raw_name: str, type_fqn: str) -> str:
    """Canonical FQN for an OpenCover method name, anchored under *type_fqn*."""
    fqn = normalize(raw_name)
    if fqn.startswith(type_fqn + "."):
        return fqn
    method_name = extract_method_name(raw_name) or fqn
    return f"{type_fqn}.{method_name}(...)"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class OpenCoverParser:
    source_format = SourceFormat.ALTCOVER

    def parse(self, path: str, token: CancellationToken = NEVER) -> ParsedMetricsDocument:
        """Parse one coverage XML file.

        Raises:
            ParsingError: if the file is unreadable, malformed, or has an
                          unexpected root element.
        """
        root = _xml.load_root(path)
        if _xml.local_name(root) not in _ROOT_NAMES:
            raise ParsingError(
                f"'{path}' is not a coverage report (root element <{root.tag}>)."
            )

        document = ParsedMetricsDocument(source_format=self.source_format, source_path=path)
        for module in _xml.grandchildren(root, "Modules", "Module"):
            token.raise_if_cancelled()
            self._parse_module(module, document)

        logger.debug("Parsed %d coverage elements from '%s'", len(document.elements), path)
        return document

    def _parse_module(self, module: ET.Element, document: ParsedMetricsDocument) -> None:
        if _xml.attr(module, "skippedDueTo"):
            return
        assembly = _xml.child_text(module, "ModuleName")
        if not assembly:
            logger.warning("Skipping coverage module without a ModuleName in '%s'", document.source_path)
            return

        document.elements.append(ParsedCodeElement(
            kind=CodeElementKind.ASSEMBLY,
            name=assembly,
            fully_qualified_name=assembly,
            metrics=_summary_metrics(_xml.child(module, "Summary")),
        ))

        files = {
            _xml.attr(f, "uid"): _xml.attr(f, "fullPath")
            for f in _xml.grandchildren(module, "Files", "File")
            if _xml.attr(f, "uid") and _xml.attr(f, "fullPath")
        }
        for cls in _xml.grandchildren(module, "Classes", "Class"):
            self._parse_class(cls, assembly, files, document)

    def _parse_class(self, cls: ET.Element, assembly: str, files: dict[str, str],
                     document: ParsedMetricsDocument) -> None:
        full_name = _xml.child_text(cls, "FullName")
        if not full_name:
            return
        type_fqn = normalize_type_name(full_name)
        # async and iterator state machines are kept so their coverage can be
        # moved back onto the declaring method after placement
        if is_compiler_generated(full_name) and iterator_state_machine(type_fqn) is None:
            logger.debug("Skipping compiler-generated class '%s'", full_name)
            return

        type_element = ParsedCodeElement(
            kind=CodeElementKind.TYPE,
            name=type_fqn.rsplit(".", 1)[-1],
            fully_qualified_name=type_fqn,
            containing_assembly_name=assembly,
            metrics=_summary_metrics(_xml.child(cls, "Summary")),
        )
        document.elements.append(type_element)

        for method in _xml.grandchildren(cls, "Methods", "Method"):
            raw_name = _xml.child_text(method, "Name")
            if not raw_name:
                continue
            method_name = extract_method_name(raw_name)
            if is_compiler_generated(method_name):
                continue
            is_accessor = _xml.attr_bool(method, "isGetter") or _xml.attr_bool(method, "isSetter")
            document.elements.append(ParsedCodeElement(
                kind=CodeElementKind.MEMBER,
                name=method_name or raw_name,
                fully_qualified_name=build_method_fqn(raw_name, type_fqn),
                parent_fully_qualified_name=type_fqn,
                containing_assembly_name=assembly,
                source=_method_source(method, files),
                metrics=_method_metrics(method),
                member_kind=MemberKind.PROPERTY if is_accessor else MemberKind.METHOD,
            ))
