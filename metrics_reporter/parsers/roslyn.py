"""Roslyn code-metrics XML parser (Microsoft.CodeAnalysis.Metrics output).

The input is already hierarchical::

    CodeMetricsReport/Targets/Target[@Name]
        Assembly[@Name] / Metrics / Metric[@Name, @Value]
            Namespaces/Namespace[@Name]
                Types/NamedType[@Name, @File, @Line]
                    Members/Method|Property|Field|Event[@Name, @File, @Line]

Type and member names are rewritten to the canonical scheme of
``metrics_reporter.normalizer`` (nested types use '+', constructors become
``.ctor``) so they join with coverage data.
"""

import logging
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation

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
    GLOBAL_NAMESPACE,
    PARAMETER_PLACEHOLDER,
    find_top_level,
    namespace_of_type,
    normalize,
    normalize_type_name,
    simple_type_name,
)
from metrics_reporter.parsers import _xml

logger = logging.getLogger(__name__)

METRIC_MAP: dict[str, MetricIdentifier] = {
    "maintainabilityindex": MetricIdentifier.ROSLYN_MAINTAINABILITY_INDEX,
    "cyclomaticcomplexity": MetricIdentifier.ROSLYN_CYCLOMATIC_COMPLEXITY,
    "classcoupling": MetricIdentifier.ROSLYN_CLASS_COUPLING,
    "depthofinheritance": MetricIdentifier.ROSLYN_DEPTH_OF_INHERITANCE,
    "sourcelines": MetricIdentifier.ROSLYN_SOURCE_LINES,
    "executablelines": MetricIdentifier.ROSLYN_EXECUTABLE_LINES,
}

_MEMBER_KINDS: dict[str, MemberKind] = {
    "method": MemberKind.METHOD,
    "property": MemberKind.PROPERTY,
    "field": MemberKind.FIELD,
    "event": MemberKind.EVENT,
}

_PROJECT_EXTENSIONS = (".sln", ".slnx", ".csproj", ".vbproj", ".fsproj", ".dll", ".exe")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_metrics(element: ET.Element) -> dict[MetricIdentifier, MetricValue]:
    result: dict[MetricIdentifier, MetricValue] = {}
    for metric in _xml.grandchildren(element, "Metrics", "Metric"):
        identifier = METRIC_MAP.get((_xml.attr(metric, "Name") or "").lower())
        raw = _xml.attr(metric, "Value")
        if identifier is None or raw is None:
            continue
        try:
            result[identifier] = MetricValue(value=Decimal(raw.strip()))
        except InvalidOperation:
            logger.warning("Ignoring non-numeric %s value '%s'", identifier.value, raw)
    return result


def _source(element: ET.Element) -> SourceLocation | None:
    path = _xml.attr(element, "File")
    if not path:
        return None
    line = _xml.attr_int(element, "Line")
    return SourceLocation(path=path, start_line=line, end_line=line)


def _solution_name(target_name: str | None) -> str | None:
    if not target_name:
        return None
    name = target_name.replace("\\", "/").rsplit("/", 1)[-1]
    for ext in _PROJECT_EXTENSIONS:
        if name.lower().endswith(ext):
            return name[: -len(ext)]
    return name


def build_type_fqn(namespace: str | None, type_name: str) -> str:
    """Canonical type FQN from a Roslyn namespace and (dotted, nested) type name."""
    nested = normalize_type_name(type_name).replace(".", "+")
    if not namespace or namespace == GLOBAL_NAMESPACE:
        return nested
    return f"{namespace}.{nested}"


def build_member_fqn(type_fqn: str, raw_member: str) -> str:
    """Canonical member FQN from a Roslyn display name such as
    ``int Calculator.Add(int a, int b)`` or ``Calculator.Calculator()``."""
    text = raw_member.strip()
    is_static = text.startswith("static ")
    display = normalize(text)

    namespace = namespace_of_type(type_fqn)
    type_part = type_fqn if namespace == GLOBAL_NAMESPACE else type_fqn[len(namespace) + 1:]
    simple = simple_type_name(type_fqn)
    for prefix in (type_part.replace("+", ".") + ".", simple + "."):
        if display.startswith(prefix):
            display = display[len(prefix):]
            break

    paren = find_top_level(display, "(")
    name = display if paren < 0 else display[:paren]
    if paren >= 0 and name == simple:
        display = (".cctor" if is_static else ".ctor") + PARAMETER_PLACEHOLDER
    return f"{type_fqn}.{display}"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class RoslynParser:
    source_format = SourceFormat.ROSLYN

    def parse(self, path: str, token: CancellationToken = NEVER) -> ParsedMetricsDocument:
        """Parse one Roslyn metrics XML file.

        Raises:
            ParsingError: if the file is unreadable, malformed, or not a
                          CodeMetricsReport.
        """
        root = _xml.load_root(path)
        if _xml.local_name(root) != "codemetricsreport":
            raise ParsingError(
                f"'{path}' is not a Roslyn metrics report (root element <{root.tag}>)."
            )

        document = ParsedMetricsDocument(source_format=self.source_format, source_path=path)
        for target in _xml.grandchildren(root, "Targets", "Target"):
            if document.solution_name is None:
                document.solution_name = _solution_name(_xml.attr(target, "Name"))
            for assembly in _xml.children(target, "Assembly"):
                token.raise_if_cancelled()
                self._parse_assembly(assembly, document)

        logger.debug("Parsed %d Roslyn elements from '%s'", len(document.elements), path)
        return document

    def _parse_assembly(self, assembly: ET.Element, document: ParsedMetricsDocument) -> None:
        full_name = _xml.attr(assembly, "Name")
        if not full_name:
            logger.warning("Skipping Roslyn assembly without a Name in '%s'", document.source_path)
            return
        assembly_name = full_name.split(",", 1)[0].strip()
        document.elements.append(ParsedCodeElement(
            kind=CodeElementKind.ASSEMBLY,
            name=assembly_name,
            fully_qualified_name=assembly_name,
            metrics=_read_metrics(assembly),
        ))

        for namespace in _xml.grandchildren(assembly, "Namespaces", "Namespace"):
            ns_name = (_xml.attr(namespace, "Name") or "").strip() or GLOBAL_NAMESPACE
            document.elements.append(ParsedCodeElement(
                kind=CodeElementKind.NAMESPACE,
                name=ns_name,
                fully_qualified_name=ns_name,
                parent_fully_qualified_name=assembly_name,
                containing_assembly_name=assembly_name,
                metrics=_read_metrics(namespace),
            ))
            for type_element in _xml.all_children(namespace, "Types"):
                self._parse_type(type_element, ns_name, assembly_name, document)

    def _parse_type(self, type_element: ET.Element, ns_name: str, assembly_name: str,
                    document: ParsedMetricsDocument) -> None:
        type_name = _xml.attr(type_element, "Name")
        if not type_name:
            return
        type_fqn = build_type_fqn(ns_name, type_name)
        document.elements.append(ParsedCodeElement(
            kind=CodeElementKind.TYPE,
            name=type_fqn.rsplit(".", 1)[-1],
            fully_qualified_name=type_fqn,
            parent_fully_qualified_name=ns_name,
            containing_assembly_name=assembly_name,
            source=_source(type_element),
            metrics=_read_metrics(type_element),
        ))

        for member in _xml.all_children(type_element, "Members"):
            raw_name = _xml.attr(member, "Name")
            if not raw_name:
                continue
            fqn = build_member_fqn(type_fqn, raw_name)
            document.elements.append(ParsedCodeElement(
                kind=CodeElementKind.MEMBER,
                name=fqn[len(type_fqn) + 1:],
                fully_qualified_name=fqn,
                parent_fully_qualified_name=type_fqn,
                containing_assembly_name=assembly_name,
                source=_source(member),
                metrics=_read_metrics(member),
                member_kind=_MEMBER_KINDS.get(_xml.local_name(member), MemberKind.UNKNOWN),
            ))
