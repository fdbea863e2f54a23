"""Source parsers, one per input format.

Every parser exposes ``parse(path, token) -> ParsedMetricsDocument``.
"""

from metrics_reporter.models import SourceFormat
from metrics_reporter.parsers.opencover import OpenCoverParser
from metrics_reporter.parsers.roslyn import RoslynParser
from metrics_reporter.parsers.sarif import SarifParser

PARSERS = {
    SourceFormat.ALTCOVER: OpenCoverParser,
    SourceFormat.ROSLYN: RoslynParser,
    SourceFormat.SARIF: SarifParser,
}


def parser_for(source_format: SourceFormat):
    return PARSERS[source_format]()


__all__ = ["OpenCoverParser", "RoslynParser", "SarifParser", "PARSERS", "parser_for"]
