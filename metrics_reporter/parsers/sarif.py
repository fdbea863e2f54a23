"""SARIF 2.1 parser for .NET analyzer logs.

Every CA/IDE result becomes one element worth 1 violation of
``SarifCaRuleViolations`` or ``SarifIdeRuleViolations`` with a single-entry
rule breakdown. Elements carry a file location (and, when the log has one, a
logical FQN). The tree builder maps them onto members and types by line.
"""

import json
import logging
import os
import re
from decimal import Decimal
from pathlib import Path
from urllib.parse import unquote, urlparse

from metrics_reporter.cancellation import NEVER, CancellationToken
from metrics_reporter.errors import ParsingError
from metrics_reporter.models import (
    CodeElementKind,
    MetricIdentifier,
    MetricValue,
    ParsedCodeElement,
    ParsedMetricsDocument,
    RuleDescription,
    SarifRuleBreakdownEntry,
    SarifRuleViolationDetail,
    SourceFormat,
    SourceLocation,
)
from metrics_reporter.normalizer import normalize

logger = logging.getLogger(__name__)

RULE_ID_PATTERN = re.compile(r"^(CA|IDE)\d{4}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def metric_for_rule(rule_id: str | None) -> MetricIdentifier | None:
    """SARIF metric a rule counts towards, by prefix (CA or IDE)."""
    if not isinstance(rule_id, str) or not rule_id:
        return None
    upper = rule_id.upper()
    if upper.startswith("IDE"):
        return MetricIdentifier.SARIF_IDE_RULE_VIOLATIONS
    if upper.startswith("CA"):
        return MetricIdentifier.SARIF_CA_RULE_VIOLATIONS
    return None


def uri_to_path(uri: str | None) -> str | None:
    """Turn a SARIF artifact URI into a local path."""
    if not uri:
        return None
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        path = unquote(parsed.path)
        # file:///C:/src/x.cs -> C:/src/x.cs
        if re.match(r"^/[A-Za-z]:/", path):
            path = path[1:]
        if parsed.netloc:
            path = f"//{parsed.netloc}{path}"
    else:
        path = unquote(uri)
    return path.replace("/", os.sep)


def _text(node) -> str | None:
    if isinstance(node, dict):
        value = node.get("text")
        return value if isinstance(value, str) and value else None
    return None


def _as_int(value) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _object(value) -> dict:
    return value if isinstance(value, dict) else {}


def _array(value) -> list:
    return value if isinstance(value, list) else []


def _first_location(result: dict) -> tuple[str | None, int | None, int | None, str | None]:
    """Return ``(uri, start_line, end_line, logical_fqn)`` of the first location."""
    locations = result.get("locations")
    if not isinstance(locations, list) or not locations or not isinstance(locations[0], dict):
        return None, None, None, None
    location = locations[0]

    logical_fqn = None
    logical = location.get("logicalLocations")
    if isinstance(logical, list) and logical and isinstance(logical[0], dict):
        logical_fqn = logical[0].get("fullyQualifiedName")

    physical = location.get("physicalLocation")
    if not isinstance(physical, dict):
        return None, None, None, logical_fqn
    uri = _object(physical.get("artifactLocation")).get("uri")
    if not isinstance(uri, str):
        uri = None
    region = physical.get("region")
    if not isinstance(region, dict):
        return uri, None, None, logical_fqn
    start = _as_int(region.get("startLine"))
    end = _as_int(region.get("endLine"))
    return uri, start, end if end is not None else start, logical_fqn


def _rule_descriptions(run: dict) -> dict[str, RuleDescription]:
    driver = _object(_object(run.get("tool")).get("driver"))
    result: dict[str, RuleDescription] = {}
    for rule in _array(driver.get("rules")):
        if not isinstance(rule, dict):
            continue
        rule_id = rule.get("id")
        if not isinstance(rule_id, str):
            continue
        rule_id = rule_id.upper()
        if not RULE_ID_PATTERN.match(rule_id):
            continue
        properties = rule.get("properties") or {}
        result[rule_id] = RuleDescription(
            short_description=_text(rule.get("shortDescription")),
            full_description=_text(rule.get("fullDescription")),
            help_uri=rule.get("helpUri"),
            category=properties.get("category") if isinstance(properties, dict) else None,
        )
    return result


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class SarifParser:
    source_format = SourceFormat.SARIF

    def parse(self, path: str, token: CancellationToken = NEVER) -> ParsedMetricsDocument:
        """Parse one SARIF log.

        Raises:
            ParsingError: if the file is unreadable or not a JSON object.
        """
        try:
            with Path(path).open(encoding="utf-8-sig") as f:
                raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ParsingError(f"Malformed SARIF JSON in '{path}': {exc}") from exc
        except OSError as exc:
            raise ParsingError(f"Cannot read '{path}': {exc}") from exc

        if not isinstance(raw, dict):
            raise ParsingError(f"'{path}' must contain a SARIF log object at the top level.")

        document = ParsedMetricsDocument(source_format=self.source_format, source_path=path)
        for run in _array(raw.get("runs")):
            if not isinstance(run, dict):
                continue
            document.rule_descriptions.update(_rule_descriptions(run))
            for result in _array(run.get("results")):
                token.raise_if_cancelled()
                element = self._parse_result(result)
                if element is not None:
                    document.elements.append(element)

        logger.debug("Parsed %d SARIF results from '%s'", len(document.elements), path)
        return document

    def _parse_result(self, result) -> ParsedCodeElement | None:
        if not isinstance(result, dict):
            return None
        rule_id = result.get("ruleId") or _object(result.get("rule")).get("id")
        metric = metric_for_rule(rule_id)
        if metric is None:
            logger.debug("Ignoring SARIF result with rule '%s'", rule_id)
            return None
        rule_id = rule_id.upper()
        if not RULE_ID_PATTERN.match(rule_id):
            logger.info("Dropping SARIF result with malformed rule id '%s'", rule_id)
            return None

        uri, start, end, logical_fqn = _first_location(result)
        message = _text(result.get("message"))
        path = uri_to_path(uri)
        detail = SarifRuleViolationDetail(message=message, uri=uri, start_line=start, end_line=end)
        breakdown = {rule_id: SarifRuleBreakdownEntry(count=1, violations=[detail])}

        return ParsedCodeElement(
            kind=CodeElementKind.MEMBER,
            name=rule_id,
            fully_qualified_name=normalize(logical_fqn) if logical_fqn else None,
            source=SourceLocation(path=path, start_line=start, end_line=end) if path else None,
            metrics={metric: MetricValue(value=Decimal(1), breakdown=breakdown)},
            rule_id=rule_id,
        )
