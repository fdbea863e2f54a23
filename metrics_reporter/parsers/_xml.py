"""Namespace-agnostic, case-insensitive ElementTree helpers for the XML parsers."""

import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from pathlib import Path

from metrics_reporter.errors import ParsingError


def load_root(path: str) -> ET.Element:
    """Parse *path* and return its root element.

    Raises:
        ParsingError: if the file cannot be read or is not well-formed XML.
    """
    try:
        return ET.parse(Path(path)).getroot()
    except ET.ParseError as exc:
        raise ParsingError(f"Malformed XML in '{path}': {exc}") from exc
    except OSError as exc:
        raise ParsingError(f"Cannot read '{path}': {exc}") from exc


def local_name(element: ET.Element) -> str:
    return element.tag.rsplit("}", 1)[-1].lower()


def children(element: ET.Element | None, name: str) -> list[ET.Element]:
    if element is None:
        return []
    name = name.lower()
    return [c for c in element if local_name(c) == name]


def child(element: ET.Element | None, name: str) -> ET.Element | None:
    found = children(element, name)
    return found[0] if found else None


def grandchildren(element: ET.Element | None, container: str, name: str) -> list[ET.Element]:
    """Children named *name* under the (first) child named *container*."""
    return children(child(element, container), name)


def child_text(element: ET.Element | None, name: str) -> str | None:
    node = child(element, name)
    if node is None or node.text is None:
        return None
    text = node.text.strip()
    return text or None


def attr(element: ET.Element | None, name: str) -> str | None:
    if element is None:
        return None
    name = name.lower()
    for key, value in element.attrib.items():
        if key.rsplit("}", 1)[-1].lower() == name:
            return value
    return None


def attr_decimal(element: ET.Element | None, name: str) -> Decimal | None:
    raw = attr(element, name)
    if raw is None or not raw.strip():
        return None
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def attr_int(element: ET.Element | None, name: str) -> int | None:
    value = attr_decimal(element, name)
    return int(value) if value is not None else None


def attr_bool(element: ET.Element | None, name: str) -> bool:
    return (attr(element, name) or "").strip().lower() == "true"


def all_children(element: ET.Element | None, container: str) -> list[ET.Element]:
    """Every child of the (first) child named *container*, whatever its tag."""
    node = child(element, container)
    return list(node) if node is not None else []
