"""Exclusion filters applied before elements reach the report tree.

Usage:
    filters = ElementFilters.from_patterns(
        excluded_assemblies="Tests;Benchmarks",
        excluded_types="*Generated*",
        excluded_members="ToString,Equals",
    )
    if filters.assemblies.should_exclude("MyApp.Tests"): ...

Pattern lists are separated by ',' or ';'. Assembly patterns are
case-insensitive substrings; type and member patterns are case-sensitive and
support '*' and '?' wildcards.
"""

import re
from dataclasses import dataclass, field

from metrics_reporter.models import MemberKind
from metrics_reporter.normalizer import extract_method_name, simple_type_name


def split_patterns(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [p.strip() for p in re.split(r"[,;]", raw) if p.strip()]


def _wildcard_regex(pattern: str) -> re.Pattern:
    body = "".join(
        ".*" if ch == "*" else "." if ch == "?" else re.escape(ch)
        for ch in pattern
    )
    return re.compile(f"^{body}$")


def _has_wildcard(pattern: str) -> bool:
    return "*" in pattern or "?" in pattern


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class AssemblyFilter:
    def __init__(self, patterns: str | None = None) -> None:
        self._patterns = [p.lower() for p in split_patterns(patterns)]

    def should_exclude(self, name: str | None) -> bool:
        if not name or not self._patterns:
            return False
        lowered = name.lower()
        return any(p in lowered for p in self._patterns)


class TypeFilter:
    """Wildcard patterns match the whole name; plain ones match a substring."""

    def __init__(self, patterns: str | None = None) -> None:
        raw = split_patterns(patterns)
        self._regexes = [_wildcard_regex(p) for p in raw if _has_wildcard(p)]
        self._substrings = [p for p in raw if not _has_wildcard(p)]

    def _matches(self, candidate: str) -> bool:
        if any(rx.match(candidate) for rx in self._regexes):
            return True
        return any(s in candidate for s in self._substrings)

    def should_exclude(self, fqn_or_name: str | None) -> bool:
        if not fqn_or_name or not (self._regexes or self._substrings):
            return False
        return self._matches(fqn_or_name) or self._matches(simple_type_name(fqn_or_name))


class MemberFilter:
    """Plain patterns are exact member names; wildcards also try the FQN."""

    def __init__(self, patterns: str | None = None) -> None:
        raw = [p.lstrip(".") for p in split_patterns(patterns)]
        self._regexes = [_wildcard_regex(p) for p in raw if p and _has_wildcard(p)]
        self._names = {p for p in raw if p and not _has_wildcard(p)}

    def should_exclude(self, fqn_or_name: str | None) -> bool:
        if not fqn_or_name or not (self._regexes or self._names):
            return False
        method_name = (extract_method_name(fqn_or_name) or fqn_or_name).lstrip(".")
        if method_name in self._names:
            return True
        candidates = (method_name, fqn_or_name.lstrip("."))
        return any(rx.match(c) for rx in self._regexes for c in candidates)


@dataclass
class MemberKindFilter:
    exclude_methods: bool = False
    exclude_properties: bool = False
    exclude_fields: bool = False
    exclude_events: bool = False

    def should_exclude(self, kind: MemberKind | None, has_sarif_violations: bool = False) -> bool:
        # Members carrying analyzer findings always stay visible
        if has_sarif_violations or kind is None:
            return False
        return {
            MemberKind.METHOD: self.exclude_methods,
            MemberKind.PROPERTY: self.exclude_properties,
            MemberKind.FIELD: self.exclude_fields,
            MemberKind.EVENT: self.exclude_events,
        }.get(kind, False)

    @property
    def active(self) -> bool:
        return any((self.exclude_methods, self.exclude_properties,
                    self.exclude_fields, self.exclude_events))


@dataclass
class ElementFilters:
    assemblies: AssemblyFilter = field(default_factory=AssemblyFilter)
    types: TypeFilter = field(default_factory=TypeFilter)
    members: MemberFilter = field(default_factory=MemberFilter)
    member_kinds: MemberKindFilter = field(default_factory=MemberKindFilter)

    @classmethod
    def from_patterns(
        cls,
        excluded_assemblies: str | None = None,
        excluded_types: str | None = None,
        excluded_members: str | None = None,
        member_kinds: MemberKindFilter | None = None,
    ) -> "ElementFilters":
        return cls(
            assemblies=AssemblyFilter(excluded_assemblies),
            types=TypeFilter(excluded_types),
            members=MemberFilter(excluded_members),
            member_kinds=member_kinds or MemberKindFilter(),
        )
