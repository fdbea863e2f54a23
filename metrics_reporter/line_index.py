"""File/line lookup used to attach SARIF results to report nodes.

Members and types that know their source file and start line are indexed per
file (paths compared case-insensitively, either slash direction). Lookups try
members first, then types:

    1. a node starting exactly on the line (smallest span wins)
    2. a node starting on the next line (attribute line above a declaration)
    3. the smallest node whose span contains the line
    4. members only: the closest single-line member starting above the line
"""

from collections import Counter, defaultdict
from dataclasses import dataclass

from metrics_reporter.models import CodeElementKind, MetricsNode, SourceLocation


def path_key(path: str) -> str:
    key = path.replace("\\", "/").lower()
    while key.startswith("./"):
        key = key[2:]
    return key


@dataclass
class _Entry:
    node: MetricsNode
    start: int
    end: int

    @property
    def span(self) -> int:
        return self.end - self.start

    @property
    def sort_key(self) -> tuple[int, str]:
        return self.span, self.node.fully_qualified_name


def _pick(entries: list[_Entry], line: int, single_line_fallback: bool) -> MetricsNode | None:
    exact = [e for e in entries if e.start == line]
    if exact:
        return min(exact, key=lambda e: e.sort_key).node
    above = [e for e in entries if e.start - 1 == line]
    if above:
        return min(above, key=lambda e: e.sort_key).node
    containing = [e for e in entries if e.start <= line <= e.end]
    if containing:
        return min(containing, key=lambda e: e.sort_key).node
    if single_line_fallback:
        preceding = [e for e in entries if e.span == 0 and e.start <= line]
        if preceding:
            return max(preceding, key=lambda e: (e.start, e.node.fully_qualified_name)).node
    return None


class LineIndex:
    def __init__(self, solution: MetricsNode) -> None:
        self._members: dict[str, list[_Entry]] = defaultdict(list)
        self._types: dict[str, list[_Entry]] = defaultdict(list)
        self._file_assemblies: dict[str, Counter] = defaultdict(Counter)
        self._assemblies: dict[str, MetricsNode] = {}

        for assembly in solution.children.values():
            self._assemblies[assembly.fully_qualified_name] = assembly
            for namespace in assembly.children.values():
                for type_node in namespace.children.values():
                    self._add(self._types, type_node, assembly)
                    for member in type_node.children.values():
                        self._add(self._members, member, assembly)

    def _add(self, bucket: dict[str, list[_Entry]], node: MetricsNode, assembly: MetricsNode) -> None:
        source = node.source
        if source is None or not source.path:
            return
        key = path_key(source.path)
        self._file_assemblies[key][assembly.fully_qualified_name] += 1
        if source.start_line is None:
            return
        end = source.end_line if source.end_line is not None else source.start_line
        bucket[key].append(_Entry(node, source.start_line, max(end, source.start_line)))

    def resolve(self, path: str, line: int | None) -> MetricsNode | None:
        """Member or type declared at or around *line* of *path*."""
        if line is None:
            return None
        key = path_key(path)
        node = _pick(self._members.get(key, []), line, single_line_fallback=False)
        if node is None:
            node = _pick(self._types.get(key, []), line, single_line_fallback=False)
        if node is None:
            node = _pick(self._members.get(key, []), line, single_line_fallback=True)
        return node

    def assembly_for(self, path: str) -> MetricsNode | None:
        """Assembly owning most indexed symbols of *path*."""
        counts = self._file_assemblies.get(path_key(path))
        if not counts:
            return None
        name = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        return self._assemblies.get(name)


def backfill_type_sources(solution: MetricsNode) -> None:
    """Give types without a source the dominant file and line span of their members."""
    for node in solution.walk():
        if node.kind is not CodeElementKind.TYPE or (node.source is not None and node.source.is_complete):
            continue
        sources = [m.source for m in node.children.values() if m.source is not None and m.source.path]
        if not sources:
            continue
        dominant = Counter(path_key(s.path) for s in sources).most_common(1)[0][0]
        in_file = [s for s in sources if path_key(s.path) == dominant]
        starts = [s.start_line for s in in_file if s.start_line is not None]
        ends = [s.end_line for s in in_file if s.end_line is not None]
        node.source = SourceLocation(
            path=in_file[0].path,
            start_line=min(starts) if starts else None,
            end_line=max(ends) if ends else None,
        )
