"""Canonical symbol names.

Coverage, Roslyn metrics and SARIF all describe the same .NET symbols with
different spellings. Everything the tree builder joins on goes through
``normalize`` first.

Canonical scheme:
    Ns.Outer+Inner                 nested types use '+'
    Ns.Repository                  generic arity and arguments are dropped
    Ns.Repository.Find(...)        parameter lists become '(...)'
    Ns.Repository..ctor(...)       constructors ('.cctor' for static ones)

Usage:
    normalize("System.Void Ns.Repo`1/Item::Save(System.String)")
        # -> "Ns.Repo+Item.Save(...)"
    extract_method_name("Ns.Repo.Save(...)")          # -> "Save"
    split_member_fqn("Ns.Repo.Save(...)")             # -> ("Ns.Repo", "Save(...)")
    iterator_state_machine("Ns.Svc+<RunAsync>d__3")   # -> ("Ns.Svc", "RunAsync")
"""

import logging
import re

logger = logging.getLogger(__name__)

GLOBAL_NAMESPACE = "<global>"
PARAMETER_PLACEHOLDER = "(...)"

_ARITY = re.compile(r"`\d+")
_COMPILER_GENERATED = re.compile(r"(^|[.+/])<[^>]*>[a-zA-Z]__|\$$|^<>|[.+/]<>")
_STATE_MACHINE = re.compile(r"^(?P<outer>.+)\+<(?P<method>[^<>]+)>d__\d+$")
_OPENERS = {"(": ")", "<": ">", "[": "]"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _is_balanced(text: str) -> bool:
    stack: list[str] = []
    for ch in text:
        if ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                return False
            stack.pop()
    return not stack


def _strip_generic_arguments(text: str) -> str:
    """Drop ``<...>`` lists that directly follow an identifier character.

    Compiler-generated names such as ``<Clone>$`` or ``Outer+<Run>d__4`` keep
    their brackets because the ``<`` does not follow an identifier.
    """
    result: list[str] = []
    depth = 0
    for ch in text:
        if depth:
            if ch == "<":
                depth += 1
            elif ch == ">":
                depth -= 1
            continue
        if ch == "<" and result and _is_identifier_char(result[-1]):
            depth = 1
            continue
        result.append(ch)
    return "".join(result)


def find_top_level(text: str, target: str) -> int:
    """Index of the first *target* outside any bracket pair, or -1."""
    depth = 0
    for index, ch in enumerate(text):
        if ch in "<[":
            depth += 1
        elif ch in ">]":
            depth = max(depth - 1, 0)
        elif depth == 0 and ch == target:
            return index
    return -1


def _strip_return_type(text: str) -> str:
    """Drop a leading return type such as ``System.Void`` or ``Task<int>``."""
    paren = find_top_level(text, "(")
    head = text if paren < 0 else text[:paren]
    depth = 0
    last_space = -1
    for index, ch in enumerate(head):
        if ch in "<[":
            depth += 1
        elif ch in ">]":
            depth = max(depth - 1, 0)
        elif ch == " " and depth == 0:
            last_space = index
    if last_space < 0:
        return text
    return text[last_space + 1:]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_type_name(name: str) -> str:
    """Canonical type name: '+' for nesting, no generic arity or arguments."""
    if not name:
        return name
    text = name.strip().replace("/", "+")
    return _strip_generic_arguments(_ARITY.sub("", text))


def normalize_method_signature(signature: str) -> str:
    """Replace the parameter list (with nested brackets) by ``(...)``."""
    start = signature.find("(")
    if start < 0:
        return signature
    depth = 0
    for index in range(start, len(signature)):
        ch = signature[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return signature[:start] + PARAMETER_PLACEHOLDER + signature[index + 1:]
    return signature[:start] + PARAMETER_PLACEHOLDER


def normalize(raw: str | None) -> str:
    """Return the canonical fully qualified name for a type or member.

    Never raises. Names with unbalanced brackets are returned unchanged.
    """
    if raw is None:
        return ""
    text = raw.strip()
    if not text:
        return text
    if not _is_balanced(text):
        logger.warning("Cannot normalize symbol name '%s': unbalanced brackets", text)
        return text

    text = _strip_return_type(text)
    text = text.replace("::", ".").replace("/", "+")
    text = _ARITY.sub("", text)

    paren = text.find("(")
    if paren < 0:
        return _strip_generic_arguments(text)
    head = _strip_generic_arguments(text[:paren])
    return normalize_method_signature(head + text[paren:])


def extract_method_name(fqn: str | None) -> str | None:
    """Return the bare member name of a (possibly raw) member FQN."""
    if not fqn:
        return None
    text = _strip_return_type(fqn.strip()).replace("::", ".")
    for stop in ("(", " where "):
        index = text.find(stop)
        if index >= 0:
            text = text[:index]
    text = _strip_generic_arguments(_ARITY.sub("", text)).rstrip()
    for ctor in ("..cctor", "..ctor"):
        if text.endswith(ctor):
            return ctor[1:]
    if text in (".ctor", ".cctor"):
        return text
    name = text.rsplit(".", 1)[-1]
    return name or None


def split_member_fqn(fqn: str) -> tuple[str, str]:
    """Split a canonical member FQN into ``(type_fqn, member_name_with_params)``.

    Returns ``("", fqn)`` when there is no type part.
    """
    paren = fqn.find("(")
    head = fqn if paren < 0 else fqn[:paren]
    tail = "" if paren < 0 else fqn[paren:]
    for ctor in ("..cctor", "..ctor"):
        if head.endswith(ctor):
            return head[: -len(ctor)], ctor[1:] + tail
    dot = head.rfind(".")
    if dot <= 0:
        return "", fqn
    return head[:dot], head[dot + 1:] + tail


def namespace_of_type(type_fqn: str) -> str:
    """Namespace part of a canonical type FQN, or ``<global>``."""
    outer = type_fqn.split("+", 1)[0]
    dot = outer.rfind(".")
    if dot <= 0:
        return GLOBAL_NAMESPACE
    return outer[:dot]


def simple_type_name(type_fqn: str) -> str:
    """Last segment of a canonical type FQN (``Ns.Outer+Inner`` -> ``Inner``)."""
    return re.split(r"[.+]", type_fqn)[-1]


def is_compiler_generated(name: str | None) -> bool:
    """True for names the C# compiler synthesizes (closures, state machines)."""
    if not name:
        return False
    # Placeholders such as <global> or <Module>
    if name.startswith("<") and name.endswith(">") and "<" not in name[1:]:
        return False
    return bool(_COMPILER_GENERATED.search(name))


def iterator_state_machine(type_fqn: str | None) -> tuple[str, str] | None:
    """``Ns.Svc+<RunAsync>d__3`` -> ``("Ns.Svc", "RunAsync")``; None for any other type."""
    if not type_fqn:
        return None
    match = _STATE_MACHINE.match(type_fqn.strip())
    if match is None:
        return None
    return match.group("outer"), match.group("method")
