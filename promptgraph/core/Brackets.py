"""
Template placeholder scanning.

A placeholder is a ``{name}`` token in node text. A brace preceded by a
backslash is escaped and never opens or closes a capture, so ``\\{name\\}``
contributes nothing. Capturing is not nested: once a ``{`` opens a capture,
any further ``{`` is part of the name and the capture ends at the next
unescaped ``}``. Empty braces ``{}`` are ignored.
"""
from typing import List, Optional, Set, Tuple

ESCAPE = "\\"

# (text, name): name is None for literal text, otherwise text is the raw token
Segment = Tuple[str, Optional[str]]


def _spans(text: str) -> List[Tuple[int, int]]:
    """Index pairs of the opening and closing brace of every capture."""
    spans: List[Tuple[int, int]] = []
    if not text:
        return spans

    prev_c = ""
    group_start = -1
    for i, char in enumerate(text):
        if prev_c != ESCAPE:
            if group_start == -1 and char == "{":
                group_start = i
            elif group_start > -1 and char == "}":
                if group_start + 1 < i:
                    spans.append((group_start, i))
                group_start = -1
        prev_c = char
    return spans


def _scan(text: str) -> List[str]:
    return [text[start + 1:end] for start, end in _spans(text)]


def extract_placeholders(text: str) -> Set[str]:
    """Return the set of unescaped ``{name}`` placeholders in *text*."""
    return set(_scan(text))


def ordered_placeholders(text: str) -> List[str]:
    """Placeholders in order of first appearance, without duplicates."""
    seen: Set[str] = set()
    ordered: List[str] = []
    for name in _scan(text):
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


def unescape_braces(text: str) -> str:
    return text.replace(ESCAPE + "{", "{").replace(ESCAPE + "}", "}")


def split_template(text: str) -> List[Segment]:
    """
    Cut *text* into literal and placeholder segments, in order.

    Literal segments come back with their escapes removed; placeholder
    segments keep the raw ``{name}`` token next to the name, so text that
    is later spliced in between them is never scanned together with the
    template around it.
    """
    segments: List[Segment] = []
    last = 0
    for start, end in _spans(text):
        if start > last:
            segments.append((unescape_braces(text[last:start]), None))
        segments.append((text[start:end + 1], text[start + 1:end]))
        last = end + 1
    if text and last < len(text):
        segments.append((unescape_braces(text[last:]), None))
    return segments


def remove_placeholder(text: str, name: str) -> str:
    """Drop every unescaped ``{name}`` from *text*, leaving the rest as written."""
    out: List[str] = []
    last = 0
    for start, end in _spans(text):
        if text[start + 1:end] == name:
            out.append(text[last:start])
            last = end + 1
    out.append(text[last:])
    return "".join(out)
