"""Flatten provider reply payloads ("soup") into plain text.

A payload field may be absent, a plain string, a single segment mapping, or a
sequence of segments. Segments are strings (literal or wrapped in markup such
as ``<think>...</think>``) or mappings that carry their text under one of a
few well-known keys (``{"type": "text", "text": ...}``,
``{"type": "thinking", "thinking": ...}``, Gemini parts, ...).
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

# Keys that hold the text of a segment mapping, in lookup order.
SEGMENT_TEXT_KEYS = ("text", "thinking", "reasoning", "content", "value")

_WRAPPER = re.compile(
    r"\A\s*<(?P<tag>[A-Za-z][\w:-]*)(?:\s[^<>]*)?>(?P<inner>.*)</(?P=tag)\s*>\s*\Z",
    re.DOTALL,
)


def _balanced(inner: str, tag: str) -> bool:
    depth = 0
    for match in re.finditer(rf"<(/?){re.escape(tag)}(?:\s[^<>]*)?>", inner):
        depth += -1 if match.group(1) else 1
        if depth < 0:
            return False
    return depth == 0


def _unwrap(text: str) -> str:
    """Strip enclosing wrapper tags, outermost first."""
    match = _WRAPPER.match(text)
    while match and _balanced(match.group("inner"), match.group("tag")):
        text = match.group("inner")
        match = _WRAPPER.match(text)
    return text


def _segment_text(segment: Any) -> str:
    if segment is None:
        return ""
    if isinstance(segment, str):
        return _unwrap(segment)
    if isinstance(segment, Mapping):
        for key in SEGMENT_TEXT_KEYS:
            value = segment.get(key)
            if value is not None and not isinstance(value, bool):
                return desoup(value)
        return ""
    if isinstance(segment, Sequence):
        return "".join(_segment_text(part) for part in segment)
    return str(segment)


def desoup(soup: Any) -> str:
    """Return the plain text of a reply field.

    Segments are joined in their original order with no separator added.
    ``None`` and empty input give ``""``.
    """
    if not soup:
        return ""
    return _segment_text(soup)
