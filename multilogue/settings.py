"""Resolve machine settings from URL-style query parameters."""

import logging
import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from urllib.parse import parse_qsl

logger = logging.getLogger(__name__)

FLOAT_KEYS = frozenset({"temperature", "top_p"})
INT_KEYS = frozenset({"max_completion_tokens", "thinking_budget"})

# Leading numeric prefix, read the way the browser's parseFloat/parseInt do.
_FLOAT_PREFIX = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_PREFIX = re.compile(r"\s*[+-]?\d+")


def _parse_float(value: str) -> float | str:
    match = _FLOAT_PREFIX.match(value)
    return float(match.group()) if match else value


def _parse_int(value: str) -> int | str:
    match = _INT_PREFIX.match(value)
    return int(match.group()) if match else value


def resolve_settings(pairs: Iterable[tuple[str, str]]) -> Mapping[str, float | int | str]:
    """Build the read-only settings mapping from ordered key/value pairs.

    The last occurrence of a key wins. Numeric keys that do not parse keep
    their raw string value; nothing here raises.
    """
    settings: dict[str, float | int | str] = {}
    for key, value in pairs:
        if key in FLOAT_KEYS:
            settings[key] = _parse_float(value)
        elif key in INT_KEYS:
            settings[key] = _parse_int(value)
        else:
            settings[key] = value
    logger.info("Machine settings: %s", settings)
    return MappingProxyType(settings)


def parse_query(query: str) -> Mapping[str, float | int | str]:
    """Resolve settings from a query string such as ``?temperature=0.7&top_p=1``."""
    return resolve_settings(parse_qsl(query.lstrip("?"), keep_blank_values=True))
