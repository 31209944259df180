"""
Escaping of untrusted string content for embedding in LaTeX source.

Every string leaf of a JSON-like tree is escaped exactly once. The
replacement runs as a single regex pass over the original text, so the
backslashes and braces introduced by one rule are never rewritten by
another.
"""

from __future__ import annotations

import re
from typing import Dict, Mapping, Sequence, Union

JsonScalar = Union[str, int, float, bool, None]
JsonValue = Union[JsonScalar, Mapping[str, "JsonValue"], Sequence["JsonValue"]]


TEX_REPLACEMENTS: Dict[str, str] = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "^": r"\^{}",
    "~": r"\~{}",
}

_TEX_SPECIALS = re.compile("|".join(re.escape(ch) for ch in TEX_REPLACEMENTS))


def escape_tex(text: str) -> str:
    """Neutralize LaTeX control characters in a single string."""
    return _TEX_SPECIALS.sub(lambda match: TEX_REPLACEMENTS[match.group(0)], text)


def sanitize(value: JsonValue) -> JsonValue:
    """
    Return a structurally identical tree with every string leaf escaped.

    Mappings are rebuilt as dicts and sequences as lists. Booleans,
    numbers and None pass through unchanged. The input must be acyclic.

    Raises:
        TypeError: for values outside the JSON data model.
    """
    if isinstance(value, str):
        return escape_tex(value)

    # bool is an int subclass; both pass through untouched
    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, Mapping):
        return {key: sanitize(item) for key, item in value.items()}

    if isinstance(value, (list, tuple)):
        return [sanitize(item) for item in value]

    raise TypeError(
        f"Cannot sanitize value of type {type(value).__name__}; "
        "expected a JSON-compatible value"
    )


def sanitize_mapping(data: Mapping[str, JsonValue]) -> Dict[str, JsonValue]:
    sanitized = sanitize(data)
    if not isinstance(sanitized, dict):
        raise TypeError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    return sanitized
