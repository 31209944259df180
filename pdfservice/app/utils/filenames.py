"""
Filename helpers for response headers.
"""

import re
from typing import Any, Mapping

_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_\s]+")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_CUSTOMER_NAME = "Unnamed_Customer"
CUSTOMER_NAME_LABEL = "CUSTOMER NAME"


def sanitize_filename(name: str, max_length: int = 80) -> str:
    """Reduce ``name`` to ``[A-Za-z0-9_-]`` characters."""
    cleaned = _UNSAFE.sub("_", name.strip())
    cleaned = _WHITESPACE.sub("_", cleaned)
    return cleaned[:max_length]


def header_safe(filename: str) -> str:
    """Strip characters that would break a Content-Disposition header."""
    return (
        filename.replace('"', "")
        .replace("\n", "")
        .replace("\r", "")
        .replace("/", "_")
        .replace("\\", "_")
    )


def customer_name_from(data: Mapping[str, Any]) -> str:
    """
    Best-effort customer name for download filenames.

    Looks at ``customerName`` first, then at header rows labelled
    "CUSTOMER NAME" on either side.
    """
    name = data.get("customerName")
    if isinstance(name, str) and name.strip():
        return sanitize_filename(name) or DEFAULT_CUSTOMER_NAME

    rows = data.get("headerRows")
    if isinstance(rows, list):
        for row in rows:
            if not isinstance(row, Mapping):
                continue
            for side in ("Left", "Right"):
                label = row.get(f"label{side}")
                value = row.get(f"value{side}")
                if (
                    isinstance(label, str)
                    and CUSTOMER_NAME_LABEL in label.upper()
                    and isinstance(value, str)
                    and value.strip()
                ):
                    return sanitize_filename(value) or DEFAULT_CUSTOMER_NAME

    return DEFAULT_CUSTOMER_NAME
