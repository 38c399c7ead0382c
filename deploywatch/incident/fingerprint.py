"""Error signatures – collapse repeated occurrences of the same error.

Two messages that only differ by embedded identifiers (UUIDs) or counters
(any run of digits) normalise to the same text and therefore hash to the
same signature, which is what the clusterer groups incidents by.
"""

from __future__ import annotations

import hashlib
import re

MAX_MESSAGE_LENGTH = 500

_UUID_RE = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)
_DIGITS_RE = re.compile(r"\d+")


def normalize_message(message: str) -> str:
    """Replace UUIDs with ``{uuid}`` and digit runs with ``{n}``."""
    normalized = _UUID_RE.sub("{uuid}", message or "")
    normalized = _DIGITS_RE.sub("{n}", normalized)
    return normalized[:MAX_MESSAGE_LENGTH]


def signature(message: str, path: str | None) -> str:
    """Return the SHA-256 hex digest identifying an error.

    The digest covers the normalised message and the request path, so the
    same message on two different routes yields two signatures.
    """
    content = f"{normalize_message(message)}|{path or ''}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
