"""Best-effort scrubbing of sensitive values from log messages.

Only the redacted form of a message is ever persisted. This is privacy
hygiene, not a security boundary: the patterns may under- or over-redact.
"""

from __future__ import annotations

import re

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_BEARER_RE = re.compile(r"Bearer\s+[a-zA-Z0-9\-._~+/]+=*")
_SECRET_PAIR_RE = re.compile(
    r"(?P<key>(?:key|token|secret|password|auth|pwd)[=\s:]+)"
    r"[a-zA-Z0-9\-_]{8,}",
    re.IGNORECASE,
)


def redact(message: str) -> str:
    """Mask emails, bearer tokens and secret-looking key/value pairs."""
    redacted = _EMAIL_RE.sub("[EMAIL]", message or "")
    redacted = _BEARER_RE.sub("Bearer [REDACTED]", redacted)
    redacted = _SECRET_PAIR_RE.sub(r"\g<key>[REDACTED]", redacted)
    return redacted
