"""Heuristic detection of credentials pasted into record text fields."""

import re
from collections.abc import Iterable

SECRET_PATTERNS = [
    re.compile(r"\b(?:api[_-]?key|apikey)\s*[=:]\s*['\"]?[\w\-]{16,}['\"]?", re.IGNORECASE),
    re.compile(r"\b(?:secret|password|passwd|pwd)\s*[=:]\s*['\"]?[^\s'\"]{8,}['\"]?", re.IGNORECASE),
    re.compile(r"\b[A-Za-z0-9+/]{40,}={0,2}"),  # long base64
    re.compile(r"\bghp_[A-Za-z0-9]{36}\b"),  # GitHub personal access token
    re.compile(r"\bgho_[A-Za-z0-9]{36}\b"),  # GitHub OAuth token
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),  # AWS access key id
    re.compile(r"-----BEGIN (?:RSA |EC )?PRIVATE KEY-----"),
]


def scan_for_secrets(text: str | None) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in SECRET_PATTERNS)


def scan_record_for_secrets(
    title: str | None = None,
    description: str | None = None,
    reason: str | None = None,
    links: Iterable[str] | None = None,
) -> bool:
    return any(scan_for_secrets(t) for t in (title, description, reason, *(links or [])))
