"""
Request fingerprints used as cache keys.

Two generation requests that differ only in case, whitespace or
punctuation map to the same key so they share a cached result.
"""

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_input(text: str) -> str:
    """Lowercase, collapse whitespace and strip punctuation."""
    collapsed = _WHITESPACE.sub(" ", text.lower()).strip()
    return _PUNCTUATION.sub("", collapsed)


def generate_key(
    text: str,
    platform: str,
    complexity: str,
    provider: str = "default",
) -> str:
    """Build a deterministic SHA-256 fingerprint for a generation request.

    Args:
        text: The natural-language workflow description.
        platform: Target automation platform (``n8n``, ``zapier``, ``make``).
        complexity: Requested workflow complexity.
        provider: LLM provider that will produce the result.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    data = f"{normalize_input(text)}:{platform}:{complexity}:{provider}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
