"""
Text helpers shared by the parsers, merge engine and classifier.
"""
import html
import re
import unicodedata
from typing import Any, Optional

import nh3

_WHITESPACE_RE = re.compile(r"\s+")

# Element bodies dropped entirely, not just unwrapped
_DROP_CONTENT_TAGS = {"script", "style", "iframe", "noscript", "template"}

_MAX_DECODE_PASSES = 5


def sanitize_text(value: Any, default: str = "") -> str:
    """
    Strip markup from a free-text field taken from an export file.

    Tags are removed, script-like element bodies are dropped, entities are
    decoded and whitespace is collapsed. Markup hidden behind (possibly
    repeated) entity encoding is stripped as well. Empty results fall back
    to `default`.

    Args:
        value: Raw field value (non-strings are converted with str())
        default: Returned when nothing printable survives

    Returns:
        Plain text
    """
    if value is None:
        return default
    text = value if isinstance(value, str) else str(value)
    if not text.strip():
        return default

    cleaned = _strip_markup(text)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned or default


def _strip_markup(text: str) -> str:
    # Entity-encoded markup turns into real tags once decoded, so clean and
    # decode until the text stops changing.
    current = text
    for _ in range(_MAX_DECODE_PASSES):
        decoded = html.unescape(
            nh3.clean(html.unescape(current), tags=set(), clean_content_tags=_DROP_CONTENT_TAGS)
        )
        if decoded == current:
            return decoded
        current = decoded
    return nh3.clean(current, tags=set(), clean_content_tags=_DROP_CONTENT_TAGS)


def normalize_key(text: Optional[str]) -> str:
    """Lowercase/trim form used for dedup keys and case-insensitive lookups."""
    if not text:
        return ""
    return unicodedata.normalize("NFC", text).strip().lower()
