"""Small HTML helpers for prompt building."""

from __future__ import annotations

import html
import re

_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def extract_text(markup: str, *, limit: int | None = None) -> str:
    """Return the visible text of an HTML fragment, whitespace-collapsed."""
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", html.unescape(text)).strip()
    if limit is not None and len(text) > limit:
        return text[:limit]
    return text


def escape_attr(value: str) -> str:
    return html.escape(value, quote=True)
