"""Content compression and storage summaries."""

from __future__ import annotations

import base64
import re
import zlib

_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


def compress_text(text: str) -> str:
    """Deflate + base64. What goes into the content columns."""
    return base64.b64encode(zlib.compress(text.encode("utf-8"))).decode("ascii")


def decompress_text(compressed: str) -> str:
    return zlib.decompress(base64.b64decode(compressed)).decode("utf-8")


def summarize_for_storage(content: str, max_length: int = 500) -> str:
    """Trim content to whole sentences that fit in max_length.

    Falls back to a hard cut with an ellipsis when even the first sentence
    is too long.
    """
    if len(content) <= max_length:
        return content

    sentences = _SENTENCE.findall(content) or [content]
    summary = ""
    for sentence in sentences:
        if len(summary + sentence) > max_length:
            break
        summary += sentence

    return summary.strip() or content[:max_length] + "..."
