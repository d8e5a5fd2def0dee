"""
Prompt softening and length trimming applied before every image request.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 3800

_SOFTENING_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"violent|explicit|graphic|inappropriate", re.IGNORECASE), "gentle"),
    (re.compile(r"kill|harm|hurt|weapon", re.IGNORECASE), "interact with"),
)

PRIORITY_KEYWORDS: tuple[str, ...] = (
    "CHARACTER CONSISTENCY",
    "ANATOMICAL CORRECTNESS",
    "IMPORTANT:",
    "TEXT VISIBILITY",
    "CRITICAL",
    "FINAL CHECK",
    "DETAILED CHARACTER",
    "PURPOSE:",
    "REFERENCE",
)


def sanitize_prompt(text: str | None) -> str:
    """
    Replace terms that tend to trip image-model content filters.

    Rules are re-applied until nothing changes, so the result is a fixed point and
    sanitizing twice equals sanitizing once.
    """
    if not text:
        return text or ""

    current = text
    while True:
        updated = current
        for pattern, replacement in _SOFTENING_RULES:
            updated = pattern.sub(replacement, updated)
        if updated == current:
            return updated
        current = updated


def trim_prompt_to_limit(
    prompt: str,
    max_length: int = MAX_PROMPT_LENGTH,
    *,
    priority_keywords: Sequence[str] = PRIORITY_KEYWORDS,
) -> str:
    """
    Shrink ``prompt`` to at most ``max_length`` characters by dropping whole segments.

    Segments are separated by blank lines. The first segment is always kept, then
    segments mentioning a priority keyword, then the rest, each only while it fits.
    """
    if len(prompt) <= max_length:
        return prompt

    logger.info("Prompt exceeds limit (%d chars). Trimming to %d chars.", len(prompt), max_length)

    sections = prompt.split("\n\n")
    head = sections[0]
    if len(head) + 2 > max_length:
        return head[:max_length].strip()

    priority_sections: list[str] = []
    normal_sections: list[str] = []
    for section in sections[1:]:
        if any(keyword in section for keyword in priority_keywords):
            priority_sections.append(section)
        else:
            normal_sections.append(section)

    trimmed = head + "\n\n"
    for section in (*priority_sections, *normal_sections):
        if len(trimmed) + len(section) + 2 <= max_length:
            trimmed += section + "\n\n"

    return trimmed.strip()


def prepare_prompt(prompt: str, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Sanitize then trim; sanitizing can lengthen text so trimming runs last."""
    return trim_prompt_to_limit(sanitize_prompt(prompt), max_length)
