"""
Post-processing of finalized assistant text.
Splits the follow-up suggestion footer off the answer.
"""

import re
from typing import List, Tuple

from perplexsearch.chat.prompts import SUGGESTIONS_MARKER

MAX_SUGGESTIONS = 3
FOOTER_SEPARATOR = "---"
_ENUMERATOR = re.compile(r"^(?:\d+\.\s*|-\s*)")


def extract_suggestions(content: str) -> Tuple[str, List[str]]:
    """
    Separate the suggestion footer from an assistant answer.

    Args:
        content: Accumulated assistant text

    Returns:
        Tuple of (clean content, suggestions). Content without the marker
        is returned unchanged with an empty list.
    """
    if SUGGESTIONS_MARKER not in content:
        return content, []

    before, _, after = content.partition(SUGGESTIONS_MARKER)
    suggestions: List[str] = []
    for line in after.split("\n"):
        question = _ENUMERATOR.sub("", line.strip()).strip()
        if 3 < len(question) < 150:
            suggestions.append(question)
        if len(suggestions) == MAX_SUGGESTIONS:
            break

    clean = before.strip()
    # The footer is introduced by a horizontal rule that belongs to it
    if clean.endswith(FOOTER_SEPARATOR):
        clean = clean[: -len(FOOTER_SEPARATOR)].rstrip()
    return clean, suggestions


def clean_title(raw: str) -> str:
    """Strip quote characters and surrounding whitespace from a model title."""
    return raw.replace('"', "").replace("'", "").strip()
