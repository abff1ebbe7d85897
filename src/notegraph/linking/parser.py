"""Extraction of ``[[Title]]`` references from note text."""
import re
from typing import List

# "[[" + one or more characters that are not brackets + "]]". An unterminated or
# broken marker never matches, so there are no partial titles.
REFERENCE_PATTERN = re.compile(r"\[\[([^\[\]]+)\]\]")


def parse_references(text: str) -> List[str]:
    """Return the titles referenced in ``text``.

    Titles are trimmed, keep their case, and appear once each in order of
    first occurrence. Markers that are blank after trimming are skipped.

    Example:
        "See [[Note A]] and [[ Note B ]], again [[Note A]]" -> ["Note A", "Note B"]
    """
    if not text:
        return []
    titles = (match.group(1).strip() for match in REFERENCE_PATTERN.finditer(text))
    return list(dict.fromkeys(title for title in titles if title))


def has_references(text: str) -> bool:
    """Check whether ``text`` contains at least one reference."""
    return bool(parse_references(text))
