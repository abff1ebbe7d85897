"""Utility functions for the notegraph engine."""

TRUNCATION_MARKER = "..."


def generate_title_from_content(
    content: str, default_title: str, max_length: int = 100
) -> str:
    """Derive a note title from the first line of its body.

    Examples:
        "Meeting notes\\nsee [[Plan]]" -> "Meeting notes"
        "" -> default_title

    Args:
        content: The note body.
        default_title: Title used when the body has no usable first line.
        max_length: Longer first lines are cut and suffixed with "...".

    Returns:
        The derived title.
    """
    if not content or not content.strip():
        return default_title

    first_line = content.split("\n")[0].strip()
    if not first_line:
        return default_title

    if len(first_line) > max_length:
        return first_line[:max_length] + TRUNCATION_MARKER
    return first_line


def is_derived_title(title: str, default_title: str) -> bool:
    """True if a title was never set by hand (default or auto-truncated)."""
    return title == default_title or title.endswith(TRUNCATION_MARKER)


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)
