"""Utility functions for the note storage engine."""
from typing import Iterable, List


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
        '100\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\_name'
    """
    # Use str.translate() for single-pass efficiency
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip tag names, drop blanks and collapse duplicates.

    Returns the tags sorted so that equal sets compare equal.

    Example:
        >>> normalize_tags([" b", "a", "b", ""])
        ['a', 'b']
    """
    return sorted({tag.strip() for tag in tags if tag and tag.strip()})


def head_limit(text: str, limit: int) -> str:
    """Return the head of ``text`` that fits in ``limit`` UTF-8 bytes.

    The cut backs off byte by byte until the prefix decodes cleanly, so a
    multi-byte character is never split. When no byte prefix within the
    limit is valid text, the truncated bytes are decoded with replacement
    characters instead.
    """
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text
    head = raw[:limit]
    while head:
        try:
            return head.decode("utf-8")
        except UnicodeDecodeError:
            head = head[:-1]
    return raw[:limit].decode("utf-8", errors="replace")
