"""String manipulation utilities for log-safe output."""

from typing import Optional


def truncate_for_logging(
    text: str, max_length: int = 1000, edge_length: int = 500
) -> str:
    """
    Truncate text for logging, showing beginning and end.

    Model responses can be long; the beginning and end are usually enough
    to see where a segment delimiter went missing.

    Args:
        text: Text to truncate
        max_length: Maximum length before truncation is applied
        edge_length: Number of characters to show from start and end

    Returns:
        Truncated text with ellipsis if needed, or original text if short enough

    Examples:
        >>> truncate_for_logging("Hello", max_length=100)
        'Hello'
        >>> "..." in truncate_for_logging("x" * 2000, max_length=1000, edge_length=10)
        True
    """
    if len(text) <= max_length:
        return text
    return f"{text[:edge_length]}...\n...{text[-edge_length:]}"


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """
    Mask a secret such as an API key for display.

    Args:
        secret: Secret value (may be None)
        visible: Number of trailing characters left visible

    Returns:
        Masked representation, e.g. '****abcd', or '<unset>'

    Examples:
        >>> mask_secret("sk-1234567890")
        '****7890'
        >>> mask_secret(None)
        '<unset>'
    """
    if not secret:
        return "<unset>"
    if len(secret) <= visible:
        return "*" * len(secret)
    return f"****{secret[-visible:]}"


def slugify_language(language: str) -> str:
    """
    Turn a free-text language name into a file-name friendly slug.

    Args:
        language: Language name, e.g. 'Persian (Farsi)'

    Returns:
        Lowercase slug, e.g. 'persian-farsi'; 'translated' if nothing is left

    Examples:
        >>> slugify_language("Persian (Farsi)")
        'persian-farsi'
    """
    chars = [c.lower() if c.isalnum() else "-" for c in language.strip()]
    slug = "-".join(part for part in "".join(chars).split("-") if part)
    return slug or "translated"
