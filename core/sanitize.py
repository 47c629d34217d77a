"""
core/sanitize.py -- Normalization for free-text fields submitted by clients.

Applied to mod titles, descriptions, and game names at the request boundary
so the store only ever sees trimmed, non-empty text with plain ASCII quotes
and dashes (editors and chat clients love to auto-replace them).
"""

from typing import Optional

_REPLACEMENTS = {
    "“": '"',  # left double quotation mark
    "”": '"',  # right double quotation mark
    "‘": "'",
    "’": "'",
    "–": "-",  # en dash
    "—": "-",  # em dash
}

_TRANSLATION = str.maketrans(_REPLACEMENTS)


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Trim and normalize a text field. Returns None for missing or blank input."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value.translate(_TRANSLATION)
