import html
import re
from typing import Optional


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Escape HTML special characters so user text can be embedded in email markup.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(str(value), quote=True)


def clean_text(value: Optional[str], max_length: int = 500) -> Optional[str]:
    """
    Trim user input and drop control characters.

    Raises:
        ValueError: If input exceeds max_length
    """
    if value is None:
        return None

    value = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", str(value)).strip()

    if len(value) > max_length:
        raise ValueError(f"Input exceeds maximum length of {max_length} characters")

    return value


def escape_like(value: str) -> str:
    """Escape LIKE wildcards in a search term (use with escape='\\')"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
