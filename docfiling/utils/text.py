"""Text helpers shared by the preprocessor, prompt builders and parsers."""

import re
from typing import Optional

_FENCE_OPEN = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


def truncate_head_tail(text: str, max_chars: int, head_ratio: float = 0.75) -> str:
    """Keep the beginning and end of ``text`` within ``max_chars``.

    Document openings carry the title and parties while endings carry
    signatures and totals, so both are kept and the middle is replaced
    with a marker recording how much was dropped.

    Args:
        text: Text to truncate
        max_chars: Character budget for the kept text
        head_ratio: Share of the budget given to the head

    Returns:
        The original text if it fits, otherwise head + marker + tail
    """
    if len(text) <= max_chars:
        return text

    head_chars = int(max_chars * head_ratio)
    tail_chars = max_chars - head_chars
    truncated = len(text) - max_chars
    tail = text[-tail_chars:] if tail_chars > 0 else ""
    return f"{text[:head_chars]}\n\n[... {truncated} characters truncated ...]\n\n{tail}"


def format_file_size(size: int) -> str:
    """Human readable size: B, KB or MB with one decimal."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    cleaned = _FENCE_OPEN.sub("", text.strip())
    return _FENCE_CLOSE.sub("", cleaned).strip()


def extract_json_span(text: str, opener: str, closer: str) -> Optional[str]:
    """Return the span from the first ``opener`` to the last ``closer``."""
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def to_snake_case(value: str) -> str:
    """'Loan Terms' -> 'loan_terms'."""
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")
