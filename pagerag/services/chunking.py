"""
Overlapping character-window chunker and provider input preprocessing
"""
import re
from typing import List

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_NEWLINE_RUN_RE = re.compile(r"\s*\n\s*")

# Fraction of the window below which we won't back off to a space
_MIN_BREAK_RATIO = 0.8


def normalize_whitespace(text: str) -> str:
    """Trim, collapse horizontal whitespace to one space and newline runs to one newline"""
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    text = _NEWLINE_RUN_RE.sub("\n", text)
    return text.strip()


def preprocess_text(text: str, max_length: int = 8000) -> str:
    """Normalize whitespace and hard-truncate to the provider input limit"""
    return normalize_whitespace(text)[:max_length]


def split_into_chunks(text: str, chunk_size: int = 500, overlap: int = 50) -> List[str]:
    """
    Split text into overlapping windows.

    A window that ends inside the text is shortened to its last space, provided
    that space sits at or after 80% of the window. The next window starts
    `overlap` characters before the end of the emitted one. Every character of
    the input lands in at least one window (ignoring surrounding whitespace).

    Args:
        text: Input text
        chunk_size: Maximum window length in characters
        overlap: Characters shared between consecutive windows

    Returns:
        Trimmed, non-empty chunks in document order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    chunks: List[str] = []
    length = len(text)
    start = 0

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            last_space = text.rfind(" ", start, end)
            if last_space >= start + int(chunk_size * _MIN_BREAK_RATIO):
                end = last_space

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= length:
            break

        start = max(end - overlap, start + 1)

    return chunks
