"""
Text post-processing for recognized region text.

Recognized text is never trimmed here: leading/trailing spaces are used by
layout merging to decide how lines are joined.
"""
import re


# Ideographic space and no-break space -> plain space
_SPECIAL_SPACES = re.compile("[\u3000\u00a0]")


def normalize_special_spaces(text: str) -> str:
    """
    Replace special space characters with plain spaces.

    Args:
        text: Decoded text

    Returns:
        Text with the same length and plain spaces
    """
    return _SPECIAL_SPACES.sub(" ", text)


def is_blank(text: str) -> bool:
    """True if the text holds no visible characters."""
    return not text or not text.strip()


def join_tesseract_lines(lines) -> str:
    """
    Join Tesseract words grouped per line into one string.

    Args:
        lines: Iterable of word lists (one list per line, in reading order)

    Returns:
        Words space-joined, lines newline-joined, outer whitespace stripped
    """
    text = "\n".join(" ".join(words) for words in lines if words)
    return text.strip()
