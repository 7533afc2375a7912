"""
Text sanitization for exported documents.

Every string placed into a CSV cell or drawn onto a PDF page goes through
safe_text(). Sanitization is followed by a hard check: if anything forbidden
survives, rendering stops instead of emitting a corrupt document.
"""

import re
import unicodedata
from typing import Any, List, Optional

# Categories removed outright: control, format, private use, surrogate
_STRIPPED_CATEGORIES = frozenset({"Cc", "Cf", "Co", "Cs"})

_WHITESPACE_CONTROLS = {ord("\t"): " ", ord("\n"): " ", ord("\r"): " ", ord("\v"): " ", ord("\f"): " "}

_TYPOGRAPHY = {
    0x2028: " ",
    0x2029: " ",
    0x2010: "-",
    0x2011: "-",
    0x2012: "-",
    0x2013: "-",
    0x2014: "-",
    0x2015: "-",
    0x2212: "-",
    0x2018: "'",
    0x2019: "'",
    0x201C: '"',
    0x201D: '"',
}

_WS_RUN = re.compile(r"\s+")


class ForbiddenCharactersError(ValueError):
    """Raised when text still holds characters that must never be exported."""

    def __init__(self, problems: List[str], text: str, context: Optional[str] = None):
        self.problems = problems
        self.text = text
        self.context = context
        where = f" ({context})" if context else ""
        super().__init__(f"forbidden characters{where}: {', '.join(problems)}")


def is_noncharacter(cp: int) -> bool:
    """U+FDD0..U+FDEF and every code point ending in FFFE or FFFF."""
    if 0xFDD0 <= cp <= 0xFDEF:
        return True
    return (cp & 0xFFFF) in (0xFFFE, 0xFFFF)


def sanitize_text(text: Any) -> str:
    """
    Normalize a value into export-safe text.

    Steps: NFKC normalization, whitespace controls to spaces, removal of
    Cc/Cf/Co characters and noncharacters, line separators to spaces,
    typographic dashes and quotes to ASCII, whitespace collapsed and trimmed.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    if not text:
        return ""

    sanitized = unicodedata.normalize("NFKC", text)
    sanitized = sanitized.translate(_WHITESPACE_CONTROLS)
    sanitized = "".join(
        ch for ch in sanitized
        if unicodedata.category(ch) not in _STRIPPED_CATEGORIES and not is_noncharacter(ord(ch))
    )
    sanitized = sanitized.translate(_TYPOGRAPHY)
    sanitized = _WS_RUN.sub(" ", sanitized)
    return sanitized.strip()


def find_bad_chars(text: str) -> List[str]:
    """Describe every class of forbidden character present in text."""
    problems = []
    if re.search(r"[\x00-\x1f\x7f]", text):
        problems.append("ASCII control characters")
    if re.search("[\u200b-\u200d\ufeff]", text):
        problems.append("zero-width characters")
    if "\ufffd" in text:
        problems.append("replacement character U+FFFD")
    if any(is_noncharacter(ord(ch)) for ch in text):
        problems.append("Unicode noncharacters")
    if any(unicodedata.category(ch) in _STRIPPED_CATEGORIES for ch in text):
        problems.append("control/format/private-use category characters")
    return problems


def assert_no_bad_chars(text: str, context: Optional[str] = None, strict: bool = True) -> None:
    """
    Fail closed if forbidden characters remain.

    Raises:
        ForbiddenCharactersError: when strict and a problem is found
    """
    if not strict:
        return
    problems = find_bad_chars(text)
    if problems:
        raise ForbiddenCharactersError(problems, text, context)


def safe_text(text: Any, context: Optional[str] = None, strict: bool = True) -> str:
    """Sanitize then validate. Use as the final step before rendering."""
    sanitized = sanitize_text(text)
    assert_no_bad_chars(sanitized, context, strict)
    return sanitized
