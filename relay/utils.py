"""
Utility functions for the relay: text cleanup, metadata filtering and
recipient identifier variants.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
EXCESS_WHITESPACE_RE = re.compile(r"\s{3,}")
NON_DIAL_CHARS_RE = re.compile(r"[^0-9+]")
# Dotted or colon-separated identifiers such as "com.example.key" or "kIM:attr"
NAMESPACED_TOKEN_RE = re.compile(r"^[A-Za-z_$][\w$]*(?:[.:][A-Za-z_$][\w$]*)+$")

ARCHIVE_KEYWORDS = frozenset({
    "$null",
    "$class",
    "$classname",
    "$classes",
    "$archiver",
    "$version",
    "$objects",
    "$top",
})

METADATA_PREFIXES = ("NS", "__kIM", "$", "com.apple.")


def strip_control_chars(text: str) -> str:
    """Remove C0 control characters except tab, newline and carriage return, plus DEL."""
    return CONTROL_CHARS_RE.sub("", text)


def clean_text(text: str) -> str:
    """
    Minimal normalisation applied to every decoded body.

    Removes control characters and byte-order marks, reduces runs of three or
    more whitespace characters to two spaces, and trims.
    """
    if not text or not isinstance(text, str):
        return ""
    text = strip_control_chars(text).replace("\ufeff", "")
    return EXCESS_WHITESPACE_RE.sub("  ", text).strip()


def is_obvious_metadata(value: str) -> bool:
    """
    True for archive bookkeeping strings that are never message text.

    Exact archive keywords always match. Otherwise only tokens without a space
    are filtered: class and attribute names (``NSString``,
    ``__kIMMessagePartAttributeName``), namespaced keys, and short all-caps
    identifiers.
    """
    token = value.strip()
    if token in ARCHIVE_KEYWORDS:
        return True
    if not token or any(ch.isspace() for ch in token):
        return False
    if token.startswith(METADATA_PREFIXES):
        return len(token) < 20 or token.replace(".", "_").isidentifier()
    if len(token) >= 20:
        return False
    return token.isupper() or bool(NAMESPACED_TOKEN_RE.match(token))


def generate_recipient_candidates(recipient: str, country_code: str = "84") -> List[str]:
    """
    Identifier forms under which a recipient may be stored in the handle table.

    Order matters: the form given by the caller is tried first.
    """
    if not recipient:
        return []

    raw = str(recipient).strip()
    candidates = [raw, raw.lower()]

    if "@" not in raw:
        digits = NON_DIAL_CHARS_RE.sub("", raw)
        if digits:
            candidates.append(digits)
            candidates.append(f"tel:{digits}")
            if digits.startswith("+"):
                candidates.append(digits[1:])
            elif digits.startswith("0"):
                national = digits[1:]
                candidates.append(f"+{country_code}{national}")
                candidates.append(f"tel:+{country_code}{national}")
            else:
                candidates.append(f"+{digits}")

    # dict preserves first-seen order
    return list(dict.fromkeys(c for c in candidates if c))


def sanitize_content(content: str) -> str:
    """Drop angle brackets and surrounding whitespace from an outbound body."""
    if not content:
        return ""
    return content.replace("<", "").replace(">", "").strip()
