"""
Last-resort byte-pattern extraction.

Used only after the native bridge and the plist parser have failed. The
markers below were derived from observed sequential ("streamtyped") archives
and are not a grammar of the format; results from this module are reported as
low confidence.
"""

import logging
import re
from typing import Optional, Tuple

from relay.archive import ArchiveKind, classify, is_plist
from relay.utils import ARCHIVE_KEYWORDS, is_obvious_metadata, strip_control_chars

logger = logging.getLogger(__name__)

CLASS_ANCHOR = b"NSString"
# object tag, one-element marker, '+' (the string-with-length type code)
PAYLOAD_ANCHOR = b"\x84\x01+"
END_MARKERS = (b"\x86\x84", b"\x92\x84", b"\x00\x86")
# Literal openings seen at the start of payloads that lost their length prefix
KNOWN_TEXT_ANCHORS = (b"Tai khoan",)

LENGTH_16 = 0x81
LENGTH_32 = 0x82

# Runs of printable characters; U+FFFD stands in for bytes that were not UTF-8
LONG_RUN_RE = re.compile(r"[^\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F\ufffd]{30,}")
SHORT_RUN_RE = re.compile(r"[^\x00-\x08\x0B\x0C\x0E-\x1F\x7F\ufffd]{15,}")
MIN_RUN_LENGTH = 15


def _length_prefix(blob: bytes, pos: int) -> Optional[Tuple[int, int]]:
    """Return ``(payload_length, prefix_size)`` for the length field at ``pos``."""
    if pos >= len(blob):
        return None
    marker = blob[pos]
    if marker == LENGTH_16:
        if pos + 3 > len(blob):
            return None
        return int.from_bytes(blob[pos + 1:pos + 3], "little"), 3
    if marker == LENGTH_32:
        if pos + 5 > len(blob):
            return None
        return int.from_bytes(blob[pos + 1:pos + 5], "little"), 5
    return marker, 1


def _slice_to_end_marker(blob: bytes, start: int) -> bytes:
    end = len(blob)
    for marker in END_MARKERS:
        found = blob.find(marker, start)
        if found != -1 and found < end:
            end = found
    return blob[start:end]


def _finish(raw: str) -> Optional[str]:
    text = strip_control_chars(raw).replace("\ufffd", "").strip()
    return text or None


def extract_sequential(blob: bytes) -> Optional[str]:
    """Pull the string payload that follows the ``NSString`` class record."""
    anchor = blob.find(CLASS_ANCHOR)
    if anchor != -1:
        plus = blob.find(PAYLOAD_ANCHOR, anchor + len(CLASS_ANCHOR))
        if plus != -1:
            pos = plus + len(PAYLOAD_ANCHOR)
            prefix = _length_prefix(blob, pos)
            if prefix is not None:
                length, size = prefix
                start = pos + size
                end = start + length
                if length and end <= len(blob):
                    try:
                        return _finish(blob[start:end].decode("utf-8"))
                    except UnicodeDecodeError:
                        logger.debug("Length-prefixed payload is not UTF-8, slicing to end marker")
                payload = _slice_to_end_marker(blob, start)
                text = _finish(payload.decode("utf-8", errors="ignore"))
                if text:
                    return text

    for literal in KNOWN_TEXT_ANCHORS:
        start = blob.find(literal)
        if start != -1:
            text = _finish(_slice_to_end_marker(blob, start).decode("utf-8", errors="ignore"))
            if text:
                return text

    return None


def longest_readable_run(blob: bytes) -> Optional[str]:
    """Longest printable run that is not archive metadata, strict pass first."""
    decoded = blob.decode("utf-8", errors="replace")
    for pattern in (LONG_RUN_RE, SHORT_RUN_RE):
        candidates = [
            run.strip() for run in pattern.findall(decoded)
            if len(run.strip()) >= MIN_RUN_LENGTH and not _is_archive_run(run)
        ]
        if candidates:
            return max(candidates, key=len)
    return None


def _is_archive_run(run: str) -> bool:
    # Adjacent key strings in a plist merge into one printable run
    return is_obvious_metadata(run) or any(keyword in run for keyword in ARCHIVE_KEYWORDS)


class HeuristicStrategy:
    """Byte-marker and printable-run extraction; output is never certain."""

    name = "heuristic"

    def try_decode(self, blob: bytes) -> Optional[str]:
        kind = classify(blob)
        # Plist blobs belong to the plist fallback
        if is_plist(kind):
            return None
        if kind is ArchiveKind.SEQUENTIAL:
            text = extract_sequential(blob)
            if text:
                return text
        return longest_readable_run(blob)
