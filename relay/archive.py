"""
Header classification for attributed body blobs.
"""

from enum import Enum
from typing import Optional

SEQUENTIAL_MARKER = b"streamtyped"
SEQUENTIAL_HEADER_WINDOW = 20
BINARY_PLIST_MAGIC = b"bplist"
KEYED_ARCHIVER_MARKER = b"NSKeyedArchiver"
KEYED_FIRST_BYTE = 0x80
XML_PLIST_PREFIXES = (b"<?xml", b"<plist", b"<!DOCTYPE plist")


class ArchiveKind(str, Enum):
    EMPTY = "empty"
    KEYED = "keyed"
    SEQUENTIAL = "sequential"
    BINARY_PLIST = "binary_plist"
    XML_PLIST = "xml_plist"
    UNKNOWN = "unknown"


def classify(blob: Optional[bytes]) -> ArchiveKind:
    if not blob:
        return ArchiveKind.EMPTY

    if SEQUENTIAL_MARKER in blob[:SEQUENTIAL_HEADER_WINDOW]:
        return ArchiveKind.SEQUENTIAL

    if blob.startswith(BINARY_PLIST_MAGIC):
        if KEYED_ARCHIVER_MARKER in blob:
            return ArchiveKind.KEYED
        return ArchiveKind.BINARY_PLIST

    if blob[0] == KEYED_FIRST_BYTE:
        return ArchiveKind.KEYED

    head = blob[:64].lstrip(b"\xef\xbb\xbf \t\r\n")
    if head.startswith(XML_PLIST_PREFIXES):
        return ArchiveKind.XML_PLIST

    return ArchiveKind.UNKNOWN


def is_plist(kind: ArchiveKind) -> bool:
    return kind in (ArchiveKind.KEYED, ArchiveKind.BINARY_PLIST, ArchiveKind.XML_PLIST)
