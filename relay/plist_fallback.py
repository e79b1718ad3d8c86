"""
Structured property-list fallback.

Parses the blob as a binary plist (then XML) and walks the object graph for
the first plausible text payload. Keyed archives keep their objects in a flat
``$objects`` table referenced by ``UID``; references are followed through
that table with cycle protection.
"""

import logging
import plistlib
from typing import Any, Optional

from relay.utils import is_obvious_metadata

logger = logging.getLogger(__name__)

MAX_DEPTH = 10
MIN_TEXT_LENGTH = 6
TEXT_KEYS = ("NS.string", "string", "text", "content", "NSString")


def parse_plist(blob: bytes) -> Any:
    """Binary first, XML second; raises if neither parser accepts the blob."""
    try:
        return plistlib.loads(blob, fmt=plistlib.FMT_BINARY)
    except Exception as binary_error:
        logger.debug(f"Binary plist parse failed: {binary_error}")
    return plistlib.loads(blob, fmt=plistlib.FMT_XML)


def is_plausible_text(value: Any) -> bool:
    return (
        isinstance(value, str)
        and len(value.strip()) >= MIN_TEXT_LENGTH
        and not is_obvious_metadata(value)
    )


class PlistTextFinder:
    """Depth-first search over one parsed plist."""

    def __init__(self, root: Any):
        self.root = root
        self.objects = root.get("$objects") if isinstance(root, dict) else None
        if not isinstance(self.objects, list):
            self.objects = None

    def find(self) -> Optional[str]:
        if self.objects is not None:
            top = self.root.get("$top")
            if isinstance(top, dict):
                found = self._search(top.get("root"), 0, frozenset())
                if found:
                    return found
            for obj in self.objects:
                if is_plausible_text(obj):
                    return obj
        return self._search(self.root, 0, frozenset())

    def _resolve(self, value: Any, seen: frozenset):
        if isinstance(value, plistlib.UID) and self.objects is not None:
            uid = value.data
            if uid in seen or not 0 <= uid < len(self.objects):
                return None, seen
            return self.objects[uid], seen | {uid}
        return value, seen

    def _search(self, value: Any, depth: int, seen: frozenset) -> Optional[str]:
        if depth > MAX_DEPTH:
            return None

        node, seen = self._resolve(value, seen)
        if node is None:
            return None

        if isinstance(node, str):
            return node if is_plausible_text(node) else None

        if isinstance(node, bytes):
            text = node.decode("utf-8", errors="ignore").strip("\x00")
            return text if is_plausible_text(text) else None

        if isinstance(node, (list, tuple)):
            for item in node:
                found = self._search(item, depth + 1, seen)
                if found:
                    return found
            return None

        if isinstance(node, dict):
            for key in TEXT_KEYS:
                if key in node:
                    found = self._search(node[key], depth + 1, seen)
                    if found:
                        return found
            for key, item in node.items():
                if key in TEXT_KEYS or key == "$class":
                    continue
                found = self._search(item, depth + 1, seen)
                if found:
                    return found

        return None


class PlistStrategy:
    """Decode strategy backed by plistlib."""

    name = "plist"

    def try_decode(self, blob: bytes) -> Optional[str]:
        root = parse_plist(blob)
        return PlistTextFinder(root).find()
