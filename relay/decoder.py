"""
Attributed body decoding pipeline.

Runs the native bridge first, then the structured plist fallback, then the
byte-pattern heuristics. Every path ends in a ``DecodedText``: ``Plain`` with
the recovered text and the strategy that produced it, or ``Undecodable`` with
a displayable placeholder. Nothing in here raises for malformed input.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, List, Optional, Protocol, Sequence, Tuple, Union

from relay.archive import classify
from relay.bridge import ArchiveDecoder, NullArchiveDecoder
from relay.heuristics import HeuristicStrategy
from relay.metrics import record_decode_outcome
from relay.plist_fallback import PlistStrategy
from relay.utils import clean_text

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "[Rich content]"


class DecodeSource(str, Enum):
    NATIVE = "native"
    PLIST = "plist"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class Plain:
    text: str
    source: DecodeSource

    @property
    def confident(self) -> bool:
        """False when the text came from pattern guessing rather than a structured parse."""
        return self.source is not DecodeSource.HEURISTIC

    @property
    def display(self) -> str:
        return self.text


@dataclass(frozen=True)
class Undecodable:
    placeholder: str
    reason: str

    confident = False

    @property
    def display(self) -> str:
        return self.placeholder


DecodedText = Union[Plain, Undecodable]


class DecodeStrategy(Protocol):
    name: str

    def try_decode(self, blob: bytes) -> Optional[str]:
        ...


class NativeStrategy:
    """Adapts an ArchiveDecoder to the strategy interface."""

    name = "native"

    def __init__(self, archive_decoder: ArchiveDecoder):
        self.archive_decoder = archive_decoder

    def try_decode(self, blob: bytes) -> Optional[str]:
        return self.archive_decoder.decode(blob)

    def try_decode_batch(self, blobs: Sequence[bytes]) -> List[Optional[str]]:
        results = list(self.archive_decoder.decode_batch(blobs))
        # A short answer from the bridge only means the tail fell through
        if len(results) < len(blobs):
            results.extend([None] * (len(blobs) - len(results)))
        return results[:len(blobs)]


class AttributedBodyDecoder:
    """
    Ordered decode pipeline with a batch entry point.

    Args:
        archive_decoder: Native decoding capability; defaults to one that never decodes.
        placeholder: Text carried by ``Undecodable`` results.
    """

    def __init__(self, archive_decoder: Optional[ArchiveDecoder] = None, placeholder: str = DEFAULT_PLACEHOLDER):
        self.native = NativeStrategy(archive_decoder or NullArchiveDecoder())
        self.fallbacks: List[Tuple[DecodeStrategy, DecodeSource]] = [
            (PlistStrategy(), DecodeSource.PLIST),
            (HeuristicStrategy(), DecodeSource.HEURISTIC),
        ]
        self.placeholder = placeholder

    def decode(self, blob: Optional[bytes]) -> DecodedText:
        if not blob:
            return self._undecodable("empty")
        blob = bytes(blob)
        logger.debug(f"Decoding {len(blob)} byte blob, kind={classify(blob).value}")

        text = self._attempt(self.native, blob)
        if text:
            return self._plain(text, DecodeSource.NATIVE)
        return self._decode_fallbacks(blob)

    def decode_batch(self, items: Sequence[Tuple[Hashable, Optional[bytes]]]) -> List[Tuple[Hashable, DecodedText]]:
        """
        Decode many blobs with a single native bridge invocation.

        Items the bridge could not decode go through the fallbacks one by one.
        The output is aligned with ``items``.
        """
        items = list(items)
        pending = [(index, bytes(blob)) for index, (_, blob) in enumerate(items) if blob]

        native_results: List[Optional[str]] = []
        if pending:
            try:
                native_results = self.native.try_decode_batch([blob for _, blob in pending])
            except Exception as e:
                logger.debug(f"Native batch decode failed: {e}")
                native_results = [None] * len(pending)

        decoded: List[DecodedText] = [self._undecodable("empty")] * len(items)
        for (index, blob), native_text in zip(pending, native_results):
            text = clean_text(native_text) if native_text else ""
            if text:
                decoded[index] = self._plain(text, DecodeSource.NATIVE)
            else:
                decoded[index] = self._decode_fallbacks(blob)

        native_hits = sum(1 for d in decoded if isinstance(d, Plain) and d.source is DecodeSource.NATIVE)
        logger.info(f"Batch decoded {len(items)} item(s): {native_hits} native, "
                    f"{sum(1 for d in decoded if isinstance(d, Undecodable))} undecodable")
        return [(item_id, result) for (item_id, _), result in zip(items, decoded)]

    def _decode_fallbacks(self, blob: bytes) -> DecodedText:
        for strategy, source in self.fallbacks:
            text = self._attempt(strategy, blob)
            if text:
                return self._plain(text, source)
        logger.debug(f"All decode strategies failed for {len(blob)} byte blob")
        return self._undecodable("exhausted")

    def _attempt(self, strategy: DecodeStrategy, blob: bytes) -> str:
        try:
            return clean_text(strategy.try_decode(blob) or "")
        except Exception as e:
            logger.debug(f"Decode strategy '{strategy.name}' failed: {e}")
            return ""

    def _plain(self, text: str, source: DecodeSource) -> Plain:
        record_decode_outcome(source.value)
        return Plain(text=text, source=source)

    def _undecodable(self, reason: str) -> Undecodable:
        record_decode_outcome("undecodable")
        return Undecodable(placeholder=self.placeholder, reason=reason)
