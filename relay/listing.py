"""
Conversation page assembly: decoded content, derived status and message type per row.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from relay.decoder import AttributedBodyDecoder, DecodedText, Plain
from relay.records import RawMessageRecord
from relay.status import DEFAULT_FAIL_TIMEOUT, derive_status

logger = logging.getLogger(__name__)

MIN_DECODABLE_LENGTH = 10
KNOWN_SERVICES = ("iMessage", "SMS", "RCS")


def should_decode(blob: Optional[bytes]) -> bool:
    """Blobs that are tiny or start with zero padding carry no text worth a bridge call."""
    if not blob or len(blob) < MIN_DECODABLE_LENGTH:
        return False
    return any(blob[:4])


def message_type(record: RawMessageRecord) -> str:
    if record.service in KNOWN_SERVICES:
        return record.service
    return "SMS" if record.service_center else "iMessage"


def direction(record: RawMessageRecord) -> str:
    return "outbound" if record.is_from_me else "inbound"


def build_conversation(
    records: Sequence[RawMessageRecord],
    decoder: AttributedBodyDecoder,
    now: Optional[datetime] = None,
    fail_timeout: timedelta = DEFAULT_FAIL_TIMEOUT,
) -> List[dict]:
    """
    Turn one page of records into response rows.

    All decodable bodies on the page go through a single ``decode_batch``
    call. Rows with plain text keep it; rows with a body that was skipped or
    could not be decoded get the decoder's placeholder.
    """
    to_decode = [
        (record.rowid, record.attributed_body)
        for record in records
        if not record.text and should_decode(record.attributed_body)
    ]
    decoded: Dict[int, DecodedText] = dict(decoder.decode_batch(to_decode)) if to_decode else {}
    logger.debug(f"Decoded {len(decoded)} of {len(records)} rows on page")

    items = []
    for record in records:
        content = record.text or ""
        decoded_via = None
        if not record.text and record.attributed_body:
            result = decoded.get(record.rowid)
            if isinstance(result, Plain):
                content = result.text
                decoded_via = result.source.value
            else:
                content = decoder.placeholder

        items.append({
            "id": record.rowid,
            "handle": record.handle,
            "content": content,
            "message_type": message_type(record),
            "direction": direction(record),
            "status": derive_status(record, now, fail_timeout).value,
            "decoded_via": decoded_via,
            "has_rich_content": record.attributed_body is not None,
            "created_at": record.readable_date,
            "date": record.date,
        })
    return items
