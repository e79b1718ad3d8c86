"""
Canonical delivery status derivation.

The store is written by an external process with no commit signal visible to
this service. Its flags can lag reality by seconds and some failures never set
an explicit error, so an outbound message that stays undelivered past a
timeout is escalated to ``failed``.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from relay.records import RawMessageRecord, creation_time

logger = logging.getLogger(__name__)

DEFAULT_FAIL_TIMEOUT = timedelta(minutes=10)


class CanonicalStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


def is_delivered(record: RawMessageRecord) -> bool:
    return record.is_delivered or bool(record.date_delivered and int(record.date_delivered) > 0)


def derive_status(
    record: Optional[RawMessageRecord],
    now: Optional[datetime] = None,
    fail_timeout: timedelta = DEFAULT_FAIL_TIMEOUT,
) -> CanonicalStatus:
    """
    Map a message record to one canonical status. First matching rule wins:

    1. non-zero ``error``                                   -> failed
    2. delivered flag or delivered timestamp                -> delivered
    3. finished but never marked sent                       -> failed
    4. outbound, undelivered, older than ``fail_timeout``   -> failed
    5. sent flag                                            -> sent
    6. anything else                                        -> queued

    The result depends on ``now``: evaluating the same record later can turn
    ``queued`` or ``sent`` into ``failed`` once the timeout has elapsed. For a
    fixed record it never goes back from ``failed``.

    Args:
        record: Record to classify; None yields ``queued``.
        now: Current wall-clock time (aware); defaults to UTC now.
        fail_timeout: Age after which an undelivered outbound message is failed.
    """
    if record is None:
        return CanonicalStatus.QUEUED

    # error must win over delivery flags: late errors can follow a transient delivered flag
    if record.error is not None and int(record.error) != 0:
        return CanonicalStatus.FAILED

    if is_delivered(record):
        return CanonicalStatus.DELIVERED

    if record.is_finished and not record.is_sent:
        return CanonicalStatus.FAILED

    if record.is_from_me:
        created = creation_time(record)
        if created is not None:
            if now is None:
                now = datetime.now(timezone.utc)
            elif now.tzinfo is None:
                now = now.astimezone()
            if now - created > fail_timeout:
                logger.debug(f"Message {record.rowid} undelivered after {now - created}, marking failed")
                return CanonicalStatus.FAILED

    if record.is_sent:
        return CanonicalStatus.SENT

    return CanonicalStatus.QUEUED
