"""
Immutable view of a message row plus domain-epoch time conversion.

The store counts time from 2001-01-01 UTC instead of the Unix epoch. Recent
stores use nanoseconds, older ones seconds.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

DOMAIN_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

# Below this the value cannot be nanoseconds for any date after 2001-01-02
SECONDS_THRESHOLD = 10 ** 11

READABLE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class RawMessageRecord:
    """A message row as read from the local store."""

    rowid: int
    text: Optional[str] = None
    attributed_body: Optional[bytes] = None
    handle_id: Optional[int] = None
    handle: Optional[str] = None
    date: Optional[int] = None
    date_delivered: Optional[int] = None
    date_read: Optional[int] = None
    is_from_me: bool = False
    is_sent: bool = False
    is_delivered: bool = False
    is_finished: bool = False
    is_read: bool = False
    error: Optional[int] = None
    service: Optional[str] = None
    service_center: Optional[str] = None
    readable_date: Optional[str] = None

    @classmethod
    def from_row(cls, message: Any, handle: Optional[str] = None,
                 readable_date: Optional[str] = None) -> "RawMessageRecord":
        """Build a record from a ``relay.models.Message`` (or any object with the same attributes)."""
        return cls(
            rowid=message.rowid,
            text=message.text,
            attributed_body=bytes(message.attributed_body) if message.attributed_body is not None else None,
            handle_id=message.handle_id,
            handle=handle,
            date=message.date,
            date_delivered=message.date_delivered,
            date_read=message.date_read,
            is_from_me=bool(message.is_from_me),
            is_sent=bool(message.is_sent),
            is_delivered=bool(message.is_delivered),
            is_finished=bool(message.is_finished),
            is_read=bool(message.is_read),
            error=message.error,
            service=message.service,
            service_center=message.service_center,
            readable_date=readable_date,
        )

    def to_dict(self) -> dict:
        """JSON-friendly echo of the record; the binary body is summarised, not included."""
        return {
            "rowid": self.rowid,
            "text": self.text,
            "has_attributed_body": self.attributed_body is not None,
            "handle": self.handle,
            "date": self.date,
            "readable_date": self.readable_date,
            "is_from_me": self.is_from_me,
            "is_sent": self.is_sent,
            "is_delivered": self.is_delivered,
            "is_finished": self.is_finished,
            "error": self.error,
            "service": self.service,
        }


def from_domain_epoch(value: Optional[int]) -> Optional[datetime]:
    """
    Convert a domain-epoch timestamp to an aware UTC datetime.

    Returns None for missing, zero or non-numeric values.
    """
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number <= 0:
        return None

    seconds = number if number < SECONDS_THRESHOLD else number / 1_000_000_000
    try:
        return datetime.fromtimestamp(DOMAIN_EPOCH.timestamp() + seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_domain_epoch(moment: datetime) -> int:
    """Inverse of from_domain_epoch, in nanoseconds."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    delta = moment - DOMAIN_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def parse_readable_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a ``YYYY-MM-DD HH:MM:SS`` local-time string into an aware datetime."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), READABLE_DATE_FORMAT).astimezone()
    except ValueError:
        return None


def creation_time(record: RawMessageRecord) -> Optional[datetime]:
    return from_domain_epoch(record.date) or parse_readable_date(record.readable_date)
