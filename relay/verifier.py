"""
Send-then-verify.

The send action reports success as soon as the host application accepted the
request, but the matching row shows up in the local store some time later and
without any link back to the call. Verification therefore polls the store a
bounded number of times and derives the canonical status from whatever row it
finds.

Two concurrent sends to the same recipient can pick up each other's rows;
callers that need exact attribution should serialise sends per recipient.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay import storage
from relay.metrics import record_send_outcome
from relay.records import RawMessageRecord
from relay.status import CanonicalStatus, DEFAULT_FAIL_TIMEOUT, derive_status

logger = logging.getLogger(__name__)

SEND_SUCCESS = "success"

SendAction = Callable[[str, str], str]


@dataclass(frozen=True)
class SendAttempt:
    """Correlation data for one send call; lives only as long as the call."""

    recipient: str
    body: str
    started_at: datetime
    handle_identifier: Optional[str] = None
    handle_id: Optional[int] = None
    snapshot_rowid: Optional[int] = None


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    status: CanonicalStatus
    result: Optional[str] = None
    record: Optional[RawMessageRecord] = None
    error: Optional[str] = None
    attempts: int = 0
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def found(self) -> bool:
        return self.record is not None


class SendVerifier:
    """
    Args:
        session_factory: Callable returning a context-managed SQLAlchemy session.
        attempts: Store polls after a successful send.
        delay: Seconds to wait between polls.
        fail_timeout: Passed through to ``derive_status``.
        country_code: Used when generating recipient candidates.
        sleep: Injected for tests.
        clock: Injected for tests; must return an aware datetime.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = None,
        attempts: int = 5,
        delay: float = 0.4,
        fail_timeout: timedelta = DEFAULT_FAIL_TIMEOUT,
        country_code: str = "84",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory or storage.SessionLocal
        self.attempts = max(1, attempts)
        self.delay = delay
        self.fail_timeout = fail_timeout
        self.country_code = country_code
        self.sleep = sleep
        self.clock = clock

    def send_and_verify(self, recipient: str, body: str, send_action: SendAction) -> VerificationResult:
        attempt = self.prepare(recipient, body)

        try:
            result = send_action(recipient, body)
        except Exception as e:
            logger.error(f"Send action raised for {recipient}: {e}")
            result = f"error: {e}"

        if result != SEND_SUCCESS:
            logger.warning(f"Send to {recipient} failed: {result}")
            record_send_outcome(CanonicalStatus.FAILED.value)
            return VerificationResult(
                success=False,
                status=CanonicalStatus.FAILED,
                result=result,
                error=result,
            )

        record, polls = self.poll(attempt)
        if record is None:
            logger.info(f"Send to {recipient} accepted but not yet visible after {polls} poll(s)")
            record_send_outcome(CanonicalStatus.QUEUED.value, polls)
            return VerificationResult(
                success=True,
                status=CanonicalStatus.QUEUED,
                result=result,
                attempts=polls,
            )

        status = derive_status(record, self.clock(), self.fail_timeout)
        logger.info(f"Send to {recipient} verified as row {record.rowid}, status={status.value}")
        record_send_outcome(status.value, polls)
        return VerificationResult(
            success=status is not CanonicalStatus.FAILED,
            status=status,
            result=result,
            record=record,
            error=f"message {record.rowid} reported error {record.error}" if record.error else None,
            attempts=polls,
        )

    def prepare(self, recipient: str, body: str) -> SendAttempt:
        """Resolve the recipient and take the row-id snapshot, just before sending."""
        started_at = self.clock()
        try:
            with self.session_factory() as db:
                handle = storage.find_handle(db, recipient, self.country_code)
                if handle is not None:
                    return SendAttempt(
                        recipient=recipient,
                        body=body,
                        started_at=started_at,
                        handle_identifier=handle.id,
                        handle_id=handle.rowid,
                        snapshot_rowid=storage.get_last_rowid_for_handle(db, handle.rowid),
                    )
                return SendAttempt(
                    recipient=recipient,
                    body=body,
                    started_at=started_at,
                    snapshot_rowid=storage.get_max_rowid(db),
                )
        except SQLAlchemyError as e:
            logger.warning(f"Could not snapshot store before sending to {recipient}: {e}")
            return SendAttempt(recipient=recipient, body=body, started_at=started_at)

    def poll(self, attempt: SendAttempt):
        """
        Look for the row written by the send.

        The first poll ignores the snapshot floor, since a handle created by
        the send itself was invisible when the snapshot was taken, and keeps
        the newest row only if it is above the snapshot. Later polls query
        above the snapshot directly.

        Returns:
            Tuple of (record or None, number of polls performed)
        """
        for number in range(1, self.attempts + 1):
            since = 0 if number == 1 else (attempt.snapshot_rowid or 0)
            try:
                record = self._lookup(attempt, since)
            except SQLAlchemyError as e:
                logger.warning(f"Verification poll {number} for {attempt.recipient} failed: {e}")
                record = None

            if record is not None and (attempt.snapshot_rowid is None or record.rowid > attempt.snapshot_rowid):
                logger.debug(f"Found row {record.rowid} for {attempt.recipient} on poll {number}")
                return record, number

            if number < self.attempts:
                self.sleep(self.delay)

        return None, self.attempts

    def _lookup(self, attempt: SendAttempt, since_rowid: int) -> Optional[RawMessageRecord]:
        with self.session_factory() as db:
            identifier = attempt.handle_identifier
            if identifier is None:
                handle = storage.find_handle(db, attempt.recipient, self.country_code)
                identifier = handle.id if handle is not None else None

            if identifier is not None:
                handle_ids = storage.get_handle_ids(db, identifier)
                return storage.get_last_outbound_message(db, handle_ids, since_rowid)

            return storage.find_outbound_by_body(db, attempt.body, since_rowid)
