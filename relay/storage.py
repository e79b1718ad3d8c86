import logging
from typing import Generator, List, Optional, Sequence, Tuple

from sqlalchemy import case, create_engine, text, func, or_
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from relay.config import settings
from relay.records import SECONDS_THRESHOLD, RawMessageRecord
from relay.utils import generate_recipient_candidates

logger = logging.getLogger(__name__)

# Engine over the chat.db file; only read queries run against it
# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)

# Session factory used by request handlers and the verifier
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for the ORM mapping of message/handle
Base = declarative_base()

NS_PER_SECOND = 1_000_000_000


def readable_date_column():
    """SQLite expression rendering the domain-epoch ``date`` as local ``YYYY-MM-DD HH:MM:SS``."""
    from relay.models import Message

    # Older stores write seconds, newer ones nanoseconds
    seconds = case(
        (Message.date < SECONDS_THRESHOLD, Message.date),
        else_=Message.date / NS_PER_SECOND,
    )
    return func.datetime(
        seconds + func.strftime("%s", "2001-01-01"),
        "unixepoch",
        "localtime",
    ).label("readable_date")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the message store is reachable and has the expected schema.

    Returns:
        True if the store is readable and the message table exists, False otherwise.
    """
    logger.debug("Checking message store health...")
    try:
        with SessionLocal() as db:
            # Simple query to check connectivity
            db.execute(text("SELECT 1"))
            # The message table must exist for any read to work
            result = db.execute(text(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='message'"
            )).scalar()
            if result == 0:
                logger.error("Message store schema missing: 'message' table not found")
                return False
        logger.debug("Message store health check passed")
        return True
    except Exception as e:
        logger.error(f"Message store health check failed: {e}")
        return False


# =============================================================================
# Read-only repository functions
# =============================================================================

def _to_records(rows) -> List[RawMessageRecord]:
    return [
        RawMessageRecord.from_row(message, handle=handle, readable_date=readable_date)
        for message, handle, readable_date in rows
    ]


def _message_query(db: Session):
    from relay.models import Handle, Message

    return (
        db.query(Message, Handle.id, readable_date_column())
        .outerjoin(Handle, Message.handle_id == Handle.rowid)
    )


def find_handle(db: Session, recipient: str, country_code: str = "84"):
    """
    Resolve a recipient to a handle row by trying its candidate forms in order.

    Returns:
        The first matching Handle, or None if no form is known to the store.
    """
    from relay.models import Handle

    # First matching form wins; the caller's form is tried first
    for candidate in generate_recipient_candidates(recipient, country_code):
        handle = (
            db.query(Handle)
            .filter(Handle.id.collate("NOCASE") == candidate)
            .order_by(Handle.rowid.asc())
            .first()
        )
        if handle is not None:
            logger.debug(f"Resolved recipient {recipient} to handle {handle.rowid} ({handle.id})")
            return handle
    logger.debug(f"No handle found for recipient {recipient}")
    return None


def get_handle_ids(db: Session, identifier: str) -> List[int]:
    """All handle rows sharing an identifier (one per service is common)."""
    from relay.models import Handle

    rows = db.query(Handle.rowid).filter(Handle.id.collate("NOCASE") == identifier).all()
    return [row[0] for row in rows]


def get_last_rowid_for_handle(db: Session, handle_id: int) -> int:
    from relay.models import Message

    return db.query(func.max(Message.rowid)).filter(Message.handle_id == handle_id).scalar() or 0


def get_max_rowid(db: Session) -> int:
    from relay.models import Message

    return db.query(func.max(Message.rowid)).scalar() or 0


def get_last_outbound_message(
    db: Session,
    handle_ids: Sequence[int],
    since_rowid: int = 0,
) -> Optional[RawMessageRecord]:
    """
    Newest outbound message with a body for any of ``handle_ids`` above ``since_rowid``.
    """
    from relay.models import Message

    if not handle_ids:
        return None

    # Only rows written after the snapshot count as the new send
    row = (
        _message_query(db)
        .filter(Message.handle_id.in_(list(handle_ids)))
        .filter(Message.is_from_me == 1)
        .filter(or_(Message.text.isnot(None), Message.attributed_body.isnot(None)))
        .filter(Message.rowid > (since_rowid or 0))
        .order_by(Message.date.desc(), Message.rowid.desc())
        .first()
    )
    return _to_records([row])[0] if row else None


def find_outbound_by_body(db: Session, body: str, since_rowid: int = 0) -> Optional[RawMessageRecord]:
    """Newest outbound message whose plain text equals ``body``, across all handles."""
    from relay.models import Message

    row = (
        _message_query(db)
        .filter(Message.is_from_me == 1)
        .filter(Message.text == body)
        .filter(Message.rowid > (since_rowid or 0))
        .order_by(Message.date.desc(), Message.rowid.desc())
        .first()
    )
    return _to_records([row])[0] if row else None


def get_conversation(
    db: Session,
    sender: str,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[RawMessageRecord], int]:
    """
    Retrieve one conversation page, newest first.

    Args:
        db: Database session
        sender: Handle identifier (case-insensitive)
        limit: Maximum number of messages to return
        offset: Number of messages to skip

    Returns:
        Tuple of (records, total count of messages with a body for this sender)
    """
    from relay.models import Handle, Message

    logger.info(f"Querying conversation: sender={sender}, limit={limit}, offset={offset}")

    # Rows with neither text nor attributed body are not shown
    query = (
        _message_query(db)
        .filter(Handle.id.collate("NOCASE") == sender)
        .filter(or_(Message.text.isnot(None), Message.attributed_body.isnot(None)))
    )

    # Total count before pagination
    total = query.count()
    # Newest first, rowid breaks ties between equal dates
    rows = (
        query.order_by(Message.date.desc(), Message.rowid.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    logger.info(f"Retrieved {len(rows)} of {total} messages for {sender}")
    return _to_records(rows), total
