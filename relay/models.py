"""
SQLAlchemy ORM mapping of the local message store.

The store is owned and written by the host messaging application; this
service only reads it. The mapping covers the columns the relay needs.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Column, Integer, LargeBinary, String, Text

from relay.storage import Base


class Handle(Base):
    """
    Conversation participant (phone number or email-like identifier).

    Table: handle
    The same identifier can appear on several rows (one per service).
    """
    __tablename__ = "handle"

    rowid = Column("ROWID", Integer, primary_key=True)
    id = Column(String, nullable=False, index=True)
    service = Column(String, nullable=True)
    country = Column(String, nullable=True)


class Message(Base):
    """
    A single message row.

    Table: message
    Primary Key: ROWID (monotonic, assigned by the writer)
    Timestamps are domain-epoch integers (see relay.records).
    """
    __tablename__ = "message"

    rowid = Column("ROWID", Integer, primary_key=True)
    guid = Column(String, nullable=True)
    text = Column(Text, nullable=True)
    attributed_body = Column("attributedBody", LargeBinary, nullable=True)
    handle_id = Column(Integer, nullable=True, index=True)
    date = Column(BigInteger, nullable=True, index=True)
    date_read = Column(BigInteger, nullable=True)
    date_delivered = Column(BigInteger, nullable=True)
    is_from_me = Column(Integer, nullable=False, default=0)
    is_sent = Column(Integer, nullable=False, default=0)
    is_delivered = Column(Integer, nullable=False, default=0)
    is_finished = Column(Integer, nullable=False, default=0)
    is_read = Column(Integer, nullable=False, default=0)
    error = Column(Integer, nullable=True, default=0)
    service = Column(String, nullable=True)
    service_center = Column(String, nullable=True)
    account = Column(String, nullable=True)
