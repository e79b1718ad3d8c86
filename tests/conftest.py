"""
Pytest configuration and shared fixtures.

The store and activity log live in a temporary directory. Environment
variables are set here, before any relay import, and the settings cache is
cleared so the module-level settings pick them up.
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest

_TEST_DIR = tempfile.mkdtemp(prefix="relay-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'chat.db')}"
os.environ["ACTIVITY_LOG_PATH"] = os.path.join(_TEST_DIR, "message-logs.jsonl")
os.environ["NATIVE_DECODE_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

# Clear settings cache before any app imports to ensure test env vars are used
from relay.config import get_settings
get_settings.cache_clear()

from relay.models import Handle, Message
from relay.records import to_domain_epoch
from relay.storage import Base, SessionLocal, engine


class StoreWriter:
    """Plays the host application: inserts rows the relay only ever reads."""

    def add_handle(self, rowid: int, identifier: str, service: str = "iMessage") -> None:
        with SessionLocal() as db:
            db.add(Handle(rowid=rowid, id=identifier, service=service, country="vn"))
            db.commit()

    def add_message(self, rowid: int, handle_id: int = None, text: str = None, attributed_body: bytes = None,
                    created: datetime = None, **flags) -> None:
        created = created or datetime.now(timezone.utc)
        values = dict(
            rowid=rowid,
            guid=f"guid-{rowid}",
            text=text,
            attributed_body=attributed_body,
            handle_id=handle_id or 0,
            date=to_domain_epoch(created),
            date_read=0,
            date_delivered=0,
            is_from_me=1,
            is_sent=0,
            is_delivered=0,
            is_finished=1,
            is_read=0,
            error=0,
            service="iMessage",
        )
        values.update(flags)
        with SessionLocal() as db:
            db.add(Message(**values))
            db.commit()


@pytest.fixture(scope="function")
def store():
    """Fresh message/handle tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield StoreWriter()
    Base.metadata.drop_all(bind=engine)


def _streamtyped(text: str) -> bytes:
    """Minimal sequential archive holding one attributed string."""
    payload = text.encode("utf-8")
    if len(payload) < 0x80:
        length = bytes([len(payload)])
    else:
        length = b"\x81" + len(payload).to_bytes(2, "little")
    return (
        b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x12NSAttributedString\x00"
        b"\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x95\x84\x01+"
        + length
        + payload
        + b"\x86\x84\x02iI\x01\x01\x92\x84\x84\x84\x0cNSDictionary\x00\x95\x84\x01i\x01\x86\x86"
    )


@pytest.fixture
def make_sequential():
    return _streamtyped


@pytest.fixture(scope="function")
def client(store):
    """Test client over a fresh store and an empty activity log."""
    from fastapi.testclient import TestClient

    from relay.logging_utils import clear_activity_log
    from relay.main import app

    clear_activity_log()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
