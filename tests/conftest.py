import pytest

from mentra.app import models  # noqa: F401
from mentra.app.db.base import Base
from mentra.app.db.session import build_engine, build_session_factory
from mentra.app.security.codec import CryptoCodec
from mentra.app.security.keys import DerivedKeyProvider, KeyManager
from mentra.app.services.audit import AuditLogger
from mentra.app.services.journal_repository import JournalEntryRepository

TEST_SECRET = "test-journal-secret"


@pytest.fixture
async def engine(tmp_path):
    """Per-test SQLite file database with every journal table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/journal.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def key_manager():
    return KeyManager(DerivedKeyProvider(TEST_SECRET))


@pytest.fixture
def codec():
    return CryptoCodec()


@pytest.fixture
async def audit_logger(session_factory):
    audit = AuditLogger(session_factory)
    yield audit
    await audit.drain()


@pytest.fixture
def repo(session_factory, key_manager, codec, audit_logger):
    return JournalEntryRepository(session_factory, key_manager, codec, audit_logger)


@pytest.fixture
def entry_data():
    """A minimal entry as the storage layer receives it."""
    return {
        "studentId": "student-1",
        "title": "First day",
        "content": "Hello world",
    }
