"""Root-level pytest fixtures for all tests.

Provides:
- An in-memory state database shared across threads (StaticPool)
- A session-context factory matching get_db_context()
- A credential store with a throwaway AES key
- Seed helpers for connections and conversations
"""

import os

# The module-level engine in nlquery.db.connection is created at import
# time; point it at a throwaway database before anything imports it.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nlquery.db.models import Base, Conversation, DatabaseConnection
from nlquery.services.credential_store import EncryptedCredentialStore

from tests.helpers import OWNER_ID


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_local(db_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_local: sessionmaker) -> Generator[Session, None, None]:
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(session_local: sessionmaker) -> Callable[[], Iterator[Session]]:
    """Context-manager factory with get_db_context() semantics."""

    @contextmanager
    def _factory() -> Iterator[Session]:
        session = session_local()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _factory


@pytest.fixture
def credential_store() -> EncryptedCredentialStore:
    return EncryptedCredentialStore(key=AESGCM.generate_key(bit_length=256))


@pytest.fixture
def make_connection(db_session: Session) -> Callable[..., DatabaseConnection]:
    """Insert a DatabaseConnection row directly."""

    def _make(
        owner_id: str = OWNER_ID,
        engine_kind: str = "postgresql",
        name: str = "Warehouse",
        encrypted_secret: str = "",
        schema_cache: str | None = None,
    ) -> DatabaseConnection:
        row = DatabaseConnection(
            owner_id=owner_id,
            name=name,
            engine_kind=engine_kind,
            host="db.internal",
            port=5432,
            database_name="shop",
            username="analyst",
            encrypted_secret=encrypted_secret,
            schema_cache=schema_cache,
            schema_cached_at="2026-01-01T00:00:00+00:00" if schema_cache else None,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _make


@pytest.fixture
def make_conversation(db_session: Session) -> Callable[..., Conversation]:
    """Insert a Conversation row directly."""

    def _make(
        owner_id: str = OWNER_ID,
        database_connection_id: str | None = None,
        tabular_source_id: str | None = None,
        title: str | None = "New Chat",
    ) -> Conversation:
        conversation = Conversation(
            owner_id=owner_id,
            database_connection_id=database_connection_id,
            tabular_source_id=tabular_source_id,
            title=title,
        )
        db_session.add(conversation)
        db_session.commit()
        return conversation

    return _make
