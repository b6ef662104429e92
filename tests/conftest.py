"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures shared by the store, synchronizer and lobby tests.
"""

import random
from typing import Generator

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from xoarena.chat import ChatLog
from xoarena.scheduling import ManualScheduler
from xoarena.sql_store import Base, SQLRecordStore
from xoarena.store import InMemoryRecordStore, RecordStore

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """Session factory bound to a fresh schema; tables are dropped at teardown."""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest) -> RecordStore:
    """Every record store implementation, so behaviour is checked against both."""
    if request.param == "memory":
        return InMemoryRecordStore()
    return SQLRecordStore(request.getfixturevalue("session_factory"))


@pytest.fixture
def chat() -> ChatLog:
    return ChatLog()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
