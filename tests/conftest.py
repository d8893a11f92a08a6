"""Shared test fixtures."""

import pytest

from src.store.chat_store import ChatStore


@pytest.fixture
def store(tmp_path):
    """Create a ChatStore backed by a temp database and install it as the singleton."""
    ChatStore._reset()
    s = ChatStore(db_path=tmp_path / "test.db")
    ChatStore._instance = s
    yield s
    ChatStore._reset()
