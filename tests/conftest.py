"""Shared fixtures: every test gets its own SQLite file under tmp_path."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from aurasense.core.config import StorageConfig
from aurasense.core.storage.records import RecordEngine
from aurasense.core.storage.registry import StoreHandle


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "aurasense-test.db")


@pytest.fixture
def storage_config(db_path: str) -> StorageConfig:
    return StorageConfig(database_path=db_path, busy_timeout_seconds=0.2, open_timeout_seconds=5.0)


@pytest.fixture
async def handle(storage_config: StorageConfig) -> AsyncIterator[StoreHandle]:
    store = StoreHandle(storage_config)
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def records(handle: StoreHandle) -> RecordEngine:
    return RecordEngine(handle)
