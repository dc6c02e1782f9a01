"""
Local persistence: the SQLite engine, the namespace registry and record CRUD.

Typical use:

    async with StoreHandle(config.storage) as handle:
        records = RecordEngine(handle)
        await records.upsert(1, {"sleep_hours": 6.5})
"""

from .engine import EngineConnection, open_engine
from .records import RecordEngine, now_ms
from .registry import HandleState, StoreHandle, open_store

__all__ = [
    "EngineConnection",
    "HandleState",
    "RecordEngine",
    "StoreHandle",
    "now_ms",
    "open_engine",
    "open_store",
]
