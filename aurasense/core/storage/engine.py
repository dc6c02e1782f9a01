"""
Embedded, versioned, transactional key-value engine backed by SQLite.

Each namespace is a table keyed by ``id`` with ``createdAt`` and ``updatedAt``
secondary indexes; the schema version lives in ``PRAGMA user_version``. The API
mirrors what the registry and record engine need:

- ``open_engine(path)`` opens without changing the schema and reports the
  existing version and namespaces
- ``open_engine(path, version, on_upgrade)`` runs one exclusive upgrade
  transaction when ``version`` is newer than the stored one
- ``EngineConnection.transaction(namespaces, mode)`` scopes a transaction to
  the given namespaces in readonly or readwrite mode

A file path is required: every open is a new SQLite connection, so ``:memory:``
databases do not survive the open/reopen cycle of an upgrade.
"""

import asyncio
import json
import re
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite
import structlog

from aurasense.core.domain.models import AccessMode, RecordId
from aurasense.core.errors import (
    AuraSenseError,
    DuplicateKey,
    EngineBlocked,
    EngineOpenFailed,
    ReadOnlyTransaction,
    StorageError,
    TransactionFailed,
)

logger = structlog.get_logger(__name__)

INDEXED_FIELDS: tuple[str, ...] = ("createdAt", "updatedAt")

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

UpgradeCallback = Callable[["UpgradeTransaction"], Awaitable[None]]


def validate_namespace_name(name: str) -> str:
    """Namespaces become table names, so only plain identifiers are accepted."""
    if (
        not isinstance(name, str)
        or not _NAME_PATTERN.match(name)
        or name.lower().startswith("sqlite_")
    ):
        raise ValueError(f"Invalid namespace name: {name!r}")
    return name


def validate_record_id(record_id: RecordId) -> RecordId:
    if isinstance(record_id, bool) or not isinstance(record_id, int | str):
        raise TypeError(f"Record id must be an int or str, got {type(record_id).__name__}")
    return record_id


def _quote(name: str) -> str:
    return f'"{name}"'


def _is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    )


def _encode_row(row: dict[str, Any]) -> tuple[RecordId, str, int, int]:
    return (
        validate_record_id(row["id"]),
        json.dumps(row["data"], separators=(",", ":")),
        int(row["createdAt"]),
        int(row["updatedAt"]),
    )


def _decode_row(row: Iterable[Any]) -> dict[str, Any]:
    record_id, data, created_at, updated_at = row
    return {
        "id": record_id,
        "data": json.loads(data),
        "createdAt": created_at,
        "updatedAt": updated_at,
    }


async def _read_version(conn: aiosqlite.Connection) -> int:
    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def _read_namespaces(conn: aiosqlite.Connection) -> frozenset[str]:
    async with conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'"
    ) as cursor:
        rows = await cursor.fetchall()
    return frozenset(row[0] for row in rows)


class NamespaceStore:
    """Point operations on one namespace inside an open transaction."""

    def __init__(self, conn: aiosqlite.Connection, name: str, mode: AccessMode) -> None:
        self._conn = conn
        self.name = name
        self.mode = mode
        self._table = _quote(name)

    def _require_write(self, operation: str) -> None:
        if self.mode is not AccessMode.READWRITE:
            raise ReadOnlyTransaction(operation, self.name)

    async def _execute(self, operation: str, sql: str, params: tuple = ()) -> list[Any]:
        try:
            async with self._conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise TransactionFailed(
                f"Failed to {operation} in store {self.name!r}: {e}",
                {"namespace": self.name, "operation": operation},
            ) from e

    async def get(self, record_id: RecordId) -> dict[str, Any] | None:
        rows = await self._execute(
            "read item",
            f"SELECT id, data, createdAt, updatedAt FROM {self._table} WHERE id = ?",
            (validate_record_id(record_id),),
        )
        return _decode_row(rows[0]) if rows else None

    async def get_all(self) -> list[dict[str, Any]]:
        rows = await self._execute(
            "read all items",
            f"SELECT id, data, createdAt, updatedAt FROM {self._table} ORDER BY id",
        )
        return [_decode_row(row) for row in rows]

    async def count(self) -> int:
        rows = await self._execute("count items", f"SELECT COUNT(*) FROM {self._table}")
        return int(rows[0][0])

    async def add(self, row: dict[str, Any]) -> None:
        """Insert a new row; fails with DuplicateKey when the id exists."""
        self._require_write("add")
        try:
            await self._conn.execute(
                f"INSERT INTO {self._table} (id, data, createdAt, updatedAt) VALUES (?, ?, ?, ?)",
                _encode_row(row),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateKey(row["id"], self.name) from e
        except sqlite3.Error as e:
            raise TransactionFailed(f"Failed to create item: {e}", {"namespace": self.name}) from e

    async def put(self, row: dict[str, Any]) -> None:
        """Insert or overwrite the row with the same id."""
        self._require_write("put")
        await self._execute(
            "put item",
            f"INSERT INTO {self._table} (id, data, createdAt, updatedAt) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data, "
            "createdAt = excluded.createdAt, updatedAt = excluded.updatedAt",
            _encode_row(row),
        )

    async def delete(self, record_id: RecordId) -> None:
        self._require_write("delete")
        await self._execute(
            "delete item",
            f"DELETE FROM {self._table} WHERE id = ?",
            (validate_record_id(record_id),),
        )

    async def clear(self) -> None:
        self._require_write("clear")
        await self._execute("clear store", f"DELETE FROM {self._table}")


class Transaction:
    """A transaction scoped to a fixed set of namespaces."""

    def __init__(
        self, conn: aiosqlite.Connection, namespaces: frozenset[str], mode: AccessMode
    ) -> None:
        self._conn = conn
        self.namespaces = namespaces
        self.mode = mode

    def namespace(self, name: str) -> NamespaceStore:
        if name not in self.namespaces:
            raise StorageError(
                f"Store {name!r} is not part of this transaction",
                {"namespace": name, "scope": sorted(self.namespaces)},
            )
        return NamespaceStore(self._conn, name, self.mode)


class UpgradeTransaction:
    """Exclusive, version-changing transaction handed to the upgrade callback."""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        old_version: int,
        new_version: int,
        namespaces: frozenset[str],
    ) -> None:
        self._conn = conn
        self.old_version = old_version
        self.new_version = new_version
        self._namespaces = set(namespaces)

    @property
    def namespace_names(self) -> frozenset[str]:
        return frozenset(self._namespaces)

    async def create_namespace(
        self, name: str, indexes: Iterable[str] = INDEXED_FIELDS
    ) -> None:
        validate_namespace_name(name)
        if name in self._namespaces:
            raise StorageError(f"Store {name!r} already exists", {"namespace": name})

        table = _quote(name)
        await self._conn.execute(
            f"CREATE TABLE {table} ("
            "id NOT NULL PRIMARY KEY, "
            "data TEXT NOT NULL, "
            "createdAt INTEGER NOT NULL, "
            "updatedAt INTEGER NOT NULL"
            ") WITHOUT ROWID"
        )
        for field in indexes:
            if field not in INDEXED_FIELDS:
                raise ValueError(f"Cannot index unknown field {field!r}")
            await self._conn.execute(
                f"CREATE INDEX {_quote(f'{name}__{field}')} ON {table} ({field})"
            )
        self._namespaces.add(name)


class EngineConnection:
    """
    An open handle on the engine.

    Transactions on one connection are serialised with an asyncio lock; SQLite
    itself serialises readwrite transactions across connections and keeps
    readers isolated from uncommitted writes.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        path: str,
        version: int,
        namespaces: frozenset[str],
    ) -> None:
        self._conn = conn
        self.path = path
        self._version = version
        self._namespaces = namespaces
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def version(self) -> int:
        return self._version

    @property
    def namespace_names(self) -> frozenset[str]:
        return self._namespaces

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def refresh(self) -> None:
        """Re-read the schema, which another connection may have upgraded."""
        async with self._lock:
            if self._closed:
                raise StorageError("Connection is closed", {"path": self.path})
            try:
                self._version = await _read_version(self._conn)
                self._namespaces = await _read_namespaces(self._conn)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read schema: {e}", {"path": self.path}) from e

    @asynccontextmanager
    async def transaction(
        self, namespaces: Iterable[str], mode: AccessMode = AccessMode.READONLY
    ) -> AsyncIterator[Transaction]:
        scope = frozenset(namespaces)
        unknown = scope - self._namespaces
        if unknown:
            raise StorageError(
                f"Unknown store(s): {', '.join(sorted(unknown))}",
                {"namespaces": sorted(unknown)},
            )
        async with self._lock:
            # Checked under the lock: close() may have run while this caller waited.
            if self._closed:
                raise StorageError("Connection is closed", {"path": self.path})
            begin = "BEGIN IMMEDIATE" if mode is AccessMode.READWRITE else "BEGIN DEFERRED"
            try:
                await self._conn.execute(begin)
            except sqlite3.Error as e:
                raise TransactionFailed(
                    f"Failed to start {mode.value} transaction: {e}",
                    {"namespaces": sorted(scope)},
                ) from e

            try:
                yield Transaction(self._conn, scope, mode)
            except BaseException:
                if self._conn.in_transaction:
                    await self._conn.execute("ROLLBACK")
                raise

            try:
                await self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    await self._conn.execute("ROLLBACK")
                raise TransactionFailed(
                    f"Failed to commit transaction: {e}", {"namespaces": sorted(scope)}
                ) from e

    async def close(self) -> None:
        if self._closed:
            return
        async with self._lock:
            self._closed = True
            await self._conn.close()


async def _run_upgrade(
    conn: aiosqlite.Connection,
    path: str,
    version: int,
    on_upgrade: UpgradeCallback | None,
) -> None:
    try:
        await conn.execute("BEGIN EXCLUSIVE")
    except sqlite3.OperationalError as e:
        if _is_lock_error(e):
            raise EngineBlocked(path, version) from e
        raise

    try:
        current = await _read_version(conn)
        if version < current:
            raise EngineOpenFailed(
                f"requested version {version} is less than the existing version {current}",
                path,
            )
        if version > current:
            upgrade = UpgradeTransaction(conn, current, version, await _read_namespaces(conn))
            if on_upgrade is not None:
                await on_upgrade(upgrade)
            await conn.execute(f"PRAGMA user_version = {int(version)}")
        await conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            await conn.execute("ROLLBACK")
        raise


async def open_engine(
    path: str,
    version: int | None = None,
    on_upgrade: UpgradeCallback | None = None,
    *,
    timeout: float = 5.0,
) -> EngineConnection:
    """
    Open the database at ``path``.

    Without ``version`` the schema is left untouched. With a version newer than
    the stored one, ``on_upgrade`` runs inside a single exclusive transaction that
    also bumps the stored version; a version older than the stored one fails.
    """
    if version is not None and version < 1:
        raise ValueError("Engine version must be a positive integer")

    try:
        conn = await aiosqlite.connect(path, timeout=timeout, isolation_level=None)
    except sqlite3.Error as e:
        raise EngineOpenFailed(str(e), path) from e

    try:
        current = await _read_version(conn)
        if version is not None and version < current:
            raise EngineOpenFailed(
                f"requested version {version} is less than the existing version {current}",
                path,
            )
        if version is not None and version > current:
            logger.info(
                "engine_upgrade_started", path=path, old_version=current, new_version=version
            )
            await _run_upgrade(conn, path, version, on_upgrade)
        engine = EngineConnection(
            conn, path, await _read_version(conn), await _read_namespaces(conn)
        )
    except AuraSenseError:
        await conn.close()
        raise
    except sqlite3.Error as e:
        await conn.close()
        if _is_lock_error(e):
            raise EngineBlocked(path, version) from e
        raise EngineOpenFailed(str(e), path) from e
    except Exception as e:
        await conn.close()
        raise EngineOpenFailed(f"upgrade failed: {e}", path) from e
    except BaseException:
        await conn.close()
        raise

    logger.debug(
        "engine_opened",
        path=path,
        version=engine.version,
        namespaces=sorted(engine.namespace_names),
    )
    return engine
