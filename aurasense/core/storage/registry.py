"""
Namespace registry: owns the engine connection and creates namespaces on demand.

A StoreHandle is constructed once by the application and passed to every
component that touches storage. It guarantees a namespace exists before any
operation uses it, with as few schema-version upgrades as possible:

- concurrent ensure_namespace() calls join a single in-flight reconcile task,
  so several missing namespaces are created by one upgrade
- an upgrade closes the current connection, reopens at version + 1 and creates
  every missing namespace inside the one upgrade callback
- a reconcile interrupted by cancellation or timeout leaves the handle in the
  FAILED state; it must be closed before it can be used again
- operations run inside session(); an upgrade waits for open sessions to
  drain before closing the connection, and new sessions wait for the upgrade

State machine: CLOSED -> OPENING -> OPEN, OPEN -> UPGRADING -> OPEN,
any -> FAILED on interruption, FAILED/OPEN -> CLOSED via close().
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from enum import Enum

import structlog

from aurasense.core.config import StorageConfig
from aurasense.core.errors import EngineOpenFailed, HandleUnusable
from aurasense.core.storage.engine import (
    INDEXED_FIELDS,
    EngineConnection,
    UpgradeTransaction,
    open_engine,
    validate_namespace_name,
)

logger = structlog.get_logger(__name__)


class HandleState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    UPGRADING = "upgrading"
    FAILED = "failed"


class StoreHandle:
    """Explicit open/close lifecycle around one engine connection."""

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.logger = logger.bind(component="store_handle", path=config.database_path)

        self._connection: EngineConnection | None = None
        self._reconcile_task: asyncio.Task[None] | None = None
        self._required: set[str] = {
            validate_namespace_name(name) for name in config.preload_namespaces
        }
        self._state = HandleState.CLOSED
        self.upgrade_count = 0

        # Sessions hold the connection open; an upgrade closes it only once they drain.
        self._gate = asyncio.Condition()
        self._active_sessions = 0
        self._upgrading = False

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def required_namespaces(self) -> frozenset[str]:
        return frozenset(self._required)

    def _has(self, name: str) -> bool:
        return (
            self._connection is not None
            and not self._connection.is_closed
            and name in self._connection.namespace_names
        )

    def _check_usable(self) -> None:
        if self._state is HandleState.FAILED:
            raise HandleUnusable(
                "Store handle was interrupted during an upgrade; close() it before reuse",
                {"path": self.config.database_path},
            )

    async def ensure_namespace(self, name: str) -> None:
        """Make sure ``name`` exists, creating it (and any other missing ones) if needed."""
        await self.ensure_namespaces(name)

    async def ensure_namespaces(self, *names: str) -> None:
        self._check_usable()
        wanted = {validate_namespace_name(name) for name in names}
        if all(self._has(name) for name in wanted):
            return

        self._required.update(wanted)
        while not all(self._has(name) for name in wanted):
            self._check_usable()
            await self._join_reconcile()

    async def connection(self) -> EngineConnection:
        """The open connection, opening the engine first if necessary."""
        self._check_usable()
        while self._connection is None or self._connection.is_closed:
            self._check_usable()
            await self._join_reconcile()
        return self._connection

    @asynccontextmanager
    async def session(self, *names: str) -> AsyncIterator[EngineConnection]:
        """
        The open connection, with ``names`` guaranteed to exist, held for one operation.

        The connection stays open until the block exits: a concurrent upgrade
        waits for it, and a session requested during an upgrade starts on the
        upgraded connection.
        """
        wanted = {validate_namespace_name(name) for name in names}
        while True:
            await self.ensure_namespaces(*wanted)
            await self.connection()
            async with self._gate:
                await self._gate.wait_for(lambda: not self._upgrading)
                self._check_usable()
                connection = self._connection
                if (
                    connection is not None
                    and not connection.is_closed
                    and wanted <= connection.namespace_names
                ):
                    self._active_sessions += 1
                    break

        try:
            yield connection
        finally:
            async with self._gate:
                self._active_sessions -= 1
                self._gate.notify_all()

    async def _join_reconcile(self) -> None:
        if self._reconcile_task is None:
            self._reconcile_task = asyncio.create_task(self._reconcile())
            self._reconcile_task.add_done_callback(self._on_reconcile_done)
        # Shielded: a caller giving up must not abort a half-finished upgrade.
        await asyncio.shield(self._reconcile_task)

    def _on_reconcile_done(self, task: asyncio.Task[None]) -> None:
        if self._reconcile_task is task:
            self._reconcile_task = None
        if task.cancelled():
            self._state = HandleState.FAILED
            self.logger.error("store_reconcile_cancelled")
        elif task.exception() is not None and self._state is not HandleState.FAILED:
            self._state = (
                HandleState.OPEN if self._connection is not None else HandleState.CLOSED
            )

    async def _reconcile(self) -> None:
        try:
            await asyncio.wait_for(self._open_with_required(), self.config.open_timeout_seconds)
        except TimeoutError as e:
            self._state = HandleState.FAILED
            self.logger.error(
                "store_reconcile_timeout", timeout_seconds=self.config.open_timeout_seconds
            )
            raise EngineOpenFailed(
                f"timed out after {self.config.open_timeout_seconds}s", self.config.database_path
            ) from e
        except asyncio.CancelledError:
            self._state = HandleState.FAILED
            raise

    async def _open_with_required(self) -> None:
        required = frozenset(self._required)

        # Open without a version to learn the existing schema.
        if self._connection is None or self._connection.is_closed:
            self._state = HandleState.OPENING
            self._connection = None
            current = await open_engine(
                self.config.database_path, timeout=self.config.busy_timeout_seconds
            )
        else:
            current = self._connection
            await current.refresh()

        missing = required - current.namespace_names
        if not missing:
            self._connection = current
            self._state = HandleState.OPEN
            return

        existing_version = current.version
        self._state = HandleState.UPGRADING

        async def create_missing(upgrade: UpgradeTransaction) -> None:
            for name in sorted(required - upgrade.namespace_names):
                await upgrade.create_namespace(name, INDEXED_FIELDS)

        async with self._gate:
            self._upgrading = True
        try:
            async with self._gate:
                if self._active_sessions:
                    self.logger.debug(
                        "namespace_upgrade_draining", sessions=self._active_sessions
                    )
                await self._gate.wait_for(lambda: self._active_sessions == 0)

            await current.close()
            self._connection = None
            self.logger.info(
                "namespace_upgrade_started",
                from_version=existing_version,
                to_version=existing_version + 1,
                missing=sorted(missing),
            )
            self._connection = await open_engine(
                self.config.database_path,
                existing_version + 1,
                create_missing,
                timeout=self.config.busy_timeout_seconds,
            )
            self.upgrade_count += 1
            self._state = HandleState.OPEN
        finally:
            async with self._gate:
                self._upgrading = False
                self._gate.notify_all()
        self.logger.info(
            "namespace_upgrade_completed",
            version=self._connection.version,
            namespaces=sorted(self._connection.namespace_names),
        )

    async def namespace_names(self) -> list[str]:
        """Every namespace that currently exists in the database."""
        async with self.session() as connection:
            await connection.refresh()
            return sorted(connection.namespace_names)

    async def schema_version(self) -> int:
        async with self.session() as connection:
            await connection.refresh()
            return connection.version

    async def close(self) -> None:
        """Close the connection and reset the handle; it can be reopened afterwards."""
        task = self._reconcile_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                self.logger.warning("store_reconcile_aborted_on_close")
        self._reconcile_task = None

        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        self._state = HandleState.CLOSED
        self.logger.info("store_handle_closed")

    async def __aenter__(self) -> "StoreHandle":
        await self.connection()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


@asynccontextmanager
async def open_store(
    config: StorageConfig, namespaces: Iterable[str] = ()
) -> AsyncIterator[StoreHandle]:
    """Open a handle, ensure ``namespaces`` exist, and close it on exit."""
    handle = StoreHandle(config)
    try:
        await handle.ensure_namespaces(*config.preload_namespaces, *namespaces)
        yield handle
    finally:
        await handle.close()
