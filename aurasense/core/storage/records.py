"""
Record engine: CRUD over namespaced records with millisecond timestamps.

Every operation ensures its namespace exists, then runs in exactly one engine
transaction scoped to that namespace (readonly for reads, readwrite for
mutations). Payloads are JSON values or pydantic models, which are dumped in
JSON mode before they are stored.
"""

import time
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from aurasense.core.domain.models import AccessMode, Record, RecordId
from aurasense.core.errors import NotFound
from aurasense.core.storage.engine import Transaction, validate_record_id
from aurasense.core.storage.registry import StoreHandle

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

RecordPredicate = Callable[[Record[Any]], bool]


def now_ms() -> int:
    """Current time in integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def _to_payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


class RecordEngine:
    """
    Namespaced record CRUD on top of a StoreHandle.

    The engine is cheap to construct; ``use_namespace`` returns a sibling bound
    to another default namespace and sharing the same handle.
    """

    def __init__(
        self,
        handle: StoreHandle,
        default_namespace: str | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.handle = handle
        self.default_namespace = default_namespace or handle.config.default_namespace
        self._clock = clock
        self.logger = logger.bind(component="record_engine")

    def use_namespace(self, name: str) -> "RecordEngine":
        """A record engine over the same handle with ``name`` as its default namespace."""
        return RecordEngine(self.handle, name, self._clock)

    def _target(self, namespace: str | None) -> str:
        return namespace or self.default_namespace

    @asynccontextmanager
    async def _transaction(
        self, target: str, mode: AccessMode = AccessMode.READONLY
    ) -> AsyncIterator[Transaction]:
        async with self.handle.session(target) as connection:
            async with connection.transaction([target], mode) as tx:
                yield tx

    # Writes ---------------------------------------------------------------

    async def create(self, record_id: RecordId, data: Any, namespace: str | None = None) -> None:
        """Insert a new record; raises DuplicateKey when ``record_id`` already exists."""
        validate_record_id(record_id)
        target = self._target(namespace)
        now = self._clock()
        async with self._transaction(target, AccessMode.READWRITE) as tx:
            await tx.namespace(target).add(
                {"id": record_id, "data": _to_payload(data), "createdAt": now, "updatedAt": now}
            )
        self.logger.debug("record_created", namespace=target, id=record_id)

    async def upsert(self, record_id: RecordId, data: Any, namespace: str | None = None) -> None:
        """Insert or overwrite, keeping the original createdAt of an existing record."""
        validate_record_id(record_id)
        target = self._target(namespace)
        now = self._clock()
        async with self._transaction(target, AccessMode.READWRITE) as tx:
            store = tx.namespace(target)
            existing = await store.get(record_id)
            await store.put(
                {
                    "id": record_id,
                    "data": _to_payload(data),
                    "createdAt": existing["createdAt"] if existing else now,
                    "updatedAt": now,
                }
            )
        self.logger.debug(
            "record_upserted", namespace=target, id=record_id, inserted=existing is None
        )

    async def update(
        self, record_id: RecordId, partial: Any, namespace: str | None = None
    ) -> None:
        """Shallow-merge ``partial`` into an existing payload; raises NotFound when absent."""
        validate_record_id(record_id)
        changes = _to_payload(partial)
        if not isinstance(changes, Mapping):
            raise TypeError(f"update() needs a mapping payload, got {type(changes).__name__}")

        target = self._target(namespace)
        async with self._transaction(target, AccessMode.READWRITE) as tx:
            store = tx.namespace(target)
            existing = await store.get(record_id)
            if existing is None:
                raise NotFound(record_id, target)
            if not isinstance(existing["data"], Mapping):
                raise TypeError(
                    f"Record {record_id!r} in {target!r} does not hold a mapping payload"
                )
            await store.put(
                {
                    "id": record_id,
                    "data": {**existing["data"], **changes},
                    "createdAt": existing["createdAt"],
                    "updatedAt": self._clock(),
                }
            )
        self.logger.debug("record_updated", namespace=target, id=record_id, fields=sorted(changes))

    async def delete(self, record_id: RecordId, namespace: str | None = None) -> None:
        """Remove one record; deleting a missing id is not an error."""
        validate_record_id(record_id)
        target = self._target(namespace)
        async with self._transaction(target, AccessMode.READWRITE) as tx:
            await tx.namespace(target).delete(record_id)
        self.logger.debug("record_deleted", namespace=target, id=record_id)

    async def delete_all(self, namespace: str | None = None) -> None:
        target = self._target(namespace)
        async with self._transaction(target, AccessMode.READWRITE) as tx:
            await tx.namespace(target).clear()
        self.logger.info("namespace_cleared", namespace=target)

    clear = delete_all

    # Reads ----------------------------------------------------------------

    async def read(self, record_id: RecordId, namespace: str | None = None) -> Record[Any] | None:
        validate_record_id(record_id)
        target = self._target(namespace)
        async with self._transaction(target) as tx:
            row = await tx.namespace(target).get(record_id)
        return Record[Any].model_validate(row) if row is not None else None

    async def read_data(
        self,
        record_id: RecordId,
        namespace: str | None = None,
        model: type[ModelT] | None = None,
    ) -> Any:
        """The payload of one record, decoded into ``model`` when given."""
        record = await self.read(record_id, namespace)
        if record is None:
            return None
        return model.model_validate(record.data) if model is not None else record.data

    async def read_all(self, namespace: str | None = None) -> list[Record[Any]]:
        """Every record in ascending id order."""
        target = self._target(namespace)
        async with self._transaction(target) as tx:
            rows = await tx.namespace(target).get_all()
        return [Record[Any].model_validate(row) for row in rows]

    async def read_all_data(self, namespace: str | None = None) -> list[Any]:
        return [record.data for record in await self.read_all(namespace)]

    async def count(self, namespace: str | None = None) -> int:
        target = self._target(namespace)
        async with self._transaction(target) as tx:
            return await tx.namespace(target).count()

    async def exists(self, record_id: RecordId, namespace: str | None = None) -> bool:
        return await self.read(record_id, namespace) is not None

    async def query(
        self, predicate: RecordPredicate, namespace: str | None = None
    ) -> list[Record[Any]]:
        """Records matching ``predicate``, filtered client-side in id order."""
        return [record for record in await self.read_all(namespace) if predicate(record)]

    async def query_data(
        self, predicate: RecordPredicate, namespace: str | None = None
    ) -> list[Any]:
        """Payloads of the records matching ``predicate``."""
        return [record.data for record in await self.query(predicate, namespace)]
