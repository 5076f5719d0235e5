"""
Memory Storage Adapter - In-Process Collections

⚡ Fast In-Memory Storage:
Stores records in per-collection dicts held by the connection, so
every manager sharing a connection sees the same data. Ideal for
development, testing and single-process deployments.

Key Features:
- Sequence ids for AUTO documents
- Condition evaluation for every query operator
- Snapshot transactions and per-record locks
- Optional artificial latency to exercise concurrency
"""

import asyncio
import copy
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..core.document import UNDEFINED
from ..core.metadata import FieldType, Metadata
from ..core.query import Query, QueryOperator, SortDirection, conditions_match
from ..exceptions import StorageError
from .base import Adapter, Client, Connection, Record
from .references import ReferenceAdapterMapper

logger = logging.getLogger(__name__)


def _get_path(record: Record, path: str) -> Any:
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return UNDEFINED
        value = value[part]
    return value


def record_matches(record: Record, conditions: Dict[str, Any]) -> bool:
    """Check a record against equality values and operator dicts"""
    def read(path: str) -> Any:
        value = _get_path(record, path)
        return None if value is UNDEFINED else value

    return conditions_match(read, conditions)


def sort_records(records: List[Record], sort: Optional[Dict[str, Any]]) -> List[Record]:
    """Stable multi-key sort; missing values sort first in ascending order"""
    ordered = list(records)
    for path, direction in reversed(list((sort or {}).items())):
        descending = SortDirection.parse(direction) == SortDirection.DESC

        def sort_key(record, _path=path):
            value = _get_path(record, _path)
            present = value is not UNDEFINED and value is not None
            return (present, value if present else 0)

        ordered.sort(key=sort_key, reverse=descending)
    return ordered


def _page(records: List[Record], skip: Optional[int], limit: Optional[int]) -> List[Record]:
    start = skip or 0
    end = start + limit if limit is not None else None
    return records[start:end]


class MemoryConnection(Connection):
    """
    Shared in-memory store.

    Options:
        latency: Seconds to sleep inside every client call (default 0)
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        super().__init__(options)
        self.latency: float = float(self.options.get("latency", 0))
        self.collections: Dict[str, Dict[Any, Record]] = {}
        self.sequences: Dict[str, int] = {}
        self.locks: Dict[tuple, asyncio.Lock] = {}
        self.lock_holders: Dict[tuple, int] = {}

    def next_id(self, collection: str) -> int:
        rows = self.collections.get(collection, {})
        value = self.sequences.get(collection, 0) + 1
        while value in rows:
            value += 1
        self.sequences[collection] = value
        return value

    async def close(self) -> None:
        self.collections.clear()
        self.sequences.clear()
        await super().close()


class MemoryClient(Client):
    """Client operating on a MemoryConnection's collections"""

    supports_transactions = True
    supports_locking = True

    def __init__(self, connection: MemoryConnection):
        super().__init__(connection)
        self._transactions: List[Dict[str, Any]] = []

    async def _pause(self) -> None:
        await asyncio.sleep(self.connection.latency)

    def _rows(self, collection: str) -> Dict[Any, Record]:
        return self.connection.collections.setdefault(collection, {})

    def _select(self, collection: str, conditions: Dict[str, Any]) -> List[Record]:
        return [r for r in self._rows(collection).values() if record_matches(r, conditions)]

    async def insert(self, metadata: Metadata, collection: str, record: Record) -> Record:
        await self._pause()
        id_name = metadata.id_field_name
        rows = self._rows(collection)
        stored = copy.deepcopy(record)

        id_value = stored.get(id_name)
        if id_value is None:
            id_value = self.connection.next_id(collection)
            stored[id_name] = id_value
        if id_value in rows:
            raise StorageError(f"Duplicate id {id_value!r} in '{collection}'")

        rows[id_value] = stored
        return copy.deepcopy(stored)

    async def update(self, metadata: Metadata, collection: str, id_value: Any,
                     record: Record) -> Optional[Record]:
        await self._pause()
        existing = self._rows(collection).get(id_value)
        if existing is None:
            raise StorageError(f"Record {id_value!r} not found in '{collection}'")
        existing.update(copy.deepcopy(record))
        existing[metadata.id_field_name] = id_value
        return copy.deepcopy(existing)

    async def remove(self, metadata: Metadata, collection: str, id_value: Any) -> None:
        await self._pause()
        self._rows(collection).pop(id_value, None)

    async def find(self, metadata: Metadata, collection: str, id_value: Any) -> Optional[Record]:
        await self._pause()
        record = self._rows(collection).get(id_value)
        return copy.deepcopy(record) if record is not None else None

    async def find_by(self, metadata: Metadata, collection: str, criteria: Record,
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Record]:
        await self._pause()
        records = sort_records(self._select(collection, criteria), sort)
        return copy.deepcopy(_page(records, skip, limit))

    async def find_where_in(self, metadata: Metadata, collection: str, field: str,
                            values: List[Any], sort: Optional[Dict[str, Any]] = None,
                            skip: Optional[int] = None,
                            limit: Optional[int] = None) -> List[Record]:
        await self._pause()
        records = self._select(collection, {field: {QueryOperator.IN.value: list(values)}})
        return copy.deepcopy(_page(sort_records(records, sort), skip, limit))

    async def find_count_by(self, metadata: Metadata, collection: str, criteria: Record) -> int:
        await self._pause()
        return len(self._select(collection, criteria))

    async def find_by_query(self, metadata: Metadata, collection: str, query: Query) -> List[Record]:
        await self._pause()
        records = sort_records(self._select(collection, query.get_conditions()), query.get_sort())
        return copy.deepcopy(_page(records, query.get_skip(), query.get_limit()))

    async def find_count_by_query(self, metadata: Metadata, collection: str, query: Query) -> int:
        await self._pause()
        return len(self._select(collection, query.get_conditions()))

    async def update_by(self, metadata: Metadata, collection: str, criteria: Record,
                        patch: Record) -> int:
        await self._pause()
        matched = self._select(collection, criteria)
        for record in matched:
            record.update(copy.deepcopy(patch))
        return len(matched)

    async def remove_by(self, metadata: Metadata, collection: str, criteria: Record) -> int:
        await self._pause()
        rows = self._rows(collection)
        id_name = metadata.id_field_name
        matched = [r[id_name] for r in self._select(collection, criteria)]
        for id_value in matched:
            del rows[id_value]
        return len(matched)

    async def create_lock(self, metadata: Metadata, collection: str, id_value: Any) -> tuple:
        key = (collection, id_value)
        lock = self.connection.locks.setdefault(key, asyncio.Lock())
        holders = self.connection.lock_holders
        holders[key] = holders.get(key, 0) + 1
        acquired = False
        try:
            await lock.acquire()
            acquired = True
        finally:
            if not acquired:
                self._drop_holder(key)
        return key

    async def release_lock(self, key: tuple) -> None:
        self.connection.locks[key].release()
        self._drop_holder(key)

    def _drop_holder(self, key: tuple) -> None:
        """Forget the lock once nobody holds or waits on it"""
        holders = self.connection.lock_holders
        holders[key] -= 1
        if holders[key] == 0:
            del holders[key]
            del self.connection.locks[key]


    async def start_transaction(self) -> Dict[str, Any]:
        transaction = {
            "collections": copy.deepcopy(self.connection.collections),
            "sequences": dict(self.connection.sequences),
        }
        self._transactions.append(transaction)
        return transaction

    async def commit_transaction(self, transaction: Dict[str, Any]) -> None:
        self._transactions.remove(transaction)

    async def rollback_transaction(self, transaction: Dict[str, Any]) -> None:
        self._transactions.remove(transaction)
        self.connection.collections.clear()
        self.connection.collections.update(transaction["collections"])
        self.connection.sequences.clear()
        self.connection.sequences.update(transaction["sequences"])
        logger.debug("Rolled back memory transaction")


class MemoryAdapterMapper(ReferenceAdapterMapper):
    """Reference relations plus ISO-8601 text storage for dates"""

    def to_storage_value(self, field_type: str, value: Any) -> Any:
        if field_type == FieldType.DATE and isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    def to_model_value(self, field_type: str, value: Any) -> Any:
        if field_type == FieldType.DATE and isinstance(value, str):
            return datetime.fromisoformat(value)
        return value


memory_adapter = Adapter(
    name="memory",
    client_class=MemoryClient,
    mapper_class=MemoryAdapterMapper,
    connection_class=MemoryConnection,
)


# Export main components
__all__ = [
    'MemoryConnection',
    'MemoryClient',
    'MemoryAdapterMapper',
    'memory_adapter',
    'record_matches',
    'sort_records',
]
