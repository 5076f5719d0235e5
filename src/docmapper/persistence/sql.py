"""
SQL Storage Adapter - SQLAlchemy Async Core

🗄️ Relational Storage:
Stores each document collection in a table built from its metadata.
Scalar fields become typed columns, one-to-one relations a reference
column, one-to-many relations and embedded documents JSON columns.
Statements are built with SQLAlchemy Core and run on an asyncio
engine (``sqlite+aiosqlite`` by default).

Key Features:
- Tables created from registered metadata on boot
- Criteria and Query translation to SQLAlchemy expressions
- Transactions bound to one connection
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, Integer, MetaData, String, Table, Text,
    and_, asc, delete, desc, func, select, true, update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ..core.metadata import FieldType, IdStrategy, Metadata, RelationKind
from ..core.query import Query, QueryOperator, SortDirection
from ..core.registry import MetadataRegistry
from ..exceptions import InvalidOperationError, StorageError
from .base import Adapter, Client, Connection, Record
from .references import ReferenceAdapterMapper

logger = logging.getLogger(__name__)

_COLUMN_TYPES = {
    FieldType.NUMBER.value: Float,
    FieldType.BOOLEAN.value: Boolean,
    FieldType.DATE.value: DateTime,
    FieldType.OBJECT.value: JSON,
}


class SQLConnection(Connection):
    """
    SQLAlchemy asyncio engine plus the tables of every booted registry.

    Options:
        url: Database URL (default ``sqlite+aiosqlite:///:memory:``)
        echo: Log emitted SQL
        create_schema: Create missing tables on boot (default True)
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        super().__init__(options)
        self.url: str = self.options.get("url", "sqlite+aiosqlite:///:memory:")
        self.engine: Optional[AsyncEngine] = None
        self.sql_metadata = MetaData()
        self.lock = asyncio.Lock()

    async def connect(self) -> None:
        kwargs: Dict[str, Any] = {"echo": bool(self.options.get("echo", False))}
        if ":memory:" in self.url:
            kwargs["poolclass"] = StaticPool
        self.engine = create_async_engine(self.url, **kwargs)
        await super().connect()
        logger.debug("Connected SQL engine for %s", self.url)

    def _id_column_type(self, metadata: Metadata):
        mapping = metadata.get_id_field()
        if (metadata.id_strategy == IdStrategy.AUTO and not self.requests_id_generation
                and mapping.type in (FieldType.ID, FieldType.NUMBER)):
            return Integer
        return String(255)

    def build_table(self, registry: MetadataRegistry, metadata: Metadata) -> Table:
        """Create the Table for a document's collection, once per connection"""
        if metadata.collection in self.sql_metadata.tables:
            return self.sql_metadata.tables[metadata.collection]

        id_mapping = metadata.get_id_field()
        columns = []
        for mapping in metadata.fields:
            if not metadata.owns_field(mapping):
                continue
            if mapping is id_mapping:
                id_type = self._id_column_type(metadata)
                columns.append(Column(mapping.name, id_type, primary_key=True,
                                      autoincrement=id_type is Integer))
            else:
                columns.append(Column(mapping.name, _COLUMN_TYPES.get(mapping.type, Text), nullable=True))

        for relation in metadata.relation_mappings():
            column_name = ReferenceAdapterMapper.reference_column(relation)
            if relation.kind == RelationKind.ONE_TO_ONE:
                target = registry.get_metadata_by_name(relation.document)
                columns.append(Column(column_name, self._id_column_type(target), nullable=True))
            else:
                columns.append(Column(column_name, JSON, nullable=True))

        for embed in metadata.embed_mappings():
            columns.append(Column(embed.field, JSON, nullable=True))

        return Table(metadata.collection, self.sql_metadata, *columns)

    async def boot(self, registry: MetadataRegistry) -> None:
        for metadata in registry:
            if not metadata.is_embedded:
                self.build_table(registry, metadata)
        if self.options.get("create_schema", True):
            await self.create_schema()

    async def create_schema(self) -> None:
        if self.engine is None:
            raise StorageError("SQL connection is not connected")
        async with self.engine.begin() as conn:
            await conn.run_sync(self.sql_metadata.create_all)

    def get_table(self, collection: str) -> Table:
        table = self.sql_metadata.tables.get(collection)
        if table is None:
            raise StorageError(f"No table for collection '{collection}'")
        return table

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        await super().close()


def _operator_clause(column, operator: str, operand: Any):
    if operator == QueryOperator.EQUALS.value:
        return column.is_(None) if operand is None else column == operand
    elif operator == QueryOperator.NOT_EQUALS.value:
        return column.is_not(None) if operand is None else column != operand
    elif operator == QueryOperator.GREATER_THAN.value:
        return column > operand
    elif operator == QueryOperator.GREATER_THAN_OR_EQUAL.value:
        return column >= operand
    elif operator == QueryOperator.LESS_THAN.value:
        return column < operand
    elif operator == QueryOperator.LESS_THAN_OR_EQUAL.value:
        return column <= operand
    elif operator == QueryOperator.IN.value:
        return column.in_(list(operand))
    elif operator == QueryOperator.NOT_IN.value:
        return column.not_in(list(operand))
    elif operator == QueryOperator.REGEX.value:
        return column.regexp_match(operand)
    raise InvalidOperationError(f"Operator '{operator}' is not supported by the SQL adapter")


def build_where(table: Table, conditions: Dict[str, Any]):
    """Translate storage conditions into a SQLAlchemy boolean clause"""
    clauses = []
    for path, expected in conditions.items():
        column = table.c.get(path)
        if column is None:
            raise InvalidOperationError(f"Unknown column '{path}' on table '{table.name}'")
        if isinstance(expected, dict) and expected:
            for operator, operand in expected.items():
                clauses.append(_operator_clause(column, operator, operand))
        else:
            clauses.append(_operator_clause(column, QueryOperator.EQUALS.value, expected))
    return and_(*clauses) if clauses else true()


def build_order(table: Table, sort: Optional[Dict[str, Any]]) -> List[Any]:
    order = []
    for name, direction in (sort or {}).items():
        column = table.c.get(name)
        if column is None:
            raise InvalidOperationError(f"Unknown sort column '{name}' on table '{table.name}'")
        order.append(desc(column) if SortDirection.parse(direction) == SortDirection.DESC else asc(column))
    return order


class SQLClient(Client):
    """Client executing SQLAlchemy Core statements on an SQLConnection"""

    supports_transactions = True

    def __init__(self, connection: SQLConnection):
        super().__init__(connection)
        self._transaction_connection: Optional[AsyncConnection] = None

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        async with self.connection.lock:
            if self._transaction_connection is not None:
                yield self._transaction_connection
            else:
                async with self.connection.engine.begin() as conn:
                    yield conn

    def _table(self, collection: str) -> Table:
        return self.connection.get_table(collection)

    @staticmethod
    def _values(table: Table, record: Record) -> Record:
        return {name: value for name, value in record.items() if name in table.c}

    async def _select(self, collection: str, conditions: Dict[str, Any],
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Record]:
        table = self._table(collection)
        statement = select(table).where(build_where(table, conditions))
        order = build_order(table, sort)
        if order:
            statement = statement.order_by(*order)
        if skip:
            statement = statement.offset(skip)
        if limit is not None:
            statement = statement.limit(limit)
        async with self._connect() as conn:
            result = await conn.execute(statement)
            return [dict(row._mapping) for row in result]

    async def _count(self, collection: str, conditions: Dict[str, Any]) -> int:
        table = self._table(collection)
        statement = select(func.count()).select_from(table).where(build_where(table, conditions))
        async with self._connect() as conn:
            result = await conn.execute(statement)
            return result.scalar_one()

    async def insert(self, metadata: Metadata, collection: str, record: Record) -> Record:
        table = self._table(collection)
        values = self._values(table, record)
        id_name = metadata.id_field_name
        async with self._connect() as conn:
            result = await conn.execute(table.insert().values(**values))
            if values.get(id_name) is None:
                values[id_name] = result.inserted_primary_key[0]
        return values

    async def update(self, metadata: Metadata, collection: str, id_value: Any,
                     record: Record) -> Optional[Record]:
        table = self._table(collection)
        id_name = metadata.id_field_name
        values = {k: v for k, v in self._values(table, record).items() if k != id_name}
        if not values:
            return {id_name: id_value}
        async with self._connect() as conn:
            result = await conn.execute(
                update(table).where(table.c[id_name] == id_value).values(**values)
            )
            if result.rowcount == 0:
                raise StorageError(f"Record {id_value!r} not found in '{collection}'")
        return {**values, id_name: id_value}

    async def remove(self, metadata: Metadata, collection: str, id_value: Any) -> None:
        table = self._table(collection)
        async with self._connect() as conn:
            await conn.execute(delete(table).where(table.c[metadata.id_field_name] == id_value))

    async def find(self, metadata: Metadata, collection: str, id_value: Any) -> Optional[Record]:
        records = await self._select(collection, {metadata.id_field_name: id_value}, limit=1)
        return records[0] if records else None

    async def find_by(self, metadata: Metadata, collection: str, criteria: Record,
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Record]:
        return await self._select(collection, criteria, sort, skip, limit)

    async def find_where_in(self, metadata: Metadata, collection: str, field: str,
                            values: List[Any], sort: Optional[Dict[str, Any]] = None,
                            skip: Optional[int] = None,
                            limit: Optional[int] = None) -> List[Record]:
        if not values:
            return []
        return await self._select(collection, {field: {QueryOperator.IN.value: values}},
                                  sort, skip, limit)

    async def find_count_by(self, metadata: Metadata, collection: str, criteria: Record) -> int:
        return await self._count(collection, criteria)

    async def find_by_query(self, metadata: Metadata, collection: str, query: Query) -> List[Record]:
        return await self._select(collection, query.get_conditions(), query.get_sort(),
                                  query.get_skip(), query.get_limit())

    async def find_count_by_query(self, metadata: Metadata, collection: str, query: Query) -> int:
        return await self._count(collection, query.get_conditions())

    async def update_by(self, metadata: Metadata, collection: str, criteria: Record,
                        patch: Record) -> int:
        table = self._table(collection)
        async with self._connect() as conn:
            result = await conn.execute(
                update(table).where(build_where(table, criteria)).values(**self._values(table, patch))
            )
            return result.rowcount

    async def remove_by(self, metadata: Metadata, collection: str, criteria: Record) -> int:
        table = self._table(collection)
        async with self._connect() as conn:
            result = await conn.execute(delete(table).where(build_where(table, criteria)))
            return result.rowcount

    async def start_transaction(self) -> Any:
        if self._transaction_connection is not None:
            raise InvalidOperationError("A transaction is already active on this client")
        conn = await self.connection.engine.connect()
        transaction = await conn.begin()
        self._transaction_connection = conn
        return transaction

    async def _end_transaction(self) -> None:
        conn, self._transaction_connection = self._transaction_connection, None
        if conn is not None:
            await conn.close()

    async def commit_transaction(self, transaction: Any) -> None:
        try:
            await transaction.commit()
        finally:
            await self._end_transaction()

    async def rollback_transaction(self, transaction: Any) -> None:
        try:
            await transaction.rollback()
        finally:
            await self._end_transaction()


class SQLAdapterMapper(ReferenceAdapterMapper):
    """Reference relations; dates read back from text are parsed"""

    def to_model_value(self, field_type: str, value: Any) -> Any:
        if field_type == FieldType.DATE and isinstance(value, str):
            return datetime.fromisoformat(value)
        return value

    def to_storage_value(self, field_type: str, value: Any) -> Any:
        if field_type == FieldType.DATE and isinstance(value, date) and not isinstance(value, datetime):
            return datetime(value.year, value.month, value.day)
        return value


sql_adapter = Adapter(
    name="sql",
    client_class=SQLClient,
    mapper_class=SQLAdapterMapper,
    connection_class=SQLConnection,
)


# Export main components
__all__ = [
    'SQLConnection',
    'SQLClient',
    'SQLAdapterMapper',
    'sql_adapter',
    'build_where',
    'build_order',
]
