"""
Document Manager - Persistence Façade

🏭 Single Entry Point per Storage:
The manager ties together a storage client, the mapper, the document
cache and the unit of work for one set of document types. Writes are
collected by the unit of work until ``flush``; reads are delegated to
per-type repositories.

Key Features:
- Identity map shared by every read of the manager
- Transactions and record locks when the client supports them
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Union, TYPE_CHECKING

from ..core.cache import DocumentCache
from ..core.mapper import Mapper
from ..core.metadata import Metadata
from ..core.query import Query
from ..core.unit_of_work import FlushResult, UnitOfWork
from ..exceptions import InvalidOperationError
from .repository import Repository

if TYPE_CHECKING:
    from .session import ManagerDefinition

logger = logging.getLogger(__name__)


class Manager:
    """
    Persistence façade for one manager definition.

    Usage:
        user = await manager.create_document("User", {"email": "a@b.c"})
        manager.persist(user)
        (await manager.flush()).raise_for_errors()
        same = await manager.find("User", user.id)
    """

    def __init__(self, definition: 'ManagerDefinition'):
        self.definition = definition
        self.name = definition.name
        self.registry = definition.metadata_registry
        self.connection = definition.connection
        self.logger = definition.logger or logger

        adapter = definition.adapter
        self.client = adapter.create_client(self.connection)
        self.mapper = Mapper(self.registry, adapter.create_mapper(self.registry, self.client))
        self.document_cache = DocumentCache(self.registry)
        self.unit_of_work = UnitOfWork(
            self.registry, self.mapper, self.client, self.document_cache, self.connection
        )
        self._repositories: Dict[str, Repository] = {}

    def _metadata(self, document_type: Union[str, type]) -> Metadata:
        if isinstance(document_type, str):
            return self.registry.get_metadata_by_name(document_type)
        return self.registry.get_metadata_for_document(document_type)

    def get_repository(self, document_type: Union[str, type]) -> Repository:
        """Get the (possibly custom) repository for a document name or class"""
        metadata = self._metadata(document_type)
        repository = self._repositories.get(metadata.name)
        if repository is None:
            repository_class = metadata.repository_class or Repository
            repository = repository_class(self, metadata)
            self._repositories[metadata.name] = repository
        return repository

    # Writes

    def persist(self, document: Any) -> None:
        self.unit_of_work.persist(document)

    def remove(self, document: Any) -> None:
        self.unit_of_work.schedule_removal(document)

    async def flush(self, document: Any = None) -> FlushResult:
        return await self.unit_of_work.flush(document)

    async def create_document(self, document_type: Union[str, type],
                              data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.get_repository(document_type).create_document(data)

    def create_query(self) -> Query:
        return Query()

    # Reads

    async def find(self, document_type: Union[str, type], id_value: Any) -> Optional[Any]:
        return await self.get_repository(document_type).find(id_value)

    async def find_one_by(self, document_type: Union[str, type], criteria: Dict[str, Any],
                          sort: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await self.get_repository(document_type).find_one_by(criteria, sort)

    async def find_by(self, document_type: Union[str, type],
                      criteria: Optional[Dict[str, Any]] = None,
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Any]:
        return await self.get_repository(document_type).find_by(criteria, sort, skip, limit)

    async def find_where_in(self, document_type: Union[str, type], property: str,
                            values: List[Any], sort: Optional[Dict[str, Any]] = None,
                            skip: Optional[int] = None, limit: Optional[int] = None) -> List[Any]:
        return await self.get_repository(document_type).find_where_in(
            property, values, sort, skip, limit
        )

    async def find_by_query(self, document_type: Union[str, type], query: Query) -> List[Any]:
        return await self.get_repository(document_type).find_by_query(query)

    async def find_count_by(self, document_type: Union[str, type],
                            criteria: Union[Dict[str, Any], Query, None] = None) -> int:
        return await self.get_repository(document_type).find_count_by(criteria)

    async def find_count_by_query(self, document_type: Union[str, type], query: Query) -> int:
        return await self.get_repository(document_type).find_count_by_query(query)

    async def update_by(self, document_type: Union[str, type], criteria: Dict[str, Any],
                        patch: Dict[str, Any]) -> int:
        return await self.get_repository(document_type).update_by(criteria, patch)

    async def remove_by(self, document_type: Union[str, type], criteria: Dict[str, Any]) -> int:
        return await self.get_repository(document_type).remove_by(criteria)

    # State

    def detach(self, document: Any) -> None:
        """Stop tracking and caching a document"""
        self.unit_of_work.clear(document)
        self.document_cache.remove(document)

    def clear(self) -> None:
        self.unit_of_work.clear()
        self.document_cache.clear()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator['Manager']:
        """Run a block inside a storage transaction, rolling back on error"""
        if not self.client.supports_transactions:
            raise InvalidOperationError(f"Manager '{self.name}' storage does not support transactions")

        transaction = await self.client.start_transaction()
        try:
            yield self
        except BaseException:
            await self.client.rollback_transaction(transaction)
            self.logger.debug(f"[docmapper] rolled back transaction on manager {self.name}")
            raise
        else:
            await self.client.commit_transaction(transaction)

    @asynccontextmanager
    async def lock(self, document: Any) -> AsyncIterator[Any]:
        """Hold a storage lock on a document's record"""
        if not self.client.supports_locking:
            raise InvalidOperationError(f"Manager '{self.name}' storage does not support locking")

        metadata = self.registry.get_metadata_for_document(document)
        lock = await self.client.create_lock(
            metadata, metadata.collection, self.mapper.storage_id(metadata, document)
        )
        try:
            yield document
        finally:
            await self.client.release_lock(lock)


# Export main components
__all__ = ['Manager']
