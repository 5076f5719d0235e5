"""
Document Repository - Per-Type Read Access

A repository answers reads for one document type: it translates
property criteria into storage criteria, asks the client for raw
records and hydrates them, reusing instances already held by the
manager's document cache.
"""

import logging
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from ..core.mapper import HydrationScope
from ..core.metadata import Metadata
from ..core.query import Query
from ..exceptions import DocMapperError, InvalidOperationError, StorageError

if TYPE_CHECKING:
    from .manager import Manager

logger = logging.getLogger(__name__)


class Repository:
    """
    Read access for one document type.

    Subclass it and set ``Metadata.repository_class`` to add custom
    finders for a document type.
    """

    def __init__(self, manager: 'Manager', metadata: Metadata):
        self.manager = manager
        self.metadata = metadata

    @property
    def client(self):
        return self.manager.client

    @property
    def mapper(self):
        return self.manager.mapper

    @property
    def cache(self):
        return self.manager.document_cache

    async def _call(self, awaitable, operation: str) -> Any:
        try:
            return await awaitable
        except DocMapperError:
            raise
        except Exception as e:
            raise StorageError(
                f"{operation} on '{self.metadata.collection}' failed: {e}", original_error=e
            ) from e

    def _scope(self) -> HydrationScope:
        return HydrationScope(lookup=self.cache.get)

    def _register(self, scope: HydrationScope) -> None:
        for document in scope.documents():
            self.cache.add(document)

    async def hydrate(self, record: Dict[str, Any]) -> Any:
        scope = self._scope()
        document = await self.mapper.hydrate(self.metadata, record, scope)
        self._register(scope)
        return document

    async def hydrate_many(self, records: List[Dict[str, Any]]) -> List[Any]:
        scope = self._scope()
        documents = await self.mapper.hydrate_many(self.metadata, records, scope)
        self._register(scope)
        return documents

    async def find(self, id_value: Any) -> Optional[Any]:
        """Find a document by id, returning the cached instance when known"""
        cached = self.cache.get(self.metadata.name, id_value)
        if cached is not None:
            return cached

        id_mapping = self.metadata.get_id_field()
        storage_id = self.mapper.to_storage_value(id_mapping, id_value)
        record = await self._call(
            self.client.find(self.metadata, self.metadata.collection, storage_id), "find"
        )
        if record is None:
            return None
        return await self.hydrate(record)

    async def find_one_by(self, criteria: Dict[str, Any],
                          sort: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        documents = await self.find_by(criteria, sort=sort, limit=1)
        return documents[0] if documents else None

    async def find_by(self, criteria: Optional[Dict[str, Any]] = None,
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Any]:
        """
        Find documents matching property criteria.

        Args:
            criteria: Property -> value, or property -> {operator: operand}
            sort: Property -> "asc"/"desc"
            skip: Number of records to skip
            limit: Maximum number of records

        Returns:
            Hydrated documents in storage order
        """
        storage_criteria = self.mapper.map_criteria_to_storage(self.metadata, criteria or {})
        storage_sort = self.mapper.map_sort_to_storage(self.metadata, sort)
        records = await self._call(self.client.find_by(
            self.metadata, self.metadata.collection, storage_criteria, storage_sort, skip, limit
        ), "find_by")
        return await self.hydrate_many(records)

    async def find_where_in(self, property: str, values: List[Any],
                            sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                            limit: Optional[int] = None) -> List[Any]:
        name = self.mapper.storage_name_for_property(self.metadata, property)
        if name is None:
            raise InvalidOperationError(f"Invalid field '{property}' for '{self.metadata.name}'")
        mapping = self.metadata.get_field_by_property(property)
        if mapping is not None:
            values = [self.mapper.to_storage_value(mapping, v) for v in values]
        storage_sort = self.mapper.map_sort_to_storage(self.metadata, sort)
        records = await self._call(self.client.find_where_in(
            self.metadata, self.metadata.collection, name, list(values), storage_sort, skip, limit
        ), "find_where_in")
        return await self.hydrate_many(records)

    async def find_count_by(self, criteria: Union[Dict[str, Any], Query, None] = None) -> int:
        if isinstance(criteria, Query):
            return await self.find_count_by_query(criteria)
        storage_criteria = self.mapper.map_criteria_to_storage(self.metadata, criteria or {})
        return await self._call(self.client.find_count_by(
            self.metadata, self.metadata.collection, storage_criteria
        ), "find_count_by")

    async def find_by_query(self, query: Query) -> List[Any]:
        storage_query = self.mapper.map_query_to_storage(self.metadata, query)
        records = await self._call(self.client.find_by_query(
            self.metadata, self.metadata.collection, storage_query
        ), "find_by_query")
        return await self.hydrate_many(records)

    async def find_count_by_query(self, query: Query) -> int:
        storage_query = self.mapper.map_query_to_storage(self.metadata, query)
        return await self._call(self.client.find_count_by_query(
            self.metadata, self.metadata.collection, storage_query
        ), "find_count_by_query")

    async def update_by(self, criteria: Dict[str, Any], patch: Dict[str, Any]) -> int:
        """Patch every matching record and the matching cached documents"""
        storage_criteria = self.mapper.map_criteria_to_storage(self.metadata, criteria)
        storage_patch = self.mapper.map_patch_to_storage(self.metadata, patch)
        count = await self._call(self.client.update_by(
            self.metadata, self.metadata.collection, storage_criteria, storage_patch
        ), "update_by")
        self.cache.update_by_criteria(criteria, patch, self.metadata.name)
        return count

    async def remove_by(self, criteria: Dict[str, Any]) -> int:
        """Remove every matching record and evict matching cached documents"""
        storage_criteria = self.mapper.map_criteria_to_storage(self.metadata, criteria)
        count = await self._call(self.client.remove_by(
            self.metadata, self.metadata.collection, storage_criteria
        ), "remove_by")
        self.cache.remove_by_criteria(criteria, self.metadata.name)
        return count

    async def create_document(self, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.mapper.create_document(self.metadata, data)

    def create_query(self) -> Query:
        return Query()


# Export main components
__all__ = ['Repository']
