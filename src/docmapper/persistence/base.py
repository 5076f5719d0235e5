"""
Persistence Adapters - Base Classes

💾 Storage Contract:
This module provides the interfaces a storage adapter implements to
plug into the engine:

- ``Client``: asynchronous CRUD and query operations on raw records
- ``AdapterMapper``: value conversion and relation resolution hooks
- ``Connection``: connection options, schema boot and id generation
- ``Adapter``: the bundle of the three classes registered under a name
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union, TYPE_CHECKING

from ..exceptions import InvalidOperationError
from .id_generator import IdGenerator

if TYPE_CHECKING:
    from ..core.mapper import HydrationScope, Mapper
    from ..core.metadata import EmbedMapping, Metadata, RelationMapping
    from ..core.query import Query
    from ..core.registry import MetadataRegistry

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class Connection:
    """
    Storage connection settings.

    Options understood by every connection:
        id_strategy: Id format used to generate ids before insert
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        self.options: Dict[str, Any] = dict(options or {})
        self.connected = False
        fmt = self.options.get("id_strategy")
        self._id_generator = self.create_id_generator(fmt) if fmt else None

    def create_id_generator(self, fmt: str) -> IdGenerator:
        return IdGenerator(fmt)

    @property
    def requests_id_generation(self) -> bool:
        return self._id_generator is not None

    def generate_id_field_value(self) -> Optional[str]:
        """Generate an id with the configured strategy, None when not configured"""
        if self._id_generator is None:
            return None
        return self._id_generator.generate()

    async def connect(self) -> None:
        self.connected = True

    async def boot(self, registry: 'MetadataRegistry') -> None:
        """Prepare storage for the documents of a registry"""
        pass

    async def close(self) -> None:
        self.connected = False


class Client(ABC):
    """Asynchronous storage client operating on raw records"""

    supports_transactions = False
    supports_locking = False

    def __init__(self, connection: Connection):
        self.connection = connection

    @abstractmethod
    async def insert(self, metadata: 'Metadata', collection: str, record: Record) -> Record:
        """
        Insert a record.

        Returns:
            The stored record, including the id assigned by storage
        """
        pass

    @abstractmethod
    async def update(self, metadata: 'Metadata', collection: str, id_value: Any,
                     record: Record) -> Optional[Record]:
        pass

    @abstractmethod
    async def remove(self, metadata: 'Metadata', collection: str, id_value: Any) -> None:
        pass

    @abstractmethod
    async def find(self, metadata: 'Metadata', collection: str, id_value: Any) -> Optional[Record]:
        pass

    @abstractmethod
    async def find_by(self, metadata: 'Metadata', collection: str, criteria: Record,
                      sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Record]:
        pass

    @abstractmethod
    async def find_where_in(self, metadata: 'Metadata', collection: str, field: str,
                            values: List[Any], sort: Optional[Dict[str, Any]] = None,
                            skip: Optional[int] = None,
                            limit: Optional[int] = None) -> List[Record]:
        pass

    @abstractmethod
    async def find_count_by(self, metadata: 'Metadata', collection: str, criteria: Record) -> int:
        pass

    @abstractmethod
    async def find_by_query(self, metadata: 'Metadata', collection: str,
                            query: 'Query') -> List[Record]:
        pass

    @abstractmethod
    async def find_count_by_query(self, metadata: 'Metadata', collection: str,
                                  query: 'Query') -> int:
        pass

    @abstractmethod
    async def update_by(self, metadata: 'Metadata', collection: str, criteria: Record,
                        patch: Record) -> int:
        pass

    @abstractmethod
    async def remove_by(self, metadata: 'Metadata', collection: str, criteria: Record) -> int:
        pass

    # Optional capabilities

    async def create_lock(self, metadata: 'Metadata', collection: str, id_value: Any) -> Any:
        raise InvalidOperationError(f"{type(self).__name__} does not support locking")

    async def release_lock(self, lock: Any) -> None:
        raise InvalidOperationError(f"{type(self).__name__} does not support locking")

    async def start_transaction(self) -> Any:
        raise InvalidOperationError(f"{type(self).__name__} does not support transactions")

    async def commit_transaction(self, transaction: Any) -> None:
        raise InvalidOperationError(f"{type(self).__name__} does not support transactions")

    async def rollback_transaction(self, transaction: Any) -> None:
        raise InvalidOperationError(f"{type(self).__name__} does not support transactions")


class AdapterMapper:
    """
    Adapter hooks used by the Mapper.

    The defaults convert nothing, keep embedded documents inline and
    only resolve relations whose data is already inline.
    """

    def __init__(self, registry: 'MetadataRegistry', client: Optional[Client] = None):
        self.registry = registry
        self.client = client

    def to_model_value(self, field_type: str, value: Any) -> Any:
        return value

    def to_storage_value(self, field_type: str, value: Any) -> Any:
        return value

    def storage_name_for_path(self, metadata: 'Metadata', path: str) -> Optional[str]:
        """Translate a dotted property path, None when the head is unknown"""
        head, _, rest = path.partition(".")
        mapping = metadata.get_field_by_property(head)
        if mapping is not None:
            return f"{mapping.name}.{rest}" if rest else mapping.name
        if metadata.get_relation(head) or metadata.get_embed(head):
            return path
        return None

    async def resolve_relation(self, mapper: 'Mapper', metadata: 'Metadata',
                               mapping: Union['RelationMapping', 'EmbedMapping'],
                               data: Record, document: Any,
                               scope: 'HydrationScope') -> Any:
        """Return the raw related data (record, list of records, or documents)"""
        value = data.get(getattr(mapping, "column", None) or mapping.field)
        if isinstance(value, (dict, list)):
            return value
        return None

    async def hydrate_partial_relations(self, mapper: 'Mapper', metadata: 'Metadata',
                                        document: Any, data: Record) -> None:
        pass

    async def merge_relations_into_batch(self, mapper: 'Mapper', metadata: 'Metadata',
                                         documents: List[Any], records: List[Record],
                                         scope: 'HydrationScope') -> Set[str]:
        """Resolve relations for a whole batch, returning the handled field names"""
        return set()

    async def relations_to_storage(self, mapper: 'Mapper', metadata: 'Metadata',
                                   document: Any, record: Record) -> None:
        pass


@dataclass
class Adapter:
    """Named bundle of the classes that make up a storage adapter"""
    name: str
    client_class: type
    mapper_class: type = AdapterMapper
    connection_class: type = Connection

    def create_connection(self, options: Optional[Dict[str, Any]] = None) -> Connection:
        return self.connection_class(options)

    def create_client(self, connection: Connection) -> Client:
        return self.client_class(connection)

    def create_mapper(self, registry: 'MetadataRegistry', client: Client) -> AdapterMapper:
        return self.mapper_class(registry, client)


# Export main components
__all__ = [
    'Record',
    'Connection',
    'Client',
    'AdapterMapper',
    'Adapter',
]
