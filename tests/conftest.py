"""Shared pytest fixtures and test utilities for docmapper tests."""

from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from docmapper import Adapter, DocMapper, Metadata, MetadataRegistry
from docmapper.core.mapper import Mapper
from docmapper.core.listeners import register_default_listeners
from docmapper.persistence.memory import MemoryAdapterMapper, MemoryClient, MemoryConnection

from sample_documents import build_metadata


class RecordingClient(MemoryClient):
    """Memory client that records storage calls and can be told to fail them"""

    def __init__(self, connection: MemoryConnection):
        super().__init__(connection)
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: Set[Tuple[str, str]] = set()

    def _record(self, operation: str, collection: str) -> None:
        self.calls.append((operation, collection))
        if (operation, collection) in self.fail_on:
            raise RuntimeError(f"{operation} on {collection} refused")

    async def insert(self, metadata, collection, record):
        self._record("insert", collection)
        return await super().insert(metadata, collection, record)

    async def update(self, metadata, collection, id_value, record):
        self._record("update", collection)
        return await super().update(metadata, collection, id_value, record)

    async def remove(self, metadata, collection, id_value):
        self._record("remove", collection)
        return await super().remove(metadata, collection, id_value)

    async def find(self, metadata, collection, id_value):
        self._record("find", collection)
        return await super().find(metadata, collection, id_value)

    async def find_by(self, metadata, collection, criteria, sort=None, skip=None, limit=None):
        self._record("find_by", collection)
        return await super().find_by(metadata, collection, criteria, sort, skip, limit)

    async def find_where_in(self, metadata, collection, field, values, sort=None, skip=None,
                            limit=None):
        self._record("find_where_in", collection)
        return await super().find_where_in(metadata, collection, field, values, sort, skip, limit)



recording_adapter = Adapter(
    name="recording",
    client_class=RecordingClient,
    mapper_class=MemoryAdapterMapper,
    connection_class=MemoryConnection,
)


def memory_config(adapter: str = "memory", options: Optional[Dict[str, Any]] = None,
                  **manager_options) -> Dict[str, Any]:
    """Bootstrap config with one connection and one default manager"""
    return {
        "environment": "testing",
        "adapters": {"recording": recording_adapter},
        "connections": {"default": {"adapter": adapter, "options": options or {}}},
        "managers": {
            "default": {
                "adapter": adapter,
                "connection": "default",
                "documents": build_metadata(),
                **manager_options,
            }
        },
    }


@pytest_asyncio.fixture
async def docmapper():
    """Initialized DocMapper backed by the memory adapter"""
    docmapper = DocMapper(memory_config())
    await docmapper.init()
    yield docmapper
    await docmapper.shutdown()


@pytest_asyncio.fixture
async def recording_docmapper():
    """Initialized DocMapper whose client records every write"""
    docmapper = DocMapper(memory_config("recording"))
    await docmapper.init()
    yield docmapper
    await docmapper.shutdown()


@pytest.fixture
def manager(docmapper):
    return docmapper.create_session().get_manager()


@pytest.fixture
def recording_manager(recording_docmapper):
    return recording_docmapper.create_session().get_manager()


@pytest.fixture
def registry() -> MetadataRegistry:
    """Registry with the sample documents, inheritance resolved and default listeners"""
    registry = MetadataRegistry()
    for metadata in build_metadata():
        registry.register_metadata(metadata)
    registry.handle_inheritance()
    register_default_listeners(registry)
    return registry


@pytest.fixture
def mapper(registry) -> Mapper:
    client = MemoryClient(MemoryConnection())
    return Mapper(registry, MemoryAdapterMapper(registry, client))


@pytest.fixture
def user_meta(registry) -> Metadata:
    return registry.get_metadata_by_name("User")
