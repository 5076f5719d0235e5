"""
DocMapper Persistence Module

Storage adapters: the client/mapper/connection contract, id-reference
relations and the in-memory adapter. The SQLAlchemy adapter lives in
``docmapper.persistence.sql``.
"""

from .base import Adapter, AdapterMapper, Client, Connection
from .id_generator import IdGenerator
from .references import ReferenceAdapterMapper
from .memory import MemoryAdapterMapper, MemoryClient, MemoryConnection, memory_adapter

__all__ = [
    "Adapter",
    "AdapterMapper",
    "Client",
    "Connection",
    "IdGenerator",
    "ReferenceAdapterMapper",
    "MemoryAdapterMapper",
    "MemoryClient",
    "MemoryConnection",
    "memory_adapter",
]
