"""
DocMapper - Asynchronous Document Persistence Engine

Maps pydantic documents onto storage records and coordinates their
persistence: metadata registry, lifecycle events, identity map,
hydration and a unit of work that flushes inserts, updates and
removals in order.
"""

from .exceptions import (
    DocMapperError, NotFoundError, InvalidOperationError, ConversionError,
    StorageError, FlushError, ConfigurationError,
)
from .config import (
    DocMapperConfig, ConnectionConfig, ManagerConfig, ListenerConfig, LoggingConfig,
    Environment, configure_logging,
)
from .core import (
    Document, Metadata, FieldMapping, RelationMapping, EmbedMapping, Discriminator,
    FieldType, IdStrategy, RelationKind, EmbedKind,
    EventDispatcher, EventContext, LifecycleEvent,
    MetadataRegistry, register_default_listeners,
    DocumentCache, Query, QueryOperator, SortDirection,
    Mapper, HydrationScope, UnitOfWork, FlushResult, OperationFailure,
)
from .persistence import Adapter, AdapterMapper, Client, Connection, memory_adapter
from .app import DocMapper, Manager, Repository, Session, ManagerDefinition

__version__ = "0.1.0"

__all__ = [
    # Errors
    'DocMapperError',
    'NotFoundError',
    'InvalidOperationError',
    'ConversionError',
    'StorageError',
    'FlushError',
    'ConfigurationError',

    # Configuration
    'DocMapperConfig',
    'ConnectionConfig',
    'ManagerConfig',
    'ListenerConfig',
    'LoggingConfig',
    'Environment',
    'configure_logging',

    # Documents and metadata
    'Document',
    'Metadata',
    'FieldMapping',
    'RelationMapping',
    'EmbedMapping',
    'Discriminator',
    'FieldType',
    'IdStrategy',
    'RelationKind',
    'EmbedKind',

    # Engine
    'EventDispatcher',
    'EventContext',
    'LifecycleEvent',
    'MetadataRegistry',
    'register_default_listeners',
    'DocumentCache',
    'Query',
    'QueryOperator',
    'SortDirection',
    'Mapper',
    'HydrationScope',
    'UnitOfWork',
    'FlushResult',
    'OperationFailure',

    # Storage
    'Adapter',
    'AdapterMapper',
    'Client',
    'Connection',
    'memory_adapter',

    # Application
    'DocMapper',
    'Manager',
    'Repository',
    'Session',
    'ManagerDefinition',
]
