"""
DocMapper Core

Documents, metadata, events, mapping and change tracking.
"""

from .document import Document, ProcessingState, UNDEFINED, instantiate
from .metadata import (
    Metadata, FieldMapping, RelationMapping, EmbedMapping, IndexDefinition,
    EventHook, Discriminator, FieldType, IdStrategy, RelationKind, EmbedKind,
)
from .events import EventDispatcher, EventContext, LifecycleEvent
from .registry import MetadataRegistry
from .listeners import (
    CreatedAtListener, UpdatedAtListener, VersionListener, DiscriminatorListener,
    register_default_listeners,
)
from .cache import DocumentCache
from .query import Query, QueryOperator, SortDirection
from .mapper import Mapper, HydrationScope
from .unit_of_work import UnitOfWork, FlushResult, OperationFailure

__all__ = [
    "Document", "ProcessingState", "UNDEFINED", "instantiate",
    "Metadata", "FieldMapping", "RelationMapping", "EmbedMapping", "IndexDefinition",
    "EventHook", "Discriminator", "FieldType", "IdStrategy", "RelationKind", "EmbedKind",
    "EventDispatcher", "EventContext", "LifecycleEvent",
    "MetadataRegistry",
    "CreatedAtListener", "UpdatedAtListener", "VersionListener", "DiscriminatorListener",
    "register_default_listeners",
    "DocumentCache",
    "Query", "QueryOperator", "SortDirection",
    "Mapper", "HydrationScope",
    "UnitOfWork", "FlushResult", "OperationFailure",
]
