"""
Unit of Work Pattern - Change Coordination

💾 Ordered Write Batching:
The unit of work tracks documents registered for persistence or
removal and writes them to storage on flush. A flush runs three
phases strictly one after another (inserts, then updates, then
removals); the operations inside a phase run concurrently.

Key Features:
- Cascading persist over new related documents, safe on cyclic graphs
- Per-document lifecycle events around every write
- Relation fix-up updates for documents inserted together
- Partial failures reported in a FlushResult instead of raised
"""

import asyncio
import hashlib
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, TYPE_CHECKING

from ..exceptions import DocMapperError, FlushError, InvalidOperationError, StorageError
from .document import ProcessingState
from .events import EventContext, LifecycleEvent
from .metadata import Metadata, RelationKind

if TYPE_CHECKING:
    from ..persistence.base import Client, Connection
    from .cache import DocumentCache
    from .mapper import Mapper
    from .registry import MetadataRegistry

logger = logging.getLogger(__name__)


@dataclass
class OperationFailure:
    """A document write that failed during flush"""
    document: Any
    document_type: str
    operation: ProcessingState
    error: DocMapperError
    stored: bool = False


@dataclass
class FlushResult:
    """Outcome of one flush"""
    inserted: List[Any] = field(default_factory=list)
    updated: List[Any] = field(default_factory=list)
    removed: List[Any] = field(default_factory=list)
    failures: List[OperationFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def raise_for_errors(self) -> "FlushResult":
        """Raise FlushError if any operation failed"""
        if self.failures:
            raise FlushError(self.failures)
        return self


class UnitOfWork:
    """
    Tracks pending document changes for one manager.

    Usage:
        uow.persist(user)
        uow.schedule_removal(old_post)
        result = await uow.flush()
        result.raise_for_errors()
    """

    def __init__(
        self,
        registry: 'MetadataRegistry',
        mapper: 'Mapper',
        client: 'Client',
        document_cache: 'DocumentCache',
        connection: Optional['Connection'] = None
    ):
        self.registry = registry
        self.mapper = mapper
        self.client = client
        self.cache = document_cache
        self.connection = connection

        self._documents: Dict[str, Any] = {}
        self._removals: Set[str] = set()

    @property
    def dispatcher(self):
        return self.registry.event_dispatcher

    @staticmethod
    def generate_object_id() -> str:
        """Process-local id used to track a document"""
        seed = f"{time.time()}{random.random()}".encode()
        return hashlib.sha1(seed).hexdigest()

    @property
    def documents(self) -> List[Any]:
        return list(self._documents.values())

    def is_document_persisted(self, document: Any) -> bool:
        object_id = getattr(document, "_object_id", None)
        return object_id is not None and object_id in self._documents

    def is_scheduled_for_removal(self, document: Any) -> bool:
        return getattr(document, "_object_id", None) in self._removals

    # Registration

    def persist(self, document: Any) -> None:
        """Register a document, and its new related documents, for the next flush"""
        if document is None:
            return
        self._persist(document, set())

    def _persist(self, document: Any, visited: Set[str]) -> None:
        metadata = self.registry.get_metadata_for_document(document)
        if metadata.is_embedded:
            raise InvalidOperationError(
                f"Embedded document '{metadata.name}' cannot be persisted on its own"
            )

        if getattr(document, "_object_id", None) is None:
            document._object_id = self.generate_object_id()
        object_id = document._object_id
        if object_id in visited:
            return
        visited.add(object_id)

        self._documents[object_id] = document
        document._is_new = self._is_new_document(metadata, document)

        if document._is_new:
            for related in self._related_documents(metadata, document):
                related_metadata = self.registry.get_metadata_for_document(related)
                if self._is_new_document(related_metadata, related):
                    self._persist(related, visited)

    @staticmethod
    def _is_new_document(metadata: Metadata, document: Any) -> bool:
        if getattr(document, "_is_new", None) is True:
            return True
        return getattr(document, metadata.id_field, None) is None

    def _related_documents(self, metadata: Metadata, document: Any) -> Iterator[Any]:
        for mapping in metadata.relation_mappings():
            target = self.registry.get_metadata_by_name(mapping.document)
            value = getattr(document, mapping.field, None)
            values = (value or []) if mapping.kind == RelationKind.ONE_TO_MANY else [value]
            for item in values:
                if target.document_class is not None and isinstance(item, target.document_class):
                    yield item

    def schedule_insert(self, document: Any) -> None:
        if not self.is_document_persisted(document):
            self.persist(document)
        if not document._is_new:
            self.clear(document)
            raise InvalidOperationError("Existing document cannot be scheduled for insert")

    def schedule_update(self, document: Any) -> None:
        if not self.is_document_persisted(document):
            self.persist(document)
        if document._is_new:
            self.clear(document)
            raise InvalidOperationError("New document cannot be scheduled for update")

    def schedule_removal(self, document: Any) -> None:
        was_tracked = self.is_document_persisted(document)
        if not was_tracked:
            self.persist(document)
        if document._is_new:
            if not was_tracked:
                self.clear(document)
            raise InvalidOperationError("New document cannot be scheduled for removal")
        self._removals.add(document._object_id)

    def clear(self, document: Any = None) -> None:
        """Forget one document, or everything when no document is given"""
        if document is None:
            for tracked in self._documents.values():
                tracked._processing = ProcessingState.NONE
            self._documents.clear()
            self._removals.clear()
            return
        object_id = getattr(document, "_object_id", None)
        self._documents.pop(object_id, None)
        self._removals.discard(object_id)
        document._processing = ProcessingState.NONE

    # Flush

    async def flush(self, document: Any = None) -> FlushResult:
        """
        Write pending changes to storage.

        Args:
            document: Flush only this document instead of the whole working set

        Returns:
            FlushResult listing written documents and failed operations
        """
        if document is not None:
            object_id = getattr(document, "_object_id", None)
            if object_id is None or object_id not in self._documents:
                return FlushResult()
            pending = {object_id: self._documents.pop(object_id)}
        else:
            pending, self._documents = self._documents, {}

        inserts: List[Any] = []
        updates: List[Any] = []
        removals: List[Any] = []
        for object_id, pending_document in pending.items():
            if pending_document is None:
                continue
            if pending_document._processing != ProcessingState.NONE:
                logger.debug("Document %s is in flight; keeping it queued", object_id)
                self._documents[object_id] = pending_document
                continue
            if object_id in self._removals:
                pending_document._processing = ProcessingState.REMOVE
                removals.append(pending_document)
            elif pending_document._is_new:
                pending_document._processing = ProcessingState.INSERT
                inserts.append(pending_document)
            else:
                pending_document._processing = ProcessingState.UPDATE
                updates.append(pending_document)

        result = FlushResult()
        if not (inserts or updates or removals):
            return result

        logger.debug("Flushing %d insert(s), %d update(s), %d removal(s)",
                     len(inserts), len(updates), len(removals))

        inserting = {d._object_id for d in inserts}
        fixups = [d for d in inserts if self._references_any(d, inserting)]

        await self._run_phase(inserts, self._run_insert, result.inserted, result)

        inserted = {d._object_id for d in result.inserted}
        for fixup in fixups:
            if fixup._object_id in inserted and fixup._processing == ProcessingState.NONE:
                fixup._processing = ProcessingState.UPDATE
                updates.append(fixup)

        await self._run_phase(updates, self._run_update, result.updated, result)
        await self._run_phase(removals, self._run_removal, result.removed, result)

        if result.failures:
            logger.warning("Flush finished with %d failed operation(s)", len(result.failures))
        return result

    def _references_any(self, document: Any, object_ids: Set[str]) -> bool:
        metadata = self.registry.get_metadata_for_document(document)
        return any(
            getattr(related, "_object_id", None) in object_ids and related is not document
            for related in self._related_documents(metadata, document)
        )

    async def _run_phase(self, documents: List[Any], runner: Callable[[Any], Awaitable],
                         bucket: List[Any], result: FlushResult) -> None:
        if not documents:
            return
        outcomes = await asyncio.gather(*[runner(d) for d in documents])
        for document, failure in zip(documents, outcomes):
            if failure is None or failure.stored:
                bucket.append(document)
            if failure is not None:
                result.failures.append(failure)
                if not failure.stored:
                    self._documents[document._object_id] = document

    async def _fail(self, document: Any, metadata: Metadata, operation: ProcessingState,
                    event: LifecycleEvent, error: Exception) -> OperationFailure:
        if not isinstance(error, DocMapperError):
            error = StorageError(
                f"{operation.value} of '{metadata.name}' failed: {error}", original_error=error
            )
        logger.error("Failed to %s %s: %s", operation.value, metadata.name, error)

        try:
            await self.dispatcher.dispatch(event, EventContext(document, metadata, error=error))
        except DocMapperError as listener_error:
            logger.error("Listener for %s raised: %s", event.value, listener_error)

        return OperationFailure(document, metadata.name, operation, error)

    async def _notify(self, document: Any, metadata: Metadata, operation: ProcessingState,
                      event: LifecycleEvent, context: EventContext) -> Optional[OperationFailure]:
        """Dispatch a post-write event; the write itself already reached storage"""
        try:
            await self.dispatcher.dispatch(event, context)
        except DocMapperError as e:
            logger.error("Listener for %s raised after %s of %s: %s",
                         event.value, operation.value, metadata.name, e)
            return OperationFailure(document, metadata.name, operation, e, stored=True)
        return None

    async def _run_insert(self, document: Any) -> Optional[OperationFailure]:
        metadata = self.registry.get_metadata_for_document(document)
        try:
            await self.dispatcher.dispatch(LifecycleEvent.PRE_PERSIST, EventContext(document, metadata))

            id_mapping = metadata.get_id_field()
            if (self.connection is not None and self.connection.requests_id_generation
                    and getattr(document, id_mapping.property, None) is None):
                metadata.set_value(document, id_mapping.property,
                                   self.connection.generate_id_field_value())

            record = await self.mapper.dehydrate(metadata, document)
            stored = await self.client.insert(metadata, metadata.collection, record)

            raw_id = (stored or {}).get(id_mapping.name, record.get(id_mapping.name))
            if raw_id is not None:
                metadata.set_value(document, id_mapping.property,
                                   self.mapper.to_model_value(id_mapping, raw_id))
            document._is_new = False
            document._snapshot = self.mapper.snapshot(metadata, document)
            self.cache.add(document)
        except Exception as e:
            return await self._fail(document, metadata, ProcessingState.INSERT,
                                    LifecycleEvent.ERROR_INSERT, e)
        finally:
            document._processing = ProcessingState.NONE

        return await self._notify(document, metadata, ProcessingState.INSERT,
                                  LifecycleEvent.POST_PERSIST,
                                  EventContext(document, metadata, data=record))

    async def _run_update(self, document: Any) -> Optional[OperationFailure]:
        metadata = self.registry.get_metadata_for_document(document)
        try:
            changes = self.mapper.compute_changes(metadata, document)
            await self.dispatcher.dispatch(LifecycleEvent.PRE_PERSIST, EventContext(document, metadata))
            await self.dispatcher.dispatch(
                LifecycleEvent.PRE_UPDATE, EventContext(document, metadata, changes=changes)
            )

            record = self.mapper.reduce_for_storage(
                metadata, await self.mapper.dehydrate(metadata, document)
            )
            id_value = self.mapper.storage_id(metadata, document)
            await self.client.update(metadata, metadata.collection, id_value, record)

            document._snapshot = self.mapper.snapshot(metadata, document)
            self.cache.add(document)
        except Exception as e:
            return await self._fail(document, metadata, ProcessingState.UPDATE,
                                    LifecycleEvent.ERROR_UPDATE, e)
        finally:
            document._processing = ProcessingState.NONE

        return await self._notify(document, metadata, ProcessingState.UPDATE,
                                  LifecycleEvent.POST_PERSIST,
                                  EventContext(document, metadata, data=record, changes=changes))

    async def _run_removal(self, document: Any) -> Optional[OperationFailure]:
        metadata = self.registry.get_metadata_for_document(document)
        try:
            id_value = self.mapper.storage_id(metadata, document)
            await self.client.remove(metadata, metadata.collection, id_value)

            self.cache.remove(document)
            self._removals.discard(document._object_id)
        except Exception as e:
            return await self._fail(document, metadata, ProcessingState.REMOVE,
                                    LifecycleEvent.ERROR_REMOVAL, e)
        finally:
            document._processing = ProcessingState.NONE

        return await self._notify(document, metadata, ProcessingState.REMOVE,
                                  LifecycleEvent.POST_REMOVE, EventContext(document, metadata))


# Export main components
__all__ = ['UnitOfWork', 'FlushResult', 'OperationFailure']
