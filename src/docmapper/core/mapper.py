"""
Document Mapper - Hydration and Dehydration

🔁 Record <-> Document Translation:
The mapper turns raw storage records into document instances and back.
It owns name translation between properties and storage fields, type
conversion through the adapter, recursive relation and embed mapping,
and the lifecycle events around hydration.

Key Features:
- Hydration scope that reuses instances per (type, id), which also
  terminates cyclic relation graphs
- Two-phase batch hydration so adapters can fetch relations for a
  whole result set at once
- Snapshot-based change detection
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from ..exceptions import ConversionError, DocMapperError, InvalidOperationError
from .document import UNDEFINED, instantiate
from .events import EventContext, LifecycleEvent
from .metadata import (
    EmbedKind, EmbedMapping, FieldMapping, FieldType, IdStrategy, Metadata,
    RelationKind, RelationMapping,
)
from .query import Query, QueryOperator, SortDirection
from .registry import MetadataRegistry

logger = logging.getLogger(__name__)

_LIST_OPERATORS = {QueryOperator.IN.value, QueryOperator.NOT_IN.value, QueryOperator.ALL.value}
_RAW_OPERATORS = {QueryOperator.REGEX.value, QueryOperator.SIZE.value}


class HydrationScope:
    """
    Instances hydrated during one hydrate call, keyed by (type name, id).

    An optional lookup (usually the manager's document cache) is
    consulted for documents hydrated by earlier calls.
    """

    def __init__(self, lookup: Optional[Callable[[str, Any], Any]] = None):
        self._lookup = lookup
        self._entries: Dict[Tuple[str, Any], asyncio.Future] = {}

    def find(self, name: str, id_value: Any) -> Any:
        """Return a pending future, a known document, or None"""
        if id_value is None:
            return None
        future = self._entries.get((name, id_value))
        if future is not None:
            return future
        if self._lookup is not None:
            return self._lookup(name, id_value)
        return None

    def contains(self, name: str, id_value: Any) -> bool:
        return self.find(name, id_value) is not None

    def documents(self) -> List[Any]:
        """Documents hydrated within this scope"""
        return [future.result() for future in self._entries.values()
                if future.done() and not future.cancelled() and future.exception() is None]

    def reserve(self, name: str, id_value: Any) -> Optional[asyncio.Future]:
        if id_value is None:
            return None
        future = asyncio.get_running_loop().create_future()
        self._entries[(name, id_value)] = future
        return future


def _coerce_number(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


class Mapper:
    """Maps between storage records and documents for one manager"""

    def __init__(self, registry: MetadataRegistry, adapter_mapper):
        self.registry = registry
        self.adapter = adapter_mapper

    @property
    def dispatcher(self):
        return self.registry.event_dispatcher

    # Name translation

    def collection_name_for_document(self, name: str) -> Optional[str]:
        if not self.registry.has_metadata(name):
            return None
        return self.registry.get_metadata_by_name(name).collection

    def document_name_for_collection(self, collection: str) -> Optional[str]:
        for metadata in self.registry:
            if metadata.collection == collection:
                return metadata.name
        return None

    def storage_name_for_property(self, metadata: Metadata, property: str) -> Optional[str]:
        if "." in property:
            return self.adapter.storage_name_for_path(metadata, property)
        name = metadata.storage_name_for_property(property)
        if name is not None:
            return name
        relation = metadata.get_relation(property)
        if relation is not None:
            return relation.column or relation.field
        return None

    def _convert_operand(self, mapping: Optional[FieldMapping], operator: str, operand: Any) -> Any:
        if mapping is None or operator in _RAW_OPERATORS:
            return operand
        if operator in _LIST_OPERATORS and isinstance(operand, (list, tuple, set)):
            return [self.to_storage_value(mapping, item) for item in operand]
        return self.to_storage_value(mapping, operand)

    def map_criteria_to_storage(self, metadata: Metadata, criteria: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate property criteria into storage field criteria.

        Raises:
            InvalidOperationError: If a criteria key is not a known field
        """
        mapped = {}
        for property, value in criteria.items():
            name = self.storage_name_for_property(metadata, property)
            if name is None:
                raise InvalidOperationError(f"Invalid field '{property}' for '{metadata.name}'")
            mapping = metadata.get_field_by_property(property)
            if isinstance(value, dict):
                mapped[name] = {op: self._convert_operand(mapping, op, operand)
                                for op, operand in value.items()}
            elif mapping is not None:
                mapped[name] = self.to_storage_value(mapping, value)
            else:
                mapped[name] = value
        return mapped

    def map_patch_to_storage(self, metadata: Metadata, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate a property patch into storage field values.

        Values are converted whole; a dict is a value, never an operator map.

        Raises:
            InvalidOperationError: If a patch key is not a known field
        """
        mapped = {}
        for property, value in patch.items():
            name = self.storage_name_for_property(metadata, property)
            if name is None:
                raise InvalidOperationError(f"Invalid field '{property}' for '{metadata.name}'")
            mapping = metadata.get_field_by_property(property)
            mapped[name] = self.to_storage_value(mapping, value) if mapping is not None else value
        return mapped

    def map_sort_to_storage(self, metadata: Metadata,
                            sort: Optional[Dict[str, Any]]) -> Dict[str, SortDirection]:
        mapped = {}
        for property, direction in (sort or {}).items():
            name = self.storage_name_for_property(metadata, property)
            if name is None:
                raise InvalidOperationError(
                    f"Invalid sort field '{property}' for '{metadata.name}'"
                )
            mapped[name] = SortDirection.parse(direction)
        return mapped

    def map_query_to_storage(self, metadata: Metadata, query: Query) -> Query:
        """Return a copy of the query addressed in storage field names"""
        mapped = Query(self.map_criteria_to_storage(metadata, query.get_conditions()))
        mapped.sort(self.map_sort_to_storage(metadata, query.get_sort()))
        mapped.skip(query.get_skip()).limit(query.get_limit())
        mapped.count_found_rows(query.get_count_found_rows())
        return mapped

    # Value conversion

    def to_model_value(self, mapping: FieldMapping, raw: Any) -> Any:
        try:
            value = self.adapter.to_model_value(mapping.type, raw)
            if value is None or value is UNDEFINED:
                return value
            if mapping.type == FieldType.NUMBER:
                return _coerce_number(value)
            if mapping.type == FieldType.BOOLEAN:
                return _coerce_boolean(value)
            return value
        except DocMapperError:
            raise
        except Exception as e:
            raise ConversionError(
                f"Cannot convert stored value of '{mapping.property}': {e}",
                field=mapping.property, original_error=e
            ) from e

    def to_storage_value(self, mapping: FieldMapping, value: Any) -> Any:
        try:
            return self.adapter.to_storage_value(mapping.type, value)
        except DocMapperError:
            raise
        except Exception as e:
            raise ConversionError(
                f"Cannot convert '{mapping.property}' for storage: {e}",
                field=mapping.property, original_error=e
            ) from e

    def record_id(self, metadata: Metadata, record: Dict[str, Any]) -> Any:
        """Model id value of a raw record, None when absent"""
        mapping = metadata.get_id_field()
        if mapping is None:
            return None
        raw = record.get(mapping.name)
        if raw is None:
            return None
        return self.to_model_value(mapping, raw)

    def storage_id(self, metadata: Metadata, document: Any) -> Any:
        mapping = metadata.get_id_field()
        if mapping is None:
            return None
        return self.to_storage_value(mapping, getattr(document, mapping.property, None))

    # Creation

    async def create_document(self, metadata: Metadata, data: Optional[Dict[str, Any]] = None) -> Any:
        """Create a new document populated from property data and field defaults"""
        data = data or {}
        context = EventContext(instantiate(metadata.document_class), metadata, data=data)
        context = await self.dispatcher.dispatch(LifecycleEvent.CREATE_DOCUMENT, context)
        document, metadata = context.document, context.metadata

        for mapping in metadata.fields:
            value = data[mapping.property] if mapping.property in data else mapping.default_value()
            metadata.set_value(document, mapping.property, value)
        for mapping in metadata.relation_mappings() + metadata.embed_mappings():
            if mapping.field in data:
                metadata.set_value(document, mapping.field, data[mapping.field])

        document._is_new = True
        return document

    # Hydration

    async def hydrate(self, metadata: Metadata, data: Dict[str, Any],
                      scope: Optional[HydrationScope] = None) -> Any:
        """
        Build a document from a raw storage record.

        Args:
            metadata: Metadata of the expected document type
            data: Raw record in storage field names
            scope: Scope shared with other hydrations, created when omitted

        Returns:
            The hydrated document, or the instance already known to the scope
        """
        scope = scope if scope is not None else HydrationScope()
        document, _ = await self._hydrate(metadata, data, scope, batch=False)
        return document

    async def hydrate_many(self, metadata: Metadata, records: List[Dict[str, Any]],
                           scope: Optional[HydrationScope] = None) -> List[Any]:
        """
        Hydrate a batch of records of one type.

        Scalar fields of every record are populated first. The adapter
        then gets one chance to resolve relations for the whole batch;
        whatever it leaves unresolved is resolved per document.
        """
        scope = scope if scope is not None else HydrationScope()
        results = await asyncio.gather(
            *[self._hydrate(metadata, record, scope, batch=True) for record in records]
        )

        # Listeners may have swapped the metadata of some records; batch per resolved type
        groups: Dict[int, Tuple[Metadata, List[Tuple[Any, Dict[str, Any]]]]] = {}
        for (document, resolved), record in zip(results, records):
            if resolved is not None:
                groups.setdefault(id(resolved), (resolved, []))[1].append((document, record))

        for resolved, fresh in groups.values():
            handled = set(await self._guard(self.adapter.merge_relations_into_batch(
                self, resolved, [d for d, _ in fresh], [r for _, r in fresh], scope
            )) or ())
            await asyncio.gather(
                *[self._hydrate_relations(resolved, d, r, scope, handled) for d, r in fresh]
            )
            await asyncio.gather(*[self._finish_hydration(resolved, d, r) for d, r in fresh])

        return [document for document, _ in results]

    async def hydrate_related(self, target: Metadata, raw: Any, scope: HydrationScope,
                              many: bool) -> Any:
        """Hydrate related data, keeping units that already are documents of the target type"""
        if many:
            items = raw if isinstance(raw, list) else [raw]
            return list(await asyncio.gather(*[self._hydrate_unit(target, i, scope) for i in items]))
        return await self._hydrate_unit(target, raw, scope)

    async def _hydrate_unit(self, target: Metadata, item: Any, scope: HydrationScope) -> Any:
        if target.document_class is not None and isinstance(item, target.document_class):
            return item
        document, _ = await self._hydrate(target, item, scope, batch=False)
        return document

    async def _hydrate(self, metadata: Metadata, data: Dict[str, Any], scope: HydrationScope,
                       batch: bool) -> Tuple[Any, Optional[Metadata]]:
        """
        Hydrate one record within a scope.

        Returns:
            The document plus the metadata it was hydrated with, or None
            in place of the metadata when the scope already knew it
        """
        id_value = self.record_id(metadata, data)
        known = scope.find(metadata.name, id_value)
        if known is not None:
            if isinstance(known, asyncio.Future):
                known = await known
            return known, None

        future = scope.reserve(metadata.name, id_value)
        try:
            context = EventContext(instantiate(metadata.document_class), metadata, data=data)
            context = await self.dispatcher.dispatch(LifecycleEvent.PRE_HYDRATE, context)
            document, metadata = context.document, context.metadata

            self._hydrate_fields(metadata, document, data)
            document._is_new = False
            if future is not None:
                future.set_result(document)

            if batch:
                await self._guard(self.adapter.hydrate_partial_relations(self, metadata, document, data))
            else:
                await self._hydrate_relations(metadata, document, data, scope, set())
                await self._finish_hydration(metadata, document, data)
            return document, metadata
        except Exception as e:
            if future is not None and not future.done():
                future.set_exception(e)
                future.exception()
            raise

    def _hydrate_fields(self, metadata: Metadata, document: Any, data: Dict[str, Any]) -> None:
        for mapping in metadata.fields:
            value = UNDEFINED
            if mapping.name in data:
                value = self.to_model_value(mapping, data[mapping.name])
            if value is UNDEFINED:
                value = mapping.default_value()
            metadata.set_value(document, mapping.property, value)

    async def _hydrate_relations(self, metadata: Metadata, document: Any, data: Dict[str, Any],
                                 scope: HydrationScope, skip: Set[str]) -> None:
        branches = []
        for mapping in metadata.relation_mappings():
            if mapping.field not in skip:
                branches.append(self._hydrate_relation(
                    metadata, mapping, document, data, scope, mapping.kind == RelationKind.ONE_TO_MANY
                ))
        for mapping in metadata.embed_mappings():
            if mapping.field not in skip:
                branches.append(self._hydrate_relation(
                    metadata, mapping, document, data, scope, mapping.kind == EmbedKind.MANY
                ))
        if branches:
            await asyncio.gather(*branches)

    async def _hydrate_relation(self, metadata: Metadata,
                                mapping: Union[RelationMapping, EmbedMapping], document: Any,
                                data: Dict[str, Any], scope: HydrationScope, many: bool) -> None:
        raw = await self._guard(self.adapter.resolve_relation(self, metadata, mapping, data, document, scope))
        if raw is None:
            return
        target = self.registry.get_metadata_by_name(mapping.document)
        value = await self.hydrate_related(target, raw, scope, many)
        if many and isinstance(mapping, RelationMapping):
            value = self.sort_related(mapping, value)
        metadata.set_value(document, mapping.field, value)

    @staticmethod
    def sort_related(mapping: RelationMapping, documents: List[Any]) -> List[Any]:
        """Order one-to-many related documents by the relation's sort property"""
        if not mapping.sort:
            return documents
        reverse = SortDirection.parse(mapping.direction) == SortDirection.DESC
        present = [d for d in documents if getattr(d, mapping.sort, None) is not None]
        missing = [d for d in documents if getattr(d, mapping.sort, None) is None]
        return sorted(present, key=lambda d: getattr(d, mapping.sort), reverse=reverse) + missing

    async def _finish_hydration(self, metadata: Metadata, document: Any, data: Dict[str, Any]) -> None:
        context = EventContext(document, metadata, data=data)
        await self.dispatcher.dispatch(LifecycleEvent.POST_HYDRATE, context)
        document._snapshot = self.snapshot(metadata, document)

    async def _guard(self, awaitable: Awaitable) -> Any:
        try:
            return await awaitable
        except DocMapperError:
            raise
        except Exception as e:
            raise ConversionError(f"Adapter failed during mapping: {e}", original_error=e) from e

    # Dehydration

    async def dehydrate(self, metadata: Metadata, document: Any) -> Dict[str, Any]:
        """Build a storage record from a document"""
        record: Dict[str, Any] = {}
        id_mapping = metadata.get_id_field()
        if id_mapping is not None:
            id_value = getattr(document, id_mapping.property, None)
            if metadata.id_strategy == IdStrategy.MANUAL or id_value is not None:
                record[id_mapping.name] = self.to_storage_value(id_mapping, id_value)

        for mapping in metadata.fields:
            if mapping is id_mapping or not metadata.owns_field(mapping):
                continue
            value = getattr(document, mapping.property, UNDEFINED)
            if value is UNDEFINED:
                continue
            record[mapping.name] = self.to_storage_value(mapping, value)

        await self._guard(self.adapter.relations_to_storage(self, metadata, document, record))

        for mapping in metadata.embed_mappings():
            value = getattr(document, mapping.field, None)
            if value is None:
                record[mapping.field] = None
                continue
            target = self.registry.get_metadata_by_name(mapping.document)
            if mapping.kind == EmbedKind.MANY:
                record[mapping.field] = [await self.dehydrate(target, item) for item in value]
            else:
                record[mapping.field] = await self.dehydrate(target, value)

        return record

    def reduce_for_storage(self, metadata: Metadata, record: Dict[str, Any]) -> Dict[str, Any]:
        """Strip undefined values and read-only fields from a record"""
        read_only = set(metadata.read_only_names())
        return {name: value for name, value in record.items()
                if value is not UNDEFINED and name not in read_only}

    # Change tracking

    def snapshot(self, metadata: Metadata, document: Any) -> Dict[str, Any]:
        return {
            mapping.property: copy.deepcopy(getattr(document, mapping.property, UNDEFINED))
            for mapping in metadata.fields
        }

    def compute_changes(self, metadata: Metadata, document: Any) -> Dict[str, Dict[str, Any]]:
        """Field changes since the last snapshot"""
        before = getattr(document, "_snapshot", None) or {}
        changes = {}
        for mapping in metadata.fields:
            old = before.get(mapping.property, UNDEFINED)
            new = getattr(document, mapping.property, UNDEFINED)
            if old != new:
                changes[mapping.property] = {"old": old, "new": new}
        return changes


# Export main components
__all__ = ['Mapper', 'HydrationScope']
