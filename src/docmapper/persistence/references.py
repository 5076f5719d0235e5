"""
Reference Relations - Id-Based Relation Storage

Adapter mapper for storages that keep relations as references: a
one-to-one relation is stored as the related document's id, a
one-to-many relation as a list of ids. Related records are loaded
through the client's ``find`` and ``find_where_in`` operations.
"""

import asyncio
import logging
from typing import Any, Dict, List, Set

from ..core.metadata import EmbedMapping, Metadata, RelationKind, RelationMapping
from .base import AdapterMapper, Record

logger = logging.getLogger(__name__)


def _is_reference(value: Any) -> bool:
    """Scalar id, as opposed to inline data or a document instance"""
    return (value is not None and not isinstance(value, (dict, list, set))
            and getattr(type(value), "__document_type__", None) is None)


class ReferenceAdapterMapper(AdapterMapper):
    """Stores relations as ids and resolves them with the client"""

    @staticmethod
    def reference_column(mapping: RelationMapping) -> str:
        return mapping.column or mapping.field

    def _reference_for(self, mapper, target: Metadata, value: Any) -> Any:
        if target.document_class is not None and isinstance(value, target.document_class):
            return mapper.storage_id(target, value)
        return value

    async def relations_to_storage(self, mapper, metadata: Metadata, document: Any,
                                   record: Record) -> None:
        for mapping in metadata.relation_mappings():
            target = self.registry.get_metadata_by_name(mapping.document)
            value = getattr(document, mapping.field, None)
            column = self.reference_column(mapping)
            if mapping.kind == RelationKind.ONE_TO_ONE:
                record[column] = None if value is None else self._reference_for(mapper, target, value)
            else:
                references = [self._reference_for(mapper, target, item) for item in value or []]
                record[column] = [r for r in references if r is not None]

    async def _known(self, mapper, target: Metadata, reference: Any, scope) -> Any:
        id_mapping = target.get_id_field()
        known = scope.find(target.name, mapper.to_model_value(id_mapping, reference))
        if isinstance(known, asyncio.Future):
            known = await known
        return known

    async def _load(self, mapper, target: Metadata, references: List[Any], scope) -> Dict[Any, Any]:
        """Map each reference to a known document or a freshly fetched record"""
        loaded: Dict[Any, Any] = {}
        missing = []
        for reference in references:
            if reference in loaded or reference in missing:
                continue
            known = await self._known(mapper, target, reference, scope)
            if known is not None:
                loaded[reference] = known
            else:
                missing.append(reference)
        if missing:
            records = await self.client.find_where_in(
                target, target.collection, target.id_field_name, missing
            )
            for record in records:
                loaded[record.get(target.id_field_name)] = record
        return loaded

    async def resolve_relation(self, mapper, metadata: Metadata, mapping, data: Record,
                               document: Any, scope) -> Any:
        if isinstance(mapping, EmbedMapping):
            return data.get(mapping.field)

        target = self.registry.get_metadata_by_name(mapping.document)
        value = data.get(self.reference_column(mapping))
        if value is None:
            return None

        if mapping.kind == RelationKind.ONE_TO_ONE:
            if not _is_reference(value):
                return value
            known = await self._known(mapper, target, value, scope)
            if known is not None:
                return known
            return await self.client.find(target, target.collection, value)

        if not isinstance(value, list):
            return value
        inline = [v for v in value if not _is_reference(v)]
        if inline:
            return value
        loaded = await self._load(mapper, target, value, scope)
        return [loaded[reference] for reference in value if reference in loaded]

    async def merge_relations_into_batch(self, mapper, metadata: Metadata, documents: List[Any],
                                         records: List[Record], scope) -> Set[str]:
        """Fetch each relation once for the whole batch"""
        handled = set()
        for mapping in metadata.relation_mappings():
            column = self.reference_column(mapping)
            many = mapping.kind == RelationKind.ONE_TO_MANY
            references = []
            batchable = True
            for record in records:
                value = record.get(column)
                items = (value or []) if many else [value]
                if not isinstance(items, list) or not all(
                        v is None or _is_reference(v) for v in items):
                    batchable = False
                    break
                references.extend(v for v in items if v is not None)
            if not batchable:
                continue

            target = self.registry.get_metadata_by_name(mapping.document)
            loaded = await self._load(mapper, target, references, scope)
            fetched = [(ref, v) for ref, v in loaded.items() if isinstance(v, dict)]
            hydrated = await mapper.hydrate_many(target, [v for _, v in fetched], scope)
            for (reference, _), related in zip(fetched, hydrated):
                loaded[reference] = related

            for document, record in zip(documents, records):
                value = record.get(column)
                if many:
                    related = [loaded[r] for r in value or [] if r in loaded]
                    metadata.set_value(document, mapping.field, mapper.sort_related(mapping, related))
                elif value is not None and value in loaded:
                    metadata.set_value(document, mapping.field, loaded[value])
            handled.add(mapping.field)

        logger.debug("Batch-resolved relations %s for %d %s documents",
                     sorted(handled), len(documents), metadata.name)
        return handled


# Export main components
__all__ = ['ReferenceAdapterMapper']
