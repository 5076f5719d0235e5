"""
Document Cache - Identity Map

Keeps one instance per (document type, id) for the lifetime of a
manager, so repeated reads of the same record return the same object.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from .query import conditions_match
from .registry import MetadataRegistry

logger = logging.getLogger(__name__)

Criteria = Union[Dict[str, Any], Callable[[Any], bool]]


def _matches(document: Any, criteria: Criteria) -> bool:
    if callable(criteria):
        return bool(criteria(document))
    return conditions_match(lambda property: getattr(document, property, None), criteria)


class DocumentCache:
    """Per-manager identity map keyed by document type name and id"""

    def __init__(self, registry: MetadataRegistry):
        self.registry = registry
        self._documents: Dict[str, Dict[Any, Any]] = {}

    def _key(self, document: Any):
        metadata = self.registry.get_metadata_for_document(document)
        if metadata.id_field is None:
            return metadata.name, None
        return metadata.name, getattr(document, metadata.id_field, None)

    def add(self, document: Any) -> None:
        name, id_value = self._key(document)
        if id_value is None:
            logger.debug("Not caching %s without id", name)
            return
        self._documents.setdefault(name, {})[id_value] = document

    def get(self, type_name: str, id_value: Any) -> Optional[Any]:
        return self._documents.get(type_name, {}).get(id_value)

    def has(self, type_name: str, id_value: Any) -> bool:
        return id_value in self._documents.get(type_name, {})

    def remove(self, document: Any) -> None:
        name, id_value = self._key(document)
        self._documents.get(name, {}).pop(id_value, None)

    def remove_by_criteria(self, criteria: Criteria, type_name: Optional[str] = None) -> int:
        """
        Evict every cached document matching the criteria.

        Args:
            criteria: Property -> value equality map, or a predicate
            type_name: Restrict eviction to one document type

        Returns:
            Number of evicted documents
        """
        removed = 0
        names = [type_name] if type_name else list(self._documents)
        for name in names:
            documents = self._documents.get(name, {})
            for id_value in [i for i, d in documents.items() if _matches(d, criteria)]:
                del documents[id_value]
                removed += 1
        return removed

    def update_by_criteria(self, criteria: Criteria, patch: Dict[str, Any],
                           type_name: Optional[str] = None) -> int:
        """Apply a property patch to every cached document matching the criteria"""
        updated = 0
        names = [type_name] if type_name else list(self._documents)
        for name in names:
            for document in list(self._documents.get(name, {}).values()):
                if not _matches(document, criteria):
                    continue
                metadata = self.registry.get_metadata_for_document(document)
                for property, value in patch.items():
                    metadata.set_value(document, property, value)
                updated += 1
        return updated

    def documents(self, type_name: str) -> List[Any]:
        return list(self._documents.get(type_name, {}).values())

    def clear(self) -> None:
        self._documents.clear()

    def __len__(self) -> int:
        return sum(len(d) for d in self._documents.values())


# Export main components
__all__ = ['DocumentCache']
