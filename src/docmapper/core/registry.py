"""
Metadata Registry - Document Type Lookup

This module keeps the metadata of every document type known to a
manager, resolves document inheritance and owns the event dispatcher
shared by the manager's mapper and unit of work.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import ConfigurationError, NotFoundError
from .document import document_type_of
from .events import EventDispatcher
from .metadata import Metadata

logger = logging.getLogger(__name__)


class MetadataRegistry:
    """Registry of document metadata keyed by name and by class identity tag"""

    def __init__(self, event_dispatcher: Optional[EventDispatcher] = None):
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self._metadata: Dict[str, Metadata] = {}
        self._by_tag: Dict[str, Metadata] = {}

    def register_metadata(self, metadata: Metadata) -> None:
        """
        Register metadata for a document class.

        Raises:
            ConfigurationError: If the class has no identity tag or the
                name is already registered for different metadata
        """
        document_class = metadata.document_class
        tag = document_type_of(document_class) if document_class is not None else None
        if not tag:
            raise ConfigurationError(
                f"Cannot register '{metadata.name}': its document class has no identity tag"
            )

        existing = self._metadata.get(metadata.name)
        if existing is not None and existing is not metadata:
            raise ConfigurationError(f"Document '{metadata.name}' is already registered")

        self._metadata[metadata.name] = metadata
        self._by_tag[tag] = metadata
        metadata.build_accessors()
        logger.debug("Registered metadata for %s (collection=%s)", metadata.name, metadata.collection)

    def has_metadata(self, name: str) -> bool:
        return name in self._metadata

    def get_metadata_by_name(self, name: str) -> Metadata:
        metadata = self._metadata.get(name)
        if metadata is None:
            raise NotFoundError("Document type", name)
        return metadata

    def get_metadata_for_document(self, document: Any) -> Metadata:
        """
        Resolve metadata for a document instance or class.

        The class hierarchy is walked so subclasses of a registered
        document (discriminated subtypes) resolve to their parent's
        metadata unless registered themselves.
        """
        document_class = document if isinstance(document, type) else type(document)
        for klass in document_class.__mro__:
            tag = document_type_of(klass)
            if tag and tag in self._by_tag:
                return self._by_tag[tag]
        raise NotFoundError("Document type", document_class.__name__)

    def handle_inheritance(self) -> None:
        """Merge every parent mapping into its children, parents first"""
        for metadata in list(self._metadata.values()):
            self._inherit(metadata, [])

    def _inherit(self, metadata: Metadata, stack: List[str]) -> None:
        if metadata.inherited:
            return
        if metadata.name in stack:
            chain = " -> ".join(stack + [metadata.name])
            raise ConfigurationError(f"Inheritance cycle detected: {chain}")

        for parent_name in metadata.inherits:
            if parent_name not in self._metadata:
                raise NotFoundError("Parent document type", parent_name)
            parent = self._metadata[parent_name]
            self._inherit(parent, stack + [metadata.name])
            metadata.merge(parent)

        metadata.inherited = True
        metadata.validate()
        metadata.build_accessors()

    def register_event_listener(self, event: str, listener: Any, method: Optional[str] = None,
                                priority: int = 0) -> None:
        self.event_dispatcher.add_listener(event, listener, method, priority)

    def register_document_event_listener(self, name: str, event: str, listener: Any,
                                         method: Optional[str] = None) -> None:
        self.event_dispatcher.add_document_listener(name, event, listener, method)

    @property
    def names(self) -> List[str]:
        return list(self._metadata)

    def __iter__(self) -> Iterator[Metadata]:
        return iter(list(self._metadata.values()))

    def __len__(self) -> int:
        return len(self._metadata)

    def __contains__(self, name: str) -> bool:
        return name in self._metadata


# Export main components
__all__ = ['MetadataRegistry']
