"""
Document Base - Persistable Domain Objects

📄 Document Model:
Documents are pydantic models that the engine tracks, maps and persists.
Engine bookkeeping (object id, new-ness, in-flight operation and the
post-hydration snapshot) lives in private attributes so it never leaks
into field data.

Key Features:
- Per-class identity tag used for metadata lookup
- Validation-free instantiation for hydration
- Sentinel for values that are absent rather than null
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, PrivateAttr


class _Undefined:
    """Marker for a value that is absent, as opposed to None"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNDEFINED"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


class ProcessingState(str, Enum):
    """Operation a document is currently taking part in"""
    NONE = "none"
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


class Document(BaseModel):
    """Base class for all persistable documents."""
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    __document_type__ = None

    _object_id: Optional[str] = PrivateAttr(default=None)
    _is_new: Optional[bool] = PrivateAttr(default=None)
    _processing: ProcessingState = PrivateAttr(default=ProcessingState.NONE)
    _snapshot: Dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        if "__document_type__" not in cls.__dict__:
            cls.__document_type__ = cls.__name__

    @property
    def object_id(self) -> Optional[str]:
        """Process-local id assigned by the unit of work"""
        return self._object_id

    @property
    def is_new(self) -> Optional[bool]:
        """True until the document has been inserted"""
        return self._is_new

    @property
    def processing(self) -> ProcessingState:
        return self._processing

    def mark_new(self) -> None:
        """Force the next flush to insert this document"""
        self._is_new = True


def document_type_of(document_class: type) -> Optional[str]:
    """Return the identity tag declared directly on a class, if any"""
    return document_class.__dict__.get("__document_type__")


def instantiate(document_class: type) -> Any:
    """Create an empty document instance without running validation"""
    if isinstance(document_class, type) and issubclass(document_class, BaseModel):
        return document_class.model_construct()
    return document_class()


# Export main components
__all__ = [
    'Document',
    'ProcessingState',
    'UNDEFINED',
    'document_type_of',
    'instantiate',
]
