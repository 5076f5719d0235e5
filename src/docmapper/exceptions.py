"""
DocMapper Exceptions - Error Taxonomy

This module defines the exception hierarchy shared by every layer of the
persistence engine. Callers can catch ``DocMapperError`` to handle any
engine failure, or one of the specific subclasses below.
"""

from typing import Any, List, Optional


class DocMapperError(Exception):
    """Base exception for all docmapper errors"""
    pass


class NotFoundError(DocMapperError):
    """Raised when a document type, manager, adapter or connection is not registered"""

    def __init__(self, resource_type: str, name: Any):
        self.resource_type = resource_type
        self.name = name
        super().__init__(f"{resource_type} '{name}' not found")


class InvalidOperationError(DocMapperError):
    """Raised when an operation is not valid for the document's current state"""
    pass


class ConversionError(DocMapperError):
    """Raised when a value cannot be converted between model and storage form"""

    def __init__(self, message: str, field: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        self.field = field
        self.original_error = original_error
        super().__init__(message)


class StorageError(DocMapperError):
    """Raised when the storage client reports a failure"""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        self.original_error = original_error
        super().__init__(message)


class FlushError(StorageError):
    """Raised by FlushResult.raise_for_errors when a flush had failed operations"""

    def __init__(self, failures: List[Any]):
        self.failures = failures
        summary = ", ".join(
            f"{getattr(f.operation, 'value', f.operation)} {f.document_type}: {f.error}" for f in failures
        )
        super().__init__(f"{len(failures)} operation(s) failed during flush: {summary}")


class ConfigurationError(DocMapperError):
    """Raised for invalid metadata, listener or bootstrap configuration"""
    pass


# Export main components
__all__ = [
    'DocMapperError',
    'NotFoundError',
    'InvalidOperationError',
    'ConversionError',
    'StorageError',
    'FlushError',
    'ConfigurationError',
]
