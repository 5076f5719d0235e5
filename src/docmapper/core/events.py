"""
Event Dispatcher - Document Lifecycle Events

🎯 Lifecycle Hook Pipeline:
Every hydrate, create and persist operation passes through the
dispatcher. For a given event and document it runs, in order:

1. Global listeners registered for the event (highest priority first)
2. Document-type listeners named in the document's metadata
3. Instance-level hooks declared in the metadata's events table

Listeners receive a mutable ``EventContext`` and may replace the
document or metadata it carries. Handlers may be plain functions or
coroutine functions; they are awaited one after another.
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from ..exceptions import ConfigurationError, DocMapperError

if TYPE_CHECKING:
    from .metadata import Metadata

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    """Event names dispatched by the engine"""
    PRE_HYDRATE = "preHydrate"
    POST_HYDRATE = "postHydrate"
    CREATE_DOCUMENT = "createDocument"
    PRE_PERSIST = "prePersist"
    PRE_UPDATE = "preUpdate"
    POST_PERSIST = "postPersist"
    POST_REMOVE = "postRemove"
    ERROR_INSERT = "errorInsert"
    ERROR_UPDATE = "errorUpdate"
    ERROR_REMOVAL = "errorRemoval"


@dataclass
class EventContext:
    """State handed to every listener of one dispatch"""
    document: Any
    metadata: 'Metadata'
    data: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ListenerRegistration:
    handler: Callable[[EventContext], Any]
    priority: int = 0
    sequence: int = 0


def event_name(event: Any) -> str:
    """Normalize LifecycleEvent members and plain strings"""
    return str(getattr(event, "value", event))


def _resolve_handler(listener: Any, method: Optional[str]) -> Callable:
    if method is None:
        if not callable(listener):
            raise ConfigurationError(f"Listener {listener!r} is not callable")
        return listener
    handler = getattr(listener, method, None)
    if not callable(handler):
        raise ConfigurationError(f"Listener {listener!r} has no method '{method}'")
    return handler


class EventDispatcher:
    """
    Ordered lifecycle event pipeline.

    Unexpected exceptions raised by a handler are logged and the chain
    continues. A handler raising a DocMapperError stops the chain and
    the error propagates to the caller.
    """

    def __init__(self):
        self._listeners: Dict[str, List[ListenerRegistration]] = {}
        self._document_listeners: Dict[str, Dict[str, List[Callable]]] = {}
        self._sequence = 0

        self._metrics = {
            "events_dispatched": 0,
            "handlers_invoked": 0,
            "handler_failures": 0,
        }

    def add_listener(self, event: str, listener: Any, method: Optional[str] = None,
                     priority: int = 0) -> None:
        """
        Register a global listener for an event.

        Args:
            event: Event name
            listener: Callable, or object owning ``method``
            method: Method name on ``listener``
            priority: Higher priorities run first
        """
        handler = _resolve_handler(listener, method)
        self._sequence += 1
        registrations = self._listeners.setdefault(event_name(event), [])
        registrations.append(ListenerRegistration(handler, priority, self._sequence))
        registrations.sort(key=lambda r: (-r.priority, r.sequence))

    def add_document_listener(self, name: str, event: str, listener: Any,
                              method: Optional[str] = None) -> None:
        """Register a named listener that documents opt into via metadata"""
        handler = _resolve_handler(listener, method)
        events = self._document_listeners.setdefault(name, {})
        events.setdefault(event_name(event), []).append(handler)

    def remove_listener(self, event: str, listener: Callable) -> bool:
        registrations = self._listeners.get(event_name(event), [])
        for registration in registrations:
            if registration.handler == listener:
                registrations.remove(registration)
                return True
        return False

    def has_document_listener(self, name: str) -> bool:
        return name in self._document_listeners

    def has_listeners(self, event: str) -> bool:
        return bool(self._listeners.get(event_name(event)))

    def _collect(self, event: str, context: EventContext) -> List[Callable]:
        handlers = [r.handler for r in self._listeners.get(event, [])]

        metadata = context.metadata
        for name in metadata.listeners:
            if name not in self._document_listeners:
                raise ConfigurationError(
                    f"Document listener '{name}' used by '{metadata.name}' is not registered"
                )
            handlers.extend(self._document_listeners[name].get(event, []))

        for hook in metadata.events.get(event, []):
            handlers.append(self._hook_handler(hook.method))

        return handlers

    @staticmethod
    def _hook_handler(method: str) -> Callable:
        def call_hook(context: EventContext):
            hook = getattr(context.document, method, None)
            if not callable(hook):
                raise ConfigurationError(
                    f"Document '{type(context.document).__name__}' has no hook method '{method}'"
                )
            return hook(context)
        return call_hook

    async def dispatch(self, event: str, context: EventContext) -> EventContext:
        """Run every handler for the event and return the (possibly updated) context"""
        event = event_name(event)
        handlers = self._collect(event, context)
        self._metrics["events_dispatched"] += 1
        if not handlers:
            return context

        for handler in handlers:
            self._metrics["handlers_invoked"] += 1
            try:
                result = handler(context)
                if inspect.isawaitable(result):
                    await result
            except DocMapperError:
                raise
            except Exception:
                self._metrics["handler_failures"] += 1
                logger.exception(
                    "Listener %r failed for %s on %s",
                    handler, event, type(context.document).__name__
                )

        return context

    def get_metrics(self) -> Dict[str, int]:
        """Get dispatcher execution metrics"""
        return self._metrics.copy()

    def clear(self) -> None:
        self._listeners.clear()
        self._document_listeners.clear()


# Export main components
__all__ = [
    'LifecycleEvent',
    'EventContext',
    'ListenerRegistration',
    'event_name',
    'EventDispatcher',
]
