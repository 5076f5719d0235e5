"""
Built-in Listeners - Timestamps, Versions and Discriminators

These listeners implement the bookkeeping declared in metadata
(``created_at_property``, ``updated_at_property``, ``version_property``
and ``discriminator``). ``register_default_listeners`` wires them into
a registry's dispatcher with the priorities the engine relies on.
"""

from datetime import datetime

from .document import instantiate
from .events import EventContext, LifecycleEvent
from .registry import MetadataRegistry

DISCRIMINATOR_PRIORITY = 99998
TIMESTAMP_PRIORITY = 2
VERSION_PRIORITY = 1


class CreatedAtListener:
    """Stamps new documents with their creation time"""

    def on_pre_persist(self, context: EventContext) -> None:
        property = context.metadata.created_at_property
        if property and getattr(context.document, "_is_new", None):
            context.metadata.set_value(context.document, property, datetime.now())


class UpdatedAtListener:
    """Stamps existing documents with their last update time"""

    def on_pre_update(self, context: EventContext) -> None:
        property = context.metadata.updated_at_property
        if property and not getattr(context.document, "_is_new", None):
            context.metadata.set_value(context.document, property, datetime.now())


class VersionListener:
    """Maintains an optimistic version counter"""

    def on_pre_persist(self, context: EventContext) -> None:
        property = context.metadata.version_property
        if property and getattr(context.document, "_is_new", None):
            context.metadata.set_value(context.document, property, 1)

    def on_pre_update(self, context: EventContext) -> None:
        property = context.metadata.version_property
        if not property:
            return
        current = getattr(context.document, property, None)
        if not isinstance(current, int) or isinstance(current, bool):
            current = 0
        context.metadata.set_value(context.document, property, current + 1)


class DiscriminatorListener:
    """Swaps the document for the subclass mapped to the stored discriminator value"""

    def _swap(self, context: EventContext) -> None:
        discriminator = context.metadata.discriminator
        if discriminator is None or not context.data:
            return
        value = context.data.get(discriminator.field)
        document_class = discriminator.mapping.get(value)
        if document_class is not None and type(context.document) is not document_class:
            context.document = instantiate(document_class)

    def on_pre_hydrate(self, context: EventContext) -> None:
        self._swap(context)

    def on_create_document(self, context: EventContext) -> None:
        self._swap(context)


def register_default_listeners(registry: MetadataRegistry) -> None:
    """Register the built-in listeners on a registry's dispatcher"""
    discriminator = DiscriminatorListener()
    version = VersionListener()

    registry.register_event_listener(LifecycleEvent.PRE_HYDRATE, discriminator,
                                     "on_pre_hydrate", DISCRIMINATOR_PRIORITY)
    registry.register_event_listener(LifecycleEvent.CREATE_DOCUMENT, discriminator,
                                     "on_create_document", DISCRIMINATOR_PRIORITY)
    registry.register_event_listener(LifecycleEvent.PRE_PERSIST, version,
                                     "on_pre_persist", VERSION_PRIORITY)
    registry.register_event_listener(LifecycleEvent.PRE_UPDATE, version,
                                     "on_pre_update", VERSION_PRIORITY)
    registry.register_event_listener(LifecycleEvent.PRE_PERSIST, CreatedAtListener(),
                                     "on_pre_persist", TIMESTAMP_PRIORITY)
    registry.register_event_listener(LifecycleEvent.PRE_UPDATE, UpdatedAtListener(),
                                     "on_pre_update", TIMESTAMP_PRIORITY)


# Export main components
__all__ = [
    'CreatedAtListener',
    'UpdatedAtListener',
    'VersionListener',
    'DiscriminatorListener',
    'register_default_listeners',
]
