"""
Event Dispatcher Tests

🎯 Lifecycle Hook Pipeline:
Listener ordering, priorities, document listeners, instance hooks and
failure handling.
"""

import logging
from typing import Any, List, Optional

import pytest
from pydantic import Field

from docmapper import (
    ConfigurationError, Document, EventContext, EventDispatcher, FieldMapping,
    InvalidOperationError, LifecycleEvent, Metadata,
)


class Note(Document):
    id: Optional[Any] = None
    calls: List[str] = Field(default_factory=list)

    def on_pre_persist(self, context):
        self.calls.append("hook")


def note_metadata() -> Metadata:
    metadata = Metadata(name="Note", document_class=Note, id_field="id")
    metadata.add_field(FieldMapping("id"))
    return metadata


class Recorder:
    def __init__(self, calls: List[str], label: str):
        self.calls = calls
        self.label = label

    def handle(self, context: EventContext):
        self.calls.append(self.label)


class TestEventDispatcher:
    """Dispatch order and error semantics"""

    @pytest.mark.asyncio
    async def test_priority_then_registration_order(self):
        calls = []
        dispatcher = EventDispatcher()
        dispatcher.add_listener("prePersist", Recorder(calls, "first"), "handle")
        dispatcher.add_listener("prePersist", Recorder(calls, "urgent"), "handle", priority=10)
        dispatcher.add_listener("prePersist", Recorder(calls, "second"), "handle")

        await dispatcher.dispatch("prePersist", EventContext(Note(), note_metadata()))

        assert calls == ["urgent", "first", "second"]

    @pytest.mark.asyncio
    async def test_global_then_document_then_hook(self):
        document = Note()
        metadata = note_metadata()
        metadata.listeners.append("audit")
        metadata.add_event(LifecycleEvent.PRE_PERSIST, "on_pre_persist")

        dispatcher = EventDispatcher()
        dispatcher.add_document_listener(
            "audit", "prePersist", lambda context: context.document.calls.append("document")
        )
        dispatcher.add_listener(
            LifecycleEvent.PRE_PERSIST, lambda context: context.document.calls.append("global")
        )

        await dispatcher.dispatch(LifecycleEvent.PRE_PERSIST, EventContext(document, metadata))

        assert document.calls == ["global", "document", "hook"]

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self):
        calls = []

        async def handler(context):
            calls.append(context.metadata.name)

        dispatcher = EventDispatcher()
        dispatcher.add_listener("postPersist", handler)
        await dispatcher.dispatch("postPersist", EventContext(Note(), note_metadata()))

        assert calls == ["Note"]

    @pytest.mark.asyncio
    async def test_listener_can_replace_document(self):
        replacement = Note(id="replaced")

        def swap(context):
            context.document = replacement

        dispatcher = EventDispatcher()
        dispatcher.add_listener("preHydrate", swap)
        context = await dispatcher.dispatch("preHydrate", EventContext(Note(), note_metadata()))

        assert context.document is replacement

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_logged_and_chain_continues(self, caplog):
        calls = []

        def broken(context):
            raise RuntimeError("listener bug")

        dispatcher = EventDispatcher()
        dispatcher.add_listener("prePersist", broken, priority=1)
        dispatcher.add_listener("prePersist", lambda context: calls.append("after"))

        with caplog.at_level(logging.ERROR, logger="docmapper.core.events"):
            await dispatcher.dispatch("prePersist", EventContext(Note(), note_metadata()))

        assert calls == ["after"]
        assert "listener bug" in caplog.text
        assert dispatcher.get_metrics()["handler_failures"] == 1

    @pytest.mark.asyncio
    async def test_structured_error_stops_the_chain(self):
        calls = []

        def veto(context):
            raise InvalidOperationError("vetoed")

        dispatcher = EventDispatcher()
        dispatcher.add_listener("prePersist", veto, priority=1)
        dispatcher.add_listener("prePersist", lambda context: calls.append("after"))

        with pytest.raises(InvalidOperationError, match="vetoed"):
            await dispatcher.dispatch("prePersist", EventContext(Note(), note_metadata()))
        assert calls == []

    @pytest.mark.asyncio
    async def test_unregistered_document_listener_raises(self):
        metadata = note_metadata()
        metadata.listeners.append("missing")

        with pytest.raises(ConfigurationError, match="missing"):
            await EventDispatcher().dispatch("prePersist", EventContext(Note(), metadata))

    @pytest.mark.asyncio
    async def test_missing_hook_method_raises(self):
        metadata = note_metadata()
        metadata.add_event("postPersist", "no_such_method")

        with pytest.raises(ConfigurationError, match="no_such_method"):
            await EventDispatcher().dispatch("postPersist", EventContext(Note(), metadata))

    def test_non_callable_listener_is_rejected(self):
        dispatcher = EventDispatcher()
        with pytest.raises(ConfigurationError):
            dispatcher.add_listener("prePersist", object())
        with pytest.raises(ConfigurationError):
            dispatcher.add_listener("prePersist", Recorder([], "x"), "missing")

    def test_remove_listener(self):
        handler = lambda context: None
        dispatcher = EventDispatcher()
        dispatcher.add_listener("prePersist", handler)

        assert dispatcher.has_listeners(LifecycleEvent.PRE_PERSIST)
        assert dispatcher.remove_listener("prePersist", handler)
        assert not dispatcher.has_listeners("prePersist")
        assert not dispatcher.remove_listener("prePersist", handler)
