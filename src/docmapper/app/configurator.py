"""
DocMapper Configurator

Centralized bootstrap for docmapper. Loads adapters, opens
connections, builds one metadata registry per manager (documents,
inheritance, listeners) and hands out sessions.
"""

import importlib
import logging
from typing import Any, Dict, Optional, Union

from ..config import DocMapperConfig, ManagerConfig, configure_logging
from ..core.listeners import register_default_listeners
from ..core.registry import MetadataRegistry
from ..exceptions import ConfigurationError, InvalidOperationError, NotFoundError
from ..persistence.base import Adapter, Connection
from .session import ManagerDefinition, Session

logger = logging.getLogger(__name__)


def _get_builtin_adapter(name: str) -> Optional[Adapter]:
    """Get built-in adapters by name"""
    if name == "memory":
        from ..persistence.memory import memory_adapter
        return memory_adapter
    if name == "sql":
        from ..persistence.sql import sql_adapter
        return sql_adapter
    return None


def load_adapter(source: Union[str, Adapter]) -> Adapter:
    """Resolve an adapter object, built-in name or dotted import path"""
    if isinstance(source, Adapter):
        return source

    adapter = _get_builtin_adapter(source)
    if adapter is not None:
        return adapter

    try:
        module_path, attr_name = source.rsplit('.', 1)
        module = importlib.import_module(module_path)
        adapter = getattr(module, attr_name)
    except (ValueError, ImportError, AttributeError) as e:
        raise ConfigurationError(f"Could not load adapter '{source}': {e}") from e

    if not isinstance(adapter, Adapter):
        raise ConfigurationError(f"'{source}' is not an Adapter")
    return adapter


class DocMapper:
    """
    Bootstrap entry point.

    Example:
        ```python
        docmapper = DocMapper({
            "connections": {"default": {"adapter": "memory"}},
            "managers": {"default": {"adapter": "memory", "connection": "default",
                                     "documents": [user_metadata]}},
        })
        await docmapper.init()
        manager = docmapper.create_session().get_manager()
        ```
    """

    def __init__(self, config: Union[DocMapperConfig, Dict[str, Any], None] = None):
        if config is None:
            config = DocMapperConfig()
        elif isinstance(config, dict):
            config = DocMapperConfig.from_dict(config)
        self.config = config
        self.logger: Any = logger

        self.adapters: Dict[str, Adapter] = {}
        self.connections: Dict[str, Connection] = {}
        self.definitions: Dict[str, ManagerDefinition] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> 'DocMapper':
        """Validate configuration and build adapters, connections and managers"""
        if self._initialized:
            return self

        self.config.validate()
        self.logger = configure_logging(self.config.logging)

        for name, connection_config in self.config.connections.items():
            adapter = self._adapter(connection_config.adapter)
            connection = adapter.create_connection(connection_config.options)
            if connection_config.auto_connect:
                await connection.connect()
            self.connections[name] = connection
            self.logger.debug(f"[docmapper] registered connection {name} ({adapter.name})")

        for name, manager_config in self.config.managers.items():
            self.definitions[name] = await self._build_definition(name, manager_config)
            self.logger.debug(f"[docmapper] registered manager {name}")

        self._initialized = True
        self.logger.info(f"[docmapper] initialized {len(self.definitions)} manager(s)")
        return self

    def _adapter(self, name: str) -> Adapter:
        adapter = self.adapters.get(name)
        if adapter is None:
            adapter = load_adapter(self.config.adapters.get(name, name))
            self.adapters[name] = adapter
        return adapter

    async def _build_definition(self, name: str, manager_config: ManagerConfig) -> ManagerDefinition:
        registry = MetadataRegistry()
        for metadata in manager_config.documents:
            registry.register_metadata(metadata)
        registry.handle_inheritance()

        if manager_config.register_default_listeners:
            register_default_listeners(registry)

        for listener_config in manager_config.listeners:
            for event, method in listener_config.events.items():
                registry.register_document_event_listener(
                    listener_config.name, event, listener_config.listener, method
                )
                self.logger.debug(
                    f"[docmapper] registered listener {listener_config.name}.{method} for {event}"
                )

        connection = self.get_connection(manager_config.connection)
        await connection.boot(registry)

        return ManagerDefinition(
            name=name,
            adapter=self._adapter(manager_config.adapter),
            connection=connection,
            metadata_registry=registry,
            logger=self.logger,
        )

    def get_adapter(self, name: str) -> Adapter:
        if name not in self.adapters:
            raise NotFoundError("Adapter", name)
        return self.adapters[name]

    def get_connection(self, name: str) -> Connection:
        if name not in self.connections:
            raise NotFoundError("Connection", name)
        return self.connections[name]

    def get_definition(self, name: str) -> ManagerDefinition:
        if name not in self.definitions:
            raise NotFoundError("Manager", name)
        return self.definitions[name]

    def create_session(self) -> Session:
        if not self._initialized:
            raise InvalidOperationError("DocMapper.init() must be awaited before creating sessions")
        return Session(self)

    async def shutdown(self) -> None:
        """Close every connection"""
        for name, connection in self.connections.items():
            await connection.close()
            self.logger.debug(f"[docmapper] closed connection {name}")
        self.connections.clear()
        self.definitions.clear()
        self._initialized = False

    async def __aenter__(self) -> 'DocMapper':
        return await self.init()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()


# Export main components
__all__ = ['DocMapper', 'load_adapter']
