"""
Session - Manager Scoping

A session hands out managers built from the definitions registered
with a DocMapper instance. Each session keeps one manager per name, so
documents loaded through a session share one identity map.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from ..core.registry import MetadataRegistry
from ..persistence.base import Adapter, Connection
from .manager import Manager

if TYPE_CHECKING:
    from .configurator import DocMapper

logger = logging.getLogger(__name__)

DEFAULT_MANAGER = "default"


@dataclass
class ManagerDefinition:
    """Everything needed to build a manager"""
    name: str
    adapter: Adapter
    connection: Connection
    metadata_registry: MetadataRegistry
    logger: Any = None


class Session:
    """Per-unit-of-work scope that caches managers by name"""

    def __init__(self, docmapper: 'DocMapper'):
        self.docmapper = docmapper
        self._managers: Dict[str, Manager] = {}

    def get_manager(self, name: Optional[str] = None) -> Manager:
        name = name or DEFAULT_MANAGER
        manager = self._managers.get(name)
        if manager is None:
            manager = Manager(self.docmapper.get_definition(name))
            self._managers[name] = manager
            logger.debug("Created manager %s for session", name)
        return manager

    def close(self) -> None:
        for manager in self._managers.values():
            manager.clear()
        self._managers.clear()


# Export main components
__all__ = ['Session', 'ManagerDefinition', 'DEFAULT_MANAGER']
