"""
DocMapper Application Layer

Manager façade, repositories, sessions and bootstrap.
"""

from .repository import Repository
from .manager import Manager
from .session import Session, ManagerDefinition, DEFAULT_MANAGER
from .configurator import DocMapper, load_adapter

__all__ = [
    "Repository",
    "Manager",
    "Session",
    "ManagerDefinition",
    "DEFAULT_MANAGER",
    "DocMapper",
    "load_adapter",
]
