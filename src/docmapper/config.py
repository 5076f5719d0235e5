"""
Configuration Management for DocMapper

🔧 Bootstrap Configuration:
Dataclass configuration for adapters, connections, managers and
logging, buildable from dicts, JSON files or environment variables.
"""

import json
import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import ConfigurationError


BUILTIN_ADAPTERS = ("memory", "sql")


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_to_console: bool = False
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    logger: Any = None

    def validate(self) -> None:
        if self.logger is None:
            return
        for method in ("info", "error", "debug"):
            if not callable(getattr(self.logger, method, None)):
                raise ConfigurationError(f"Configured logger is missing required method '{method}'")


@dataclass
class ConnectionConfig:
    """Storage connection configuration"""
    adapter: str
    options: Dict[str, Any] = field(default_factory=dict)
    auto_connect: bool = True


@dataclass
class ListenerConfig:
    """Named document listener: event name -> method name on ``listener``"""
    name: str
    listener: Any
    events: Dict[str, str] = field(default_factory=dict)


@dataclass
class ManagerConfig:
    """Manager configuration"""
    adapter: str
    connection: str
    documents: List[Any] = field(default_factory=list)
    listeners: List[ListenerConfig] = field(default_factory=list)
    register_default_listeners: bool = True


@dataclass
class DocMapperConfig:
    """Complete bootstrap configuration"""
    environment: Environment = Environment.DEVELOPMENT
    adapters: Dict[str, Any] = field(default_factory=dict)
    connections: Dict[str, ConnectionConfig] = field(default_factory=dict)
    managers: Dict[str, ManagerConfig] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> 'DocMapperConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.logging.level = "DEBUG"
        elif environment == Environment.TESTING:
            config.logging.level = "WARNING"
        elif environment == Environment.PRODUCTION:
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'DocMapperConfig':
        """Create configuration from dictionary"""
        config = cls()

        if "environment" in config_dict:
            config = cls.for_environment(Environment(config_dict["environment"]))

        config.adapters.update(config_dict.get("adapters", {}))

        for name, value in config_dict.get("connections", {}).items():
            config.connections[name] = value if isinstance(value, ConnectionConfig) else ConnectionConfig(**value)

        for name, value in config_dict.get("managers", {}).items():
            if isinstance(value, ManagerConfig):
                config.managers[name] = value
                continue
            value = dict(value)
            value["listeners"] = [
                l if isinstance(l, ListenerConfig) else ListenerConfig(**l)
                for l in value.get("listeners", [])
            ]
            config.managers[name] = ManagerConfig(**value)

        logging_value = config_dict.get("logging", {})
        if isinstance(logging_value, LoggingConfig):
            config.logging = logging_value
        else:
            for key, value in logging_value.items():
                if hasattr(config.logging, key):
                    setattr(config.logging, key, value)

        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'DocMapperConfig':
        """Load configuration from a JSON file"""
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        if config_path.suffix != '.json':
            raise ConfigurationError(f"Unsupported configuration file format: {config_path.suffix}")

        with open(config_path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_environment(cls) -> 'DocMapperConfig':
        """Create configuration from environment variables"""
        config = cls.for_environment(Environment(os.getenv('DOCMAPPER_ENV', 'development')))

        if os.getenv('DOCMAPPER_LOG_LEVEL'):
            config.logging.level = os.getenv('DOCMAPPER_LOG_LEVEL')
        if os.getenv('DOCMAPPER_LOG_FILE'):
            config.logging.file_path = os.getenv('DOCMAPPER_LOG_FILE')
        console = os.getenv('DOCMAPPER_LOG_CONSOLE')
        if console:
            config.logging.log_to_console = console.lower() in ('true', '1', 'yes')

        return config

    def has_adapter(self, name: str) -> bool:
        return name in self.adapters or name in BUILTIN_ADAPTERS

    def validate(self) -> None:
        """Check cross references between managers, connections and adapters"""
        self.logging.validate()

        for name, connection in self.connections.items():
            if not self.has_adapter(connection.adapter):
                raise ConfigurationError(
                    f"Connection '{name}' uses unknown adapter '{connection.adapter}'"
                )

        for name, manager in self.managers.items():
            if not self.has_adapter(manager.adapter):
                raise ConfigurationError(f"Manager '{name}' uses unknown adapter '{manager.adapter}'")
            if manager.connection not in self.connections:
                raise ConfigurationError(
                    f"Manager '{name}' uses unknown connection '{manager.connection}'"
                )


def configure_logging(config: LoggingConfig) -> Any:
    """
    Configure the ``docmapper`` logger.

    Returns:
        The custom logger from the config when one is set, otherwise
        the configured ``docmapper`` logger
    """
    config.validate()
    if config.logger is not None:
        return config.logger

    logger = logging.getLogger("docmapper")
    logger.setLevel(getattr(logging, str(config.level).upper(), logging.INFO))

    if config.log_to_console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(config.format))
        logger.addHandler(console_handler)

    if config.file_path and not any(
            isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
        handler = logging.handlers.RotatingFileHandler(
            config.file_path, maxBytes=config.max_file_size, backupCount=config.backup_count
        )
        handler.setFormatter(logging.Formatter(config.format))
        logger.addHandler(handler)

    return logger


# Export main components
__all__ = [
    'Environment',
    'LoggingConfig',
    'ConnectionConfig',
    'ListenerConfig',
    'ManagerConfig',
    'DocMapperConfig',
    'configure_logging',
]
