"""
Id Generator - Formatted Id Generation

Generates document ids from a format such as ``"{pid}-{time}-{random}"``.
Parts are separated by ``-``; parts wrapped in braces are generator
tokens, everything else is kept literally.
"""

import os
import random
import time
from typing import Callable, Dict, List, Optional

from ..exceptions import ConfigurationError


def _pid() -> int:
    """Process id right-padded with zeros to at least four digits"""
    return int(str(os.getpid()).ljust(4, "0"))


def _time() -> int:
    return int(time.time())


def _random() -> int:
    return random.randint(100000, 999999)


class IdGenerator:
    """Parses an id format once and generates ids from it"""

    generators: Dict[str, Callable[[], int]] = {
        "pid": _pid,
        "time": _time,
        "random": _random,
    }

    def __init__(self, format: str):
        self.format = format
        self._parts = self._parse(format)

    def _parse(self, format: str) -> List[Callable[[], object]]:
        parts = []
        for part in format.split("-"):
            if len(part) >= 2 and part.startswith("{") and part.endswith("}"):
                token = part[1:-1]
                generator = self.generators.get(token)
                if generator is None:
                    raise ConfigurationError(
                        f"Invalid id strategy '{format}': unknown token '{token}'"
                    )
                parts.append(generator)
            elif part:
                parts.append(lambda literal=part: literal)
        return parts

    def generate(self) -> Optional[str]:
        """Generate a new id, or None when the format produces nothing"""
        value = "-".join(str(part()) for part in self._parts)
        return value or None


# Export main components
__all__ = ['IdGenerator']
