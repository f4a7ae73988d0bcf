"""Environment variable sources, consulted in precedence order"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


@dataclass
class EnvSource:
    """A named mapping of environment variables"""

    name: str
    values: Mapping[str, str | None] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        value = self.values.get(key)
        if value is None or value == "":
            return None
        return value


def session_env(session) -> EnvSource:
    """Per-session overrides (e.g. an MCP session's env block)"""
    env = getattr(session, "env", None) if session is not None else None
    if env is None and isinstance(session, Mapping):
        env = session.get("env")
    return EnvSource("session", dict(env or {}))


def process_env(environ: Mapping[str, str] | None = None) -> EnvSource:
    return EnvSource("process", dict(os.environ if environ is None else environ))


def dotenv_file(path: Path) -> EnvSource | None:
    """Parse a .env file; None if it does not exist or cannot be read"""
    if not path.is_file():
        return None
    try:
        values = dotenv_values(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read env file {path}: {e}")
        return None
    return EnvSource(f"file:{path}", {k: v for k, v in values.items() if v is not None})


class EnvironmentChain:
    """Ordered list of sources; the first one holding a non-empty value wins"""

    def __init__(self, sources: list[EnvSource]):
        self.sources = [s for s in sources if s is not None]

    def get(self, key: str) -> str | None:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return None

    def source_of(self, key: str) -> str | None:
        for source in self.sources:
            if source.get(key) is not None:
                return source.name
        return None

    def merged(self) -> dict[str, str]:
        """Flatten into a single dict honoring precedence"""
        result: dict[str, str] = {}
        for source in reversed(self.sources):
            for key, value in source.values.items():
                if value is not None and value != "":
                    result[key] = value
        return result

    def prepend(self, source: EnvSource) -> "EnvironmentChain":
        return EnvironmentChain([source, *self.sources])
