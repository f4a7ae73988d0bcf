"""Base tool interface"""

from abc import ABC, abstractmethod
from pathlib import Path


class Tool(ABC):
    name: str
    description: str

    @abstractmethod
    def get_parameters_schema(self) -> dict:
        """Return JSON schema for parameters"""
        pass

    @abstractmethod
    async def execute(self, args: dict, context: dict) -> str:
        """Execute the tool and return result"""
        pass

    def schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.get_parameters_schema(),
        }


def resolve_path(path: str, context: dict) -> Path:
    """Resolve a tool path argument against the invocation's working directory"""
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return Path(context.get("cwd") or ".") / candidate
