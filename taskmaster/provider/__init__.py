from .base import BaseAIProvider
from .router import ModelRouter, ProviderKind
from .types import (
    GenerateObjectResult,
    GenerateTextResult,
    InvocationParams,
    Session,
    StepResult,
    StreamChunk,
    TextStream,
    ToolCall,
    Usage,
)

__all__ = [
    "BaseAIProvider",
    "ModelRouter",
    "ProviderKind",
    "GenerateObjectResult",
    "GenerateTextResult",
    "InvocationParams",
    "Session",
    "StepResult",
    "StreamChunk",
    "TextStream",
    "ToolCall",
    "Usage",
]
