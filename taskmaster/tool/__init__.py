from .registry import ToolRegistry
from .base import Tool
from .read import ReadFileTool
from .write import WriteFileTool
from .command import ExecuteCommandTool
from .thinking import SequentialThinkingTool

__all__ = [
    "ToolRegistry",
    "Tool",
    "ReadFileTool",
    "WriteFileTool",
    "ExecuteCommandTool",
    "SequentialThinkingTool",
]
