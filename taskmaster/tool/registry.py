"""Tool registry"""

import logging

from .base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None, register_defaults: bool = True):
        self._tools: dict[str, Tool] = {}
        if register_defaults:
            self._register_defaults()
        for tool in tools or []:
            self.register(tool)

    def _register_defaults(self):
        """Register built-in tools"""
        from .read import ReadFileTool
        from .write import WriteFileTool
        from .command import ExecuteCommandTool
        from .thinking import SequentialThinkingTool

        for tool_class in [ReadFileTool, WriteFileTool, ExecuteCommandTool, SequentialThinkingTool]:
            tool = tool_class()
            self._tools[tool.name] = tool

    def register(self, tool: Tool):
        """Register a tool"""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Get a tool by name"""
        return self._tools.get(name)

    def names(self, active: list[str] | None = None) -> list[str]:
        """Registered tool names, narrowed to the active allow-list when given"""
        if active is None:
            return list(self._tools)
        return [name for name in active if name in self._tools]

    def get_schemas(self, active: list[str] | None = None) -> list[dict]:
        """Get tool schemas for the LLM"""
        return [self._tools[name].schema() for name in self.names(active)]

    async def execute(self, name: str, args: dict, context: dict) -> str:
        """Execute a tool by name; failures come back as text for the model"""
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Unknown tool '{name}'"

        try:
            return await tool.execute(args, context)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Error executing {name}: {e}"
