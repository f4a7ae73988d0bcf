"""Write file tool"""

from .base import Tool, resolve_path


class WriteFileTool(Tool):
    name = "write_file"
    description = "Create or overwrite a file with the given content."

    def get_parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file, absolute or relative to the project root",
                },
                "content": {
                    "type": "string",
                    "description": "Content to write",
                },
            },
            "required": ["path", "content"],
        }

    async def execute(self, args: dict, context: dict) -> str:
        path = resolve_path(args["path"], context)
        content = args["content"]

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            return f"Error writing file: {e}"
        return f"Successfully wrote {len(content)} bytes to {path}"
