"""Read file tool"""

from .base import Tool, resolve_path


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read file contents. Returns line-numbered output."

    def get_parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file, absolute or relative to the project root",
                },
                "start_line": {
                    "type": "integer",
                    "description": "Start line (1-indexed)",
                },
                "end_line": {
                    "type": "integer",
                    "description": "End line (1-indexed)",
                },
            },
            "required": ["path"],
        }

    async def execute(self, args: dict, context: dict) -> str:
        path = resolve_path(args["path"], context)
        start = max(1, args.get("start_line") or 1)
        end = args.get("end_line")

        if not path.exists():
            return f"Error: File not found: {path}"

        if not path.is_file():
            return f"Error: Not a file: {path}"

        try:
            lines = path.read_text(encoding="utf-8").split("\n")
        except (OSError, UnicodeDecodeError) as e:
            return f"Error reading file: {e}"

        end = end or len(lines)
        return "\n".join(f"{start + i}: {line}" for i, line in enumerate(lines[start - 1:end]))
