"""Shell command tool"""

import asyncio

from .base import Tool


class ExecuteCommandTool(Tool):
    name = "execute_command"
    description = "Execute a shell command in the project directory and return its output."

    DEFAULT_TIMEOUT = 120

    def get_parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Shell command to execute",
                },
                "cwd": {
                    "type": "string",
                    "description": "Working directory (optional)",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default: {self.DEFAULT_TIMEOUT})",
                },
            },
            "required": ["command"],
        }

    async def execute(self, args: dict, context: dict) -> str:
        command = args["command"]
        cwd = args.get("cwd") or context.get("cwd") or "."
        timeout = args.get("timeout") or self.DEFAULT_TIMEOUT

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return f"Error executing command: {e}"

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return f"Error: Command timed out after {timeout}s"

        output = stdout.decode(errors="replace") + stderr.decode(errors="replace")
        if proc.returncode != 0:
            output += f"\n\nExit code: {proc.returncode}"
        return output
