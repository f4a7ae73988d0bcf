"""Sequential thinking scratchpad tool

Lets the model reason step by step across tool calls. Thoughts are counted
per session (or per tool instance when there is no session) and echoed
back with the running count. Only the most recent thoughts are kept.
"""

import json
from collections import deque

from .base import Tool

MAX_KEPT_THOUGHTS = 100


class SequentialThinkingTool(Tool):
    name = "sequential_thinking"
    description = (
        "Record one step of a step-by-step reasoning process. Use it to break "
        "down a problem, revise earlier thoughts or branch into alternatives."
    )

    def __init__(self):
        self._history: dict[str, deque] = {}
        self._counts: dict[str, int] = {}

    def get_parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "thought": {"type": "string", "description": "The current thinking step"},
                "thought_number": {"type": "integer", "description": "Number of this thought (1-indexed)"},
                "total_thoughts": {"type": "integer", "description": "Estimated total thoughts needed"},
                "next_thought_needed": {"type": "boolean", "description": "Whether another thought follows"},
                "is_revision": {"type": "boolean", "description": "Whether this revises an earlier thought"},
                "revises_thought": {"type": "integer", "description": "Which thought is being revised"},
            },
            "required": ["thought", "thought_number", "total_thoughts", "next_thought_needed"],
        }

    def history(self, key: str = "default") -> list[dict]:
        return list(self._history.get(key, []))

    async def execute(self, args: dict, context: dict) -> str:
        session = context.get("session")
        key = str(getattr(session, "id", None) or "default")
        thoughts = self._history.setdefault(key, deque(maxlen=MAX_KEPT_THOUGHTS))
        self._counts[key] = self._counts.get(key, 0) + 1

        thought_number = int(args["thought_number"])
        total_thoughts = max(int(args["total_thoughts"]), thought_number)
        thoughts.append({
            "thought": args["thought"],
            "thought_number": thought_number,
            "is_revision": bool(args.get("is_revision")),
            "revises_thought": args.get("revises_thought"),
        })

        return json.dumps({
            "thought_number": thought_number,
            "total_thoughts": total_thoughts,
            "next_thought_needed": bool(args["next_thought_needed"]),
            "thought_history_length": self._counts[key],
        })
